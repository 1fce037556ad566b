"""Tests for S3Filesystem against an in-memory stand-in for the boto3 client."""

from __future__ import annotations

import io
from datetime import datetime, timezone

import pytest

from kozeki.filesystem import FileNotFound, S3Filesystem

_MODIFIED = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


class _NoSuchKey(Exception):
    pass


class _Paginator:
    def __init__(self, objects, page_size=2):
        self._objects = objects
        self._page_size = page_size

    def paginate(self, Bucket, Prefix):
        keys = sorted(k for k in self._objects if k.startswith(Prefix))
        for start in range(0, len(keys), self._page_size):
            yield {
                "Contents": [
                    {"Key": k, "LastModified": _MODIFIED}
                    for k in keys[start : start + self._page_size]
                ]
            }


class _FakeS3:
    class exceptions:
        NoSuchKey = _NoSuchKey

    def __init__(self):
        self.objects: dict[str, dict] = {}

    def put_object(self, **params):
        self.objects[params["Key"]] = params

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise _NoSuchKey(Key)
        return {"Body": io.BytesIO(self.objects[Key]["Body"]), "LastModified": _MODIFIED}

    def delete_object(self, Bucket, Key):
        self.objects.pop(Key, None)

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return _Paginator(self.objects)


@pytest.fixture
def s3():
    return _FakeS3()


def test_write_sets_key_and_content_type(s3):
    fs = S3Filesystem("bucket", "site/", client=s3)
    fs.write(("items", "1.json"), '{"kind":"item"}\n')
    obj = s3.objects["site/items/1.json"]
    assert obj["Body"] == b'{"kind":"item"}\n'
    assert obj["ContentType"] == "application/json; charset=utf-8"
    assert "CacheControl" not in obj


def test_cache_control_callable(s3):
    fs = S3Filesystem("bucket", client=s3, cache_control=lambda key: "max-age=60")
    fs.write(("a.json",), "{}")
    assert s3.objects["a.json"]["CacheControl"] == "max-age=60"


def test_read_with_mtime(s3):
    fs = S3Filesystem("bucket", "p/", client=s3)
    fs.write(("a.md",), "héllo")
    assert fs.read_with_mtime(("a.md",)) == ("héllo", _MODIFIED)


def test_read_missing_raises(s3):
    with pytest.raises(FileNotFound):
        S3Filesystem("bucket", client=s3).read(("missing.md",))


def test_list_entries_paginates_and_strips_prefix(s3):
    fs = S3Filesystem("bucket", "p/", client=s3)
    for name in ("a.json", "b.json", "c.json"):
        fs.write(("items", name), "{}")
    s3.objects["other/x.json"] = {}
    assert fs.list() == [("items", "a.json"), ("items", "b.json"), ("items", "c.json")]


def test_retain_only_and_delete(s3):
    fs = S3Filesystem("bucket", "p/", client=s3)
    fs.write(("a.json",), "1")
    fs.write(("b.json",), "2")
    assert fs.retain_only([("a.json",)]) == [("b.json",)]
    fs.delete(("missing.json",))
    assert sorted(s3.objects) == ["p/a.json"]


def test_custom_delimiter(s3):
    fs = S3Filesystem("bucket", client=s3, delimiter=":")
    fs.write(("a", "b.json"), "{}")
    assert "a:b.json" in s3.objects
    with pytest.raises(ValueError):
        fs.write(("a:b",), "{}")
