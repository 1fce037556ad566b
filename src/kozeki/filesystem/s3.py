"""Amazon S3 filesystem backend (requires the ``s3`` extra: boto3)."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any

from kozeki.filesystem.base import Entry, FileNotFound, Filesystem, Path

logger = logging.getLogger(__name__)

_JSON_CONTENT_TYPE = "application/json; charset=utf-8"
_DEFAULT_CONTENT_TYPE = "application/octet-stream"


class S3Filesystem(Filesystem):
    """Objects under ``s3://<bucket>/<prefix>``; path segments joined by *delimiter*."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        *,
        delimiter: str = "/",
        client: Any = None,
        region: str | None = None,
        cache_control: Callable[[str], str | None] | None = None,
    ) -> None:
        """Initialise the backend.

        Args:
            bucket: S3 bucket name.
            prefix: Key prefix prepended verbatim (include a trailing delimiter).
            delimiter: Separator between path segments in object keys.
            client: Pre-built boto3 S3 client; created from *region* if omitted.
            region: AWS region for the default client.
            cache_control: Optional ``key -> Cache-Control`` value for writes.
        """
        self.bucket = bucket
        self.prefix = prefix
        self.delimiter = delimiter
        self._cache_control = cache_control or (lambda key: None)
        self.s3 = client if client is not None else _make_client(region)

    def __repr__(self) -> str:
        return f"S3Filesystem('s3://{self.bucket}/{self.prefix}')"

    def read_with_mtime(self, path: Sequence[str]) -> tuple[str, datetime]:
        key = self._make_key(path)
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
        except self.s3.exceptions.NoSuchKey:
            raise FileNotFound(f"s3://{self.bucket}/{key} not found") from None
        body = response["Body"].read().decode("utf-8")
        return body, response["LastModified"]

    def write(self, path: Sequence[str], content: str) -> None:
        key = self._make_key(path)
        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": content.encode("utf-8"),
            "ContentType": _content_type_for(path),
        }
        cache_control = self._cache_control(key)
        if cache_control:
            params["CacheControl"] = cache_control
        self.s3.put_object(**params)

    def delete(self, path: Sequence[str]) -> None:
        # DeleteObject succeeds for missing keys.
        self.s3.delete_object(Bucket=self.bucket, Key=self._make_key(path))

    def list_entries(self) -> list[Entry]:
        paginator = self.s3.get_paginator("list_objects_v2")
        entries: list[Entry] = []
        for page in paginator.paginate(Bucket=self.bucket, Prefix=self.prefix):
            for obj in page.get("Contents", []):
                entries.append(Entry(path=self._key_to_path(obj["Key"]), mtime=obj["LastModified"]))
        return entries

    def _make_key(self, path: Sequence[str]) -> str:
        for segment in path:
            if self.delimiter in segment:
                raise ValueError(f"path segment {segment!r} contains {self.delimiter!r}")
        return f"{self.prefix}{self.delimiter.join(path)}"

    def _key_to_path(self, key: str) -> Path:
        if not key.startswith(self.prefix):
            raise ValueError(f"key {key!r} does not start with prefix {self.prefix!r}")
        return tuple(key[len(self.prefix):].split(self.delimiter))


def _content_type_for(path: Sequence[str]) -> str:
    return _JSON_CONTENT_TYPE if path and path[-1].endswith(".json") else _DEFAULT_CONTENT_TYPE


def _make_client(region: str | None) -> Any:
    try:
        import boto3
    except ImportError:
        raise ImportError("boto3 not installed. Install with: pip install 'kozeki[s3]'") from None
    logger.info("Connecting to S3 (region: %s)", region or "default")
    return boto3.client("s3", region_name=region)
