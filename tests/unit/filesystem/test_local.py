"""Tests for LocalFilesystem and the shared Filesystem behaviour."""

from __future__ import annotations

import os
import threading

import pytest

from kozeki.filesystem import Event, EventOp, FileNotFound, LocalFilesystem
from kozeki.filesystem.local import _diff_snapshots
from kozeki.serialization import EPOCH, to_millis


@pytest.fixture
def fs(tmp_path):
    return LocalFilesystem(tmp_path)


def test_write_creates_parents_and_reads_back(fs, tmp_path):
    fs.write(("collections", "a", "page-2.json"), "{}\n")
    assert (tmp_path / "collections" / "a" / "page-2.json").read_text() == "{}\n"
    assert fs.read(("collections", "a", "page-2.json")) == "{}\n"


def test_read_missing_raises_file_not_found(fs):
    with pytest.raises(FileNotFound):
        fs.read(("missing.md",))
    with pytest.raises(FileNotFoundError):
        fs.read_with_mtime(("missing.md",))


def test_read_with_mtime_matches_stat(fs, tmp_path):
    (tmp_path / "a.md").write_text("x")
    os.utime(tmp_path / "a.md", ns=(1_700_000_000_123_456_789, 1_700_000_000_123_456_789))
    content, mtime = fs.read_with_mtime(("a.md",))
    assert content == "x"
    assert to_millis(mtime) == 1_700_000_000_123


def test_delete_is_idempotent(fs, tmp_path):
    fs.write(("a.json",), "1")
    fs.delete(("a.json",))
    fs.delete(("a.json",))
    assert not (tmp_path / "a.json").exists()


def test_list_entries_skips_directories(fs, tmp_path):
    fs.write(("b", "c.md"), "")
    fs.write(("a.md",), "")
    (tmp_path / "empty").mkdir()
    assert fs.list() == [("a.md",), ("b", "c.md")]
    assert all(entry.mtime > EPOCH for entry in fs.list_entries())


def test_list_entries_of_missing_root(tmp_path):
    assert LocalFilesystem(tmp_path / "nope").list_entries() == []


def test_invalid_segments_rejected(fs):
    for path in [(), ("a/b",), ("..", "x"), ("",)]:
        with pytest.raises(ValueError):
            fs.write(path, "x")


def test_retain_only(fs):
    fs.write(("keep.json",), "1")
    fs.write(("dir", "drop.json"), "2")
    fs.write(("drop.json",), "3")

    removed = fs.retain_only([["keep.json"]])

    assert sorted(removed) == [("dir", "drop.json"), ("drop.json",)]
    assert fs.list() == [("keep.json",)]


# ------------------------------------------------------------------
# Watch
# ------------------------------------------------------------------


def test_diff_snapshots():
    later = EPOCH.replace(year=2000)
    old = {("a.md",): EPOCH, ("b.md",): EPOCH}
    new = {("a.md",): later, ("b.md",): EPOCH, ("c.md",): EPOCH}
    events = _diff_snapshots(old, new)
    old_only = _diff_snapshots(new, {("b.md",): EPOCH})

    assert Event.update(("a.md",), later) in events
    assert Event.update(("c.md",), EPOCH) in events
    assert len(events) == 2
    assert {e.path for e in old_only if e.op is EventOp.DELETE} == {("a.md",), ("c.md",)}


def test_watch_delivers_batches(tmp_path):
    watched = tmp_path / "watched"
    watched.mkdir()
    staged = tmp_path / "a.md"
    staged.write_text("x")
    fs = LocalFilesystem(watched, watch_interval=0.05)
    received: list[list[Event]] = []
    got = threading.Event()

    def callback(events):
        received.append(events)
        got.set()

    handle = fs.watch(callback)
    try:
        os.replace(staged, watched / "a.md")
        assert got.wait(5)
    finally:
        handle.stop()

    assert received[0] == [Event.update(("a.md",), fs.list_entries()[0].mtime)]
