"""Local-disk filesystem backend with polling watch support."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from pathlib import Path as FsPath

from kozeki.filesystem.base import (
    Entry,
    Event,
    FileNotFound,
    Filesystem,
    Path,
    WatchHandle,
)
from kozeki.serialization import EPOCH

logger = logging.getLogger(__name__)


def _mtime_of(fspath: FsPath) -> datetime:
    # Built from st_mtime_ns so millisecond truncation is exact.
    return EPOCH + timedelta(microseconds=fspath.stat().st_mtime_ns // 1000)


class LocalFilesystem(Filesystem):
    """Filesystem rooted at *base_directory* on local disk."""

    def __init__(self, base_directory: FsPath | str, *, watch_interval: float = 1.0) -> None:
        self.base = FsPath(base_directory)
        self.watch_interval = watch_interval

    def __repr__(self) -> str:
        return f"LocalFilesystem({str(self.base)!r})"

    def _resolve(self, path: Sequence[str]) -> FsPath:
        if not path:
            raise ValueError("path must have at least one segment")
        for segment in path:
            if "/" in segment or segment in ("", ".", ".."):
                raise ValueError(f"invalid path segment {segment!r} in {tuple(path)!r}")
        return self.base.joinpath(*path)

    def read(self, path: Sequence[str]) -> str:
        try:
            return self._resolve(path).read_text(encoding="utf-8")
        except FileNotFoundError:
            raise FileNotFound(f"{'/'.join(path)} not found in {self.base}") from None

    def read_with_mtime(self, path: Sequence[str]) -> tuple[str, datetime]:
        content = self.read(path)
        return content, _mtime_of(self._resolve(path))

    def write(self, path: Sequence[str], content: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def delete(self, path: Sequence[str]) -> None:
        self._resolve(path).unlink(missing_ok=True)

    def list_entries(self) -> list[Entry]:
        if not self.base.is_dir():
            return []
        entries: list[Entry] = []
        for fspath in sorted(self.base.rglob("*")):
            try:
                if not fspath.is_file():
                    continue
                mtime = _mtime_of(fspath)
            except FileNotFoundError:
                # Removed between listing and stat.
                continue
            entries.append(Entry(path=fspath.relative_to(self.base).parts, mtime=mtime))
        return entries

    def watch(self, callback: Callable[[list[Event]], None]) -> WatchHandle:
        """Poll the tree every ``watch_interval`` seconds and report changes.

        Each poll that observes changes delivers one batch: ``update`` events
        (time = new mtime) for new or modified files and ``delete`` events
        for vanished ones. Batches are delivered sequentially from a single
        daemon thread.
        """
        stopped = threading.Event()
        snapshot = self._snapshot()

        def run() -> None:
            nonlocal snapshot
            while not stopped.wait(self.watch_interval):
                current = self._snapshot()
                events = _diff_snapshots(snapshot, current)
                snapshot = current
                if not events:
                    continue
                try:
                    callback(events)
                except Exception:
                    logger.exception("Watch callback failed for %d event(s)", len(events))

        thread = threading.Thread(target=run, name="kozeki-watch", daemon=True)
        thread.start()

        def stop() -> None:
            stopped.set()
            if thread is not threading.current_thread():
                thread.join()

        return WatchHandle(stop)

    def _snapshot(self) -> dict[Path, datetime]:
        return {entry.path: entry.mtime for entry in self.list_entries()}


def _diff_snapshots(old: dict[Path, datetime], new: dict[Path, datetime]) -> list[Event]:
    events = [
        Event.update(path, mtime)
        for path, mtime in new.items()
        if old.get(path) != mtime
    ]
    events.extend(Event.delete(path) for path in old if path not in new)
    return events
