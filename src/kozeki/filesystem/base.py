"""Filesystem capability interface shared by every storage backend.

Paths are tuples of segments; no segment may contain the backend's
separator. Backends: LocalFilesystem (disk), S3Filesystem (object storage)
and QueuedFilesystem (a worker-pool decorator around another backend).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

Path = tuple[str, ...]


class FileNotFound(FileNotFoundError):
    """Raised by read() / read_with_mtime() when the path does not exist."""


class EventOp(str, Enum):
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Entry:
    path: Path
    mtime: datetime


@dataclass(frozen=True)
class Event:
    """A change notification for one source path.

    ``time`` is the modification time reported by the watcher, or None when
    the source must be (re)loaded unconditionally.
    """

    op: EventOp | str
    path: Path
    time: datetime | None = None

    @classmethod
    def update(cls, path: Sequence[str], time: datetime | None = None) -> Event:
        return cls(op=EventOp.UPDATE, path=as_path(path), time=time)

    @classmethod
    def delete(cls, path: Sequence[str]) -> Event:
        return cls(op=EventOp.DELETE, path=as_path(path), time=None)


def as_path(path: Sequence[str]) -> Path:
    return tuple(path)


class WatchHandle:
    """Stop handle returned by Filesystem.watch()."""

    def __init__(self, stop: Callable[[], None]) -> None:
        self._stop = stop

    def stop(self) -> None:
        self._stop()


class Filesystem(ABC):
    """Read/write/list/delete over a tree of paths."""

    def read(self, path: Sequence[str]) -> str:
        return self.read_with_mtime(path)[0]

    @abstractmethod
    def read_with_mtime(self, path: Sequence[str]) -> tuple[str, datetime]:
        """Return ``(content, mtime)``.

        Raises:
            FileNotFound: *path* does not exist.
        """

    @abstractmethod
    def write(self, path: Sequence[str], content: str) -> None:
        """Write *content*, creating intermediate directories as needed."""

    @abstractmethod
    def delete(self, path: Sequence[str]) -> None:
        """Delete *path*; a missing target is not an error."""

    @abstractmethod
    def list_entries(self) -> list[Entry]:
        """Every file (not directory) under the root, with its mtime."""

    def list(self) -> list[Path]:
        return [entry.path for entry in self.list_entries()]

    def retain_only(self, keep_paths: Iterable[Sequence[str]]) -> list[Path]:
        """Delete every listed file not in *keep_paths*; returns the deleted paths."""
        keep = {as_path(p) for p in keep_paths}
        removed = [path for path in self.list() if path not in keep]
        for path in removed:
            self.delete(path)
        return removed

    def watch(self, callback: Callable[[list[Event]], None]) -> WatchHandle:
        """Deliver batches of change events to *callback* until stopped."""
        raise NotImplementedError(f"{type(self).__name__} does not support watch()")

    def flush(self) -> None:
        """Block until every previously issued write/delete is durable."""
