"""Storage backends for sources and destinations."""

from kozeki.filesystem.base import (
    Entry,
    Event,
    EventOp,
    FileNotFound,
    Filesystem,
    Path,
    WatchHandle,
    as_path,
)
from kozeki.filesystem.local import LocalFilesystem
from kozeki.filesystem.queued import QueuedFilesystem
from kozeki.filesystem.s3 import S3Filesystem

__all__ = [
    "Entry",
    "Event",
    "EventOp",
    "FileNotFound",
    "Filesystem",
    "LocalFilesystem",
    "Path",
    "QueuedFilesystem",
    "S3Filesystem",
    "WatchHandle",
    "as_path",
]
