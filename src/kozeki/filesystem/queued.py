"""Worker-pool decorator that offloads writes/deletes of another backend."""

from __future__ import annotations

import logging
import queue
import threading
import zlib
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime

from kozeki.filesystem.base import Entry, Event, Filesystem, Path, WatchHandle, as_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Operation:
    method: str  # write | delete
    path: Path
    content: str | None = None


class QueuedFilesystem(Filesystem):
    """Forward writes and deletes to *filesystem* through N worker threads.

    Each path is pinned to one worker (by checksum), so operations on the
    same path run in the order they were issued. Reads and listings go
    straight to the backend. flush() blocks until every queued operation
    has finished and re-raises the first failure.
    """

    def __init__(self, filesystem: Filesystem, threads: int = 6) -> None:
        if threads < 1:
            raise ValueError("threads must be >= 1")
        self.backend = filesystem
        self._queues: list[queue.Queue[_Operation | None]] = [queue.Queue() for _ in range(threads)]
        self._errors: list[BaseException] = []
        self._errors_lock = threading.Lock()
        self._threads = [
            threading.Thread(target=self._work, args=(q,), name=f"kozeki-queue-{i}", daemon=True)
            for i, q in enumerate(self._queues)
        ]
        for thread in self._threads:
            thread.start()

    def __repr__(self) -> str:
        return f"QueuedFilesystem({self.backend!r}, threads={len(self._threads)})"

    # ------------------------------------------------------------------
    # Queued operations
    # ------------------------------------------------------------------

    def write(self, path: Sequence[str], content: str) -> None:
        self._enqueue(_Operation("write", as_path(path), content))

    def delete(self, path: Sequence[str]) -> None:
        self._enqueue(_Operation("delete", as_path(path)))

    def flush(self) -> None:
        for q in self._queues:
            q.join()
        with self._errors_lock:
            errors, self._errors = self._errors, []
        if errors:
            raise errors[0]
        self.backend.flush()

    def close(self) -> None:
        """Drain outstanding operations and stop the workers."""
        for q in self._queues:
            q.put(None)
        for thread in self._threads:
            thread.join()

    def _enqueue(self, op: _Operation) -> None:
        index = zlib.crc32("/".join(op.path).encode("utf-8")) % len(self._queues)
        self._queues[index].put(op)

    def _work(self, q: queue.Queue[_Operation | None]) -> None:
        while True:
            op = q.get()
            try:
                if op is None:
                    return
                if op.method == "write":
                    self.backend.write(op.path, op.content or "")
                elif op.method == "delete":
                    self.backend.delete(op.path)
                else:
                    raise ValueError(f"unknown operation {op!r}")
            except Exception as exc:
                logger.error("Queued %s failed for %s: %s", op.method, "/".join(op.path), exc)
                with self._errors_lock:
                    self._errors.append(exc)
            finally:
                q.task_done()

    # ------------------------------------------------------------------
    # Pass-through
    # ------------------------------------------------------------------

    def read(self, path: Sequence[str]) -> str:
        return self.backend.read(path)

    def read_with_mtime(self, path: Sequence[str]) -> tuple[str, datetime]:
        return self.backend.read_with_mtime(path)

    def list_entries(self) -> list[Entry]:
        return self.backend.list_entries()

    def list(self) -> list[Path]:
        return self.backend.list()

    def retain_only(self, keep_paths) -> list[Path]:
        return self.backend.retain_only(keep_paths)

    def watch(self, callback: Callable[[list[Event]], None]) -> WatchHandle:
        return self.backend.watch(callback)
