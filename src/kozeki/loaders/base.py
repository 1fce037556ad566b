"""Loader interface and the loader chain used by builds."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from kozeki.filesystem.base import Filesystem
from kozeki.source import Source

MetadataDecorator = Callable[[dict[str, Any], Source], None]


class Loader(ABC):
    """Turns a source file into a Source, and a Source into a payload."""

    @abstractmethod
    def try_read(self, path: Sequence[str], filesystem: Filesystem) -> Source | None:
        """Return a Source for *path*, or None if this loader does not handle it."""

    @abstractmethod
    def build(self, source: Source) -> Any:
        """Render *source* into the JSON-serialisable ``data`` of its Item."""


class LoaderChain(Loader):
    """Try each loader in order; the first that claims a path wins.

    After a successful load every metadata decorator is called as
    ``decorator(source.meta, source)`` and may mutate ``meta`` in place.
    """

    def __init__(
        self,
        loaders: Iterable[Loader],
        decorators: Iterable[MetadataDecorator] = (),
    ) -> None:
        self.loaders = list(loaders)
        self.decorators = list(decorators)

    def try_read(self, path: Sequence[str], filesystem: Filesystem) -> Source | None:
        for loader in self.loaders:
            source = loader.try_read(path, filesystem)
            if source is None:
                continue
            for decorator in self.decorators:
                decorator(source.meta, source)
            return source
        return None

    def build(self, source: Source) -> Any:
        return source.loader.build(source)
