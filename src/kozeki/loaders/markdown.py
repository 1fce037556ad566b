"""Markdown loader: YAML front matter + CommonMark body rendered to HTML."""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any

import yaml
from markdown_it import MarkdownIt
from mdit_py_plugins.anchors import anchors_plugin
from mdit_py_plugins.deflist import deflist_plugin
from mdit_py_plugins.footnote import footnote_plugin
from mdit_py_plugins.tasklists import tasklists_plugin

from kozeki.filesystem.base import Filesystem
from kozeki.loaders.base import Loader
from kozeki.source import Source

_EXTENSIONS = (".md", ".mkd", ".markdown")

# Front matter: a '---' line at the very start (after optional blank lines)
# up to the next '---' line.
_FRONT_MATTER_RE = re.compile(r"\A\s*^---[ \t]*\n(.*?)^---[ \t]*$\n?", re.MULTILINE | re.DOTALL)

_SLUG_STRIP_RE = re.compile(r"[^\w\- ]+")


def split_front_matter(content: str) -> tuple[dict[str, Any], str]:
    """Return ``(meta, body)``; meta is ``{}`` when absent or not a mapping."""
    match = _FRONT_MATTER_RE.match(content)
    if not match:
        return {}, content
    meta = yaml.safe_load(match.group(1))
    body = content[match.end():].lstrip("\n")
    return (meta if isinstance(meta, dict) else {}), body


def _slugify(title: str) -> str:
    return _SLUG_STRIP_RE.sub("", title.strip().lower()).replace(" ", "-")


class MarkdownLoader(Loader):
    """Claims ``.md``, ``.mkd`` and ``.markdown`` files.

    Rendering: CommonMark with tables, strikethrough, bare-URL autolinks,
    footnotes, task lists and definition lists; raw HTML passes through.
    Heading anchors are prefixed with ``<item id>--`` so ids stay unique when
    items are combined on one page.
    """

    def try_read(self, path: Sequence[str], filesystem: Filesystem) -> Source | None:
        if not path or not path[-1].endswith(_EXTENSIONS):
            return None
        content, mtime = filesystem.read_with_mtime(path)
        meta, _ = split_front_matter(content)
        return Source(path=path, meta=meta, mtime=mtime, content=content, loader=self)

    def build(self, source: Source) -> dict[str, Any]:
        _, body = split_front_matter(source.content)
        return {"html": self._renderer(source.id).render(body)}

    @staticmethod
    def _renderer(item_id: str) -> MarkdownIt:
        md = (
            MarkdownIt("commonmark", {"html": True, "linkify": True})
            .enable(["table", "strikethrough", "linkify"])
            .use(footnote_plugin)
            .use(tasklists_plugin)
            .use(deflist_plugin)
            .use(
                anchors_plugin,
                max_level=6,
                slug_func=lambda title: f"{item_id}--{_slugify(title)}",
            )
        )
        return md
