"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from kozeki.db import State


@pytest.fixture
def state():
    """In-memory state store with schema initialized, closed after test."""
    st = State.open()
    yield st
    st.close()


@pytest.fixture
def src_dir(tmp_path) -> Path:
    path = tmp_path / "src"
    path.mkdir()
    return path


@pytest.fixture
def dst_dir(tmp_path) -> Path:
    path = tmp_path / "dst"
    path.mkdir()
    return path


def make_markdown(meta: dict, body: str) -> str:
    return "---\n" + yaml.safe_dump(meta, sort_keys=False) + "---\n\n" + body + "\n"


@pytest.fixture
def write_source(src_dir):
    """Return a function writing a Markdown source with front matter into src_dir."""

    def _write(name: str, meta: dict, body: str = "") -> Path:
        path = src_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(make_markdown(meta, body), encoding="utf-8")
        return path

    return _write
