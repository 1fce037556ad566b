"""Tests for the build state store."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from kozeki.db import DuplicatedItemIdError, NotFound, PendingAction, Record, State
from kozeki.serialization import EPOCH

_MTIME = datetime(2024, 3, 1, 12, 0, 0, 123000, tzinfo=timezone.utc)


def _record(id="1", path=("1.md",), **kwargs) -> Record:
    kwargs.setdefault("mtime", _MTIME)
    return Record(path=tuple(path), id=id, **kwargs)


def _item_ids(state: State) -> dict[str, str]:
    return {row["id"]: row["pending_build_action"] for row in state.dump_table("item_ids")}


def _memberships(state: State) -> dict[tuple[str, str], str]:
    return {
        (row["collection"], row["record_id"]): row["pending_build_action"]
        for row in state.dump_table("collection_memberships")
    }


# ------------------------------------------------------------------
# Builds
# ------------------------------------------------------------------

def test_build_exist_only_counts_completed(state):
    assert state.build_exist() is False
    build_id = state.create_build()
    assert state.build_exist() is False
    state.mark_build_completed(build_id)
    assert state.build_exist() is True


def test_create_build_returns_increasing_ids(state):
    first = state.create_build()
    second = state.create_build()
    assert second > first


def test_clear_all_wipes_every_table(state):
    state.save_record(_record())
    state.set_record_collections_pending("1", ["a"])
    state.mark_build_completed(state.create_build())

    state.clear_all()

    for table in ("records", "collection_memberships", "item_ids", "builds"):
        assert state.dump_table(table) == []


# ------------------------------------------------------------------
# Records
# ------------------------------------------------------------------

def test_save_and_find_record_by_path(state):
    saved = state.save_record(
        _record(meta={"id": "1", "title": "x"}, timestamp=datetime(2023, 1, 1, tzinfo=timezone.utc))
    )
    assert saved.id_was is None

    found = state.find_record_by_path(["1.md"])
    assert found.id == "1"
    assert found.meta == {"id": "1", "title": "x"}
    assert found.mtime == _MTIME
    assert found.timestamp == datetime(2023, 1, 1, tzinfo=timezone.utc)
    assert found.pending_build_action is PendingAction.NONE


def test_find_record_by_path_not_found(state):
    with pytest.raises(NotFound):
        state.find_record_by_path(["nope.md"])


def test_mtime_is_truncated_to_milliseconds(state):
    state.save_record(_record(mtime=datetime(2024, 1, 1, 0, 0, 0, 999999, tzinfo=timezone.utc)))
    assert state.find_record_by_path(["1.md"]).mtime == datetime(
        2024, 1, 1, 0, 0, 0, 999000, tzinfo=timezone.utc
    )


def test_find_record_by_id(state):
    state.save_record(_record())
    assert state.find_record("1").path == ("1.md",)
    with pytest.raises(NotFound):
        state.find_record("2")


def test_find_record_duplicated(state):
    state.save_record(_record(path=("a.md",)))
    state.save_record(_record(path=("b.md",)))
    with pytest.raises(DuplicatedItemIdError, match="a.md"):
        state.find_record("1")


def test_find_record_ignores_removed_duplicates(state):
    state.save_record(_record(path=("a.md",)))
    b = state.save_record(_record(path=("b.md",)))
    state.set_record_pending_action(b, PendingAction.REMOVE)
    assert state.find_record("1").path == ("a.md",)


def test_save_record_overwrite_same_id(state):
    state.save_record(_record(meta={"v": 1}))
    saved = state.save_record(_record(meta={"v": 2}))
    assert saved.id_was is None
    assert state.find_record_by_path(["1.md"]).meta == {"v": 2}
    assert _item_ids(state) == {"1": "none"}


def test_save_record_id_change_marks_old_id_for_gc(state):
    state.save_record(_record(id="1"))
    saved = state.save_record(_record(id="2"))

    assert saved.id_was == "1"
    assert saved.id_changed
    assert state.find_record_by_path(["1.md"]).id_was == "1"
    assert _item_ids(state) == {"1": "garbage_collection", "2": "none"}
    assert state.list_item_ids_for_garbage_collection() == ["1"]


def test_save_record_resets_registry_entry(state):
    state.save_record(_record(id="1"))
    state.save_record(_record(id="2"))
    state.save_record(_record(id="1", path=("other.md",)))
    assert _item_ids(state)["1"] == "none"


def test_set_record_pending_action(state):
    record = state.save_record(_record())
    state.set_record_pending_action(record, PendingAction.UPDATE)
    assert [r.path for r in state.list_records_by_pending_action(PendingAction.UPDATE)] == [("1.md",)]
    assert state.list_records_by_pending_action(PendingAction.NONE) == []


def test_set_record_pending_remove_marks_id_for_gc(state):
    record = state.save_record(_record())
    state.set_record_pending_action(record, PendingAction.REMOVE)
    assert _item_ids(state) == {"1": "garbage_collection"}


def test_set_record_pending_action_missing_path(state):
    with pytest.raises(NotFound):
        state.set_record_pending_action(_record(), PendingAction.UPDATE)


def test_list_records_by_id_includes_every_state(state):
    a = state.save_record(_record(path=("a.md",)))
    state.save_record(_record(path=("b.md",)))
    state.set_record_pending_action(a, PendingAction.REMOVE)
    assert [r.path for r in state.list_records_by_id("1")] == [("a.md",), ("b.md",)]


def test_list_record_paths(state):
    state.save_record(_record(path=("b", "x.md"), id="2"))
    state.save_record(_record(path=("a.md",)))
    assert state.list_record_paths() == [("a.md",), ("b", "x.md")]


# ------------------------------------------------------------------
# Collection memberships
# ------------------------------------------------------------------

def test_set_record_collections_pending_rewrites_set(state):
    state.set_record_collections_pending("1", ["a", "b"])
    state.process_markers()

    state.set_record_collections_pending("1", ["b", "c"])

    assert _memberships(state) == {
        ("a", "1"): "remove",
        ("b", "1"): "update",
        ("c", "1"): "update",
    }
    assert state.list_collection_names_pending() == ["a", "b", "c"]
    assert state.list_collection_names() == ["b", "c"]


def test_set_record_collections_pending_empty_removes_all(state):
    state.set_record_collections_pending("1", ["a"])
    state.set_record_collections_pending("1", [])
    assert _memberships(state) == {("a", "1"): "remove"}


def test_list_collection_names_with_prefix(state):
    state.set_record_collections_pending("1", ["blog", "blog-en", "tag-x", "misc"])
    assert state.list_collection_names_with_prefix("blog") == ["blog", "blog-en"]
    assert state.list_collection_names_with_prefix("blog", "tag-") == ["blog", "blog-en", "tag-x"]
    assert state.list_collection_names_with_prefix() == ["blog", "blog-en", "misc", "tag-x"]


def test_list_collection_records_skips_removed(state):
    state.save_record(_record(id="1", path=("1.md",)))
    r2 = state.save_record(_record(id="2", path=("2.md",)))
    state.set_record_collections_pending("1", ["a"])
    state.set_record_collections_pending("2", ["a"])
    state.set_record_pending_action(r2, PendingAction.REMOVE)

    assert [r.id for r in state.list_collection_records("a")] == ["1"]
    assert state.count_collection_records("a") == 2


# ------------------------------------------------------------------
# Markers and transactions
# ------------------------------------------------------------------

def test_process_markers(state):
    keep = state.save_record(_record(id="1", path=("1.md",)))
    gone = state.save_record(_record(id="2", path=("2.md",)))
    state.set_record_pending_action(keep, PendingAction.UPDATE)
    state.set_record_pending_action(gone, PendingAction.REMOVE)
    state.set_record_collections_pending("1", ["a"])
    state.set_record_collections_pending("2", ["a"])
    state.set_record_collections_pending("2", [])
    state.mark_item_id_to_remove("2")

    state.process_markers()

    assert [r.path for r in state.list_records_by_pending_action(PendingAction.NONE)] == [("1.md",)]
    assert _memberships(state) == {("a", "1"): "none"}
    assert _item_ids(state) == {"1": "none"}
    assert state.find_record_by_path(["1.md"]).id_was is None


def test_transaction_commits(state):
    with state.transaction():
        state.save_record(_record())
    assert state.find_record("1")


def test_transaction_rolls_back_on_error(state):
    with pytest.raises(RuntimeError):
        with state.transaction():
            state.save_record(_record())
            raise RuntimeError("boom")
    with pytest.raises(NotFound):
        state.find_record("1")
    assert state.dump_table("item_ids") == []


def test_nested_transaction_rolls_back_inner_only(state):
    with state.transaction():
        state.save_record(_record(id="1", path=("1.md",)))
        with pytest.raises(RuntimeError):
            with state.transaction():
                state.save_record(_record(id="2", path=("2.md",)))
                raise RuntimeError("inner")
    assert state.list_record_paths() == [("1.md",)]


def test_state_persists_across_open(tmp_path):
    path = tmp_path / "cache" / "state.sqlite3"
    st = State.open(path)
    st.save_record(_record(mtime=EPOCH))
    st.close()

    st = State.open(path)
    try:
        assert st.find_record("1").mtime == EPOCH
    finally:
        st.close()


def test_dump_table_rejects_unknown_table(state):
    with pytest.raises(ValueError):
        state.dump_table("sqlite_master")
