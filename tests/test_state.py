"""Tests for librarian.watcher.state."""

import json

import pytest

from librarian.watcher.state import SyncState, SyncStateStore


@pytest.fixture
def store(tmp_path):
    return SyncStateStore(tmp_path / ".librarian" / "state.json")


def _raw(store):
    return json.loads(store.path.read_text(encoding="utf-8"))


class TestSyncState:
    def test_camel_case_round_trip(self):
        state = SyncState("abc", True, "d1")
        assert state.to_dict() == {
            "lastProcessedRevision": "abc",
            "isProcessing": True,
            "lastDraftDigest": "d1",
        }
        assert SyncState.from_dict(state.to_dict()) == state

    def test_from_partial_dict(self):
        assert SyncState.from_dict({}) == SyncState()
        assert SyncState.from_dict({"lastProcessedRevision": ""}).last_processed_revision is None


class TestSyncStateStore:
    def test_missing_file_defaults(self, store):
        assert store.load() == SyncState()

    def test_corrupt_file_defaults(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{broken", encoding="utf-8")
        assert store.load() == SyncState()

    def test_non_object_defaults(self, store):
        store.path.parent.mkdir(parents=True)
        store.path.write_text("[1, 2]", encoding="utf-8")
        assert store.load() == SyncState()

    def test_reset_stale_creates_file(self, store):
        assert store.reset_stale() is False
        assert _raw(store) == SyncState().to_dict()

    def test_reset_stale_clears_flag(self, store):
        store.save(SyncState("abc", is_processing=True))
        assert store.reset_stale() is True
        state = store.load()
        assert not state.is_processing
        assert state.last_processed_revision == "abc"

    def test_try_begin_is_exclusive(self, store):
        claimed = store.try_begin()
        assert claimed is not None and claimed.is_processing
        assert store.try_begin() is None
        assert _raw(store)["isProcessing"] is True

    def test_finish_moves_watermark(self, store):
        store.try_begin()
        state = store.finish(revision="r2", draft_digest=None)
        assert state == SyncState("r2", False, None)
        assert store.load() == state

    def test_finish_without_arguments_keeps_fields(self, store):
        store.save(SyncState("r1", False, "d1"))
        store.try_begin()
        assert store.finish() == SyncState("r1", False, "d1")

    def test_set_watermark_clears_digest(self, store):
        store.save(SyncState("r1", False, "d1"))
        assert store.set_watermark("r9") == SyncState("r9", False, None)
        assert store.set_watermark(None).last_processed_revision is None

    def test_no_lock_file_left(self, store):
        store.try_begin()
        store.finish(revision="r1")
        assert not (store.path.parent / "state.json.lock").exists()
