"""Tests for the sync queue store."""

import json
from datetime import datetime, timezone

import pytest

from offline.models import EntityType, MutationAction
from offline.storage import MemoryKeyValueStorage, SqliteKeyValueStorage, StorageUnavailableError
from offline.store import DEAD_LETTER_KEY, SYNC_QUEUE_KEY, SyncQueueStore


class BrokenStorage:
    """Storage whose writes always fail (quota exceeded, disk full...)."""

    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        raise StorageUnavailableError("disk full")

    def delete(self, key):
        raise StorageUnavailableError("disk full")


class UnreadableStorage(BrokenStorage):
    def get(self, key):
        raise StorageUnavailableError("storage disabled")


def test_enqueue_increments_count_and_keeps_fifo_order(store):
    ids = []
    for page in range(1, 6):
        result = store.enqueue(EntityType.BOOKMARK, MutationAction.CREATE, {"book_id": "b1", "page_number": page})
        assert result.ok
        ids.append(result.mutation.id)
        assert store.count() == page

    assert [m.id for m in store.peek_all()] == ids
    assert [m.payload["page_number"] for m in store.peek_all()] == [1, 2, 3, 4, 5]


def test_enqueue_assigns_unique_id_and_timestamp(store):
    before = datetime.now(timezone.utc)
    first = store.enqueue("favorite", "create", {"book_id": "b1"}).mutation
    second = store.enqueue("favorite", "create", {"book_id": "b1"}).mutation

    assert first.id != second.id
    assert first.created_at >= before
    assert first.attempts == 0
    assert first.entity_type is EntityType.FAVORITE
    assert first.action is MutationAction.CREATE


def test_enqueue_rejects_unknown_entity_type(store):
    with pytest.raises(ValueError):
        store.enqueue("comment", "create", {})
    with pytest.raises(ValueError):
        store.enqueue("bookmark", "archive", {})
    assert store.count() == 0


def test_peek_all_is_idempotent(store):
    store.enqueue(EntityType.ANNOTATION, MutationAction.CREATE, {"id": "a1"})
    store.enqueue(EntityType.REVIEW, MutationAction.DELETE, {"id": "r1"})

    assert store.peek_all() == store.peek_all()
    assert store.count() == 2


def test_remove_deletes_only_matching_entry(store):
    a = store.enqueue(EntityType.BOOKMARK, MutationAction.CREATE, {"id": "1"}).mutation
    b = store.enqueue(EntityType.BOOKMARK, MutationAction.CREATE, {"id": "2"}).mutation
    c = store.enqueue(EntityType.BOOKMARK, MutationAction.CREATE, {"id": "3"}).mutation

    assert store.remove(b.id) is True
    assert [m.id for m in store.peek_all()] == [a.id, c.id]


def test_remove_unknown_id_is_noop(store):
    store.enqueue(EntityType.BOOKMARK, MutationAction.CREATE, {})
    assert store.remove("does-not-exist") is False
    assert store.count() == 1


def test_enqueue_storage_failure_returns_not_ok():
    store = SyncQueueStore(BrokenStorage())
    result = store.enqueue(EntityType.BOOKMARK, MutationAction.CREATE, {"book_id": "b1"})

    assert result.ok is False
    assert "disk full" in result.reason
    assert store.count() == 0


def test_enqueue_over_quota_returns_not_ok():
    store = SyncQueueStore(MemoryKeyValueStorage(max_value_bytes=400))
    assert store.enqueue(EntityType.ANNOTATION, MutationAction.CREATE, {"content": "short"}).ok
    result = store.enqueue(EntityType.ANNOTATION, MutationAction.CREATE, {"content": "x" * 1000})

    assert result.ok is False
    assert store.count() == 1


def test_unreadable_storage_reads_as_empty():
    store = SyncQueueStore(UnreadableStorage())
    assert store.peek_all() == []
    assert store.count() == 0
    assert store.last_synced_at() is None


def test_corrupt_queue_reads_as_empty(storage):
    storage.set(SYNC_QUEUE_KEY, "{not json")
    store = SyncQueueStore(storage)

    assert store.peek_all() == []
    assert store.enqueue(EntityType.FAVORITE, MutationAction.CREATE, {"book_id": "b1"}).ok
    assert store.count() == 1


def test_unreadable_records_are_skipped(storage):
    good = {
        "id": "m1",
        "entity_type": "bookmark",
        "action": "create",
        "payload": {"book_id": "b1"},
        "created_at": "2024-01-01T00:00:00+00:00",
    }
    storage.set(SYNC_QUEUE_KEY, json.dumps([good, {"entity_type": "spaceship"}]))

    assert [m.id for m in SyncQueueStore(storage).peek_all()] == ["m1"]


def test_queue_is_stored_as_single_json_array(storage, store):
    store.enqueue(EntityType.BOOKMARK, MutationAction.CREATE, {"book_id": "b1", "page_number": 42})

    raw = json.loads(storage.get(SYNC_QUEUE_KEY))
    assert isinstance(raw, list)
    assert raw[0]["entity_type"] == "bookmark"
    assert raw[0]["action"] == "create"
    assert raw[0]["payload"] == {"book_id": "b1", "page_number": 42}


def test_queue_survives_restart(tmp_path):
    db_path = tmp_path / "offline.db"
    first = SqliteKeyValueStorage(db_path)
    queued = SyncQueueStore(first).enqueue(EntityType.REVIEW, MutationAction.CREATE, {"rating": 4}).mutation
    first.close()

    second = SqliteKeyValueStorage(db_path)
    try:
        restored = SyncQueueStore(second).peek_all()
    finally:
        second.close()

    assert len(restored) == 1
    assert restored[0].id == queued.id
    assert restored[0].payload == {"rating": 4}


def test_record_failure_bumps_attempts(store):
    m = store.enqueue(EntityType.BOOKMARK, MutationAction.UPDATE, {"id": "bm1"}).mutation

    updated = store.record_failure(m.id, "HTTP 503: unavailable")
    assert updated.attempts == 1
    assert store.get(m.id).attempts == 1
    assert store.get(m.id).last_error == "HTTP 503: unavailable"
    assert store.get(m.id).payload == {"id": "bm1"}


def test_dead_letter_moves_entry_out_of_queue(storage, store):
    keep = store.enqueue(EntityType.BOOKMARK, MutationAction.CREATE, {"id": "1"}).mutation
    drop = store.enqueue(EntityType.FAVORITE, MutationAction.UPDATE, {"id": "2"}).mutation

    letter = store.dead_letter(drop.id, "unsupported")

    assert letter.mutation.id == drop.id
    assert [m.id for m in store.peek_all()] == [keep.id]
    assert [d.mutation.id for d in store.dead_letters()] == [drop.id]
    assert storage.get(DEAD_LETTER_KEY) is not None


def test_requeue_dead_letters_resets_attempts(store):
    m = store.enqueue(EntityType.BOOKMARK, MutationAction.CREATE, {"id": "1"}).mutation
    store.record_failure(m.id, "timeout")
    store.dead_letter(m.id, "gave up")

    assert store.requeue_dead_letters() == 1
    assert store.dead_letters() == []
    requeued = store.get(m.id)
    assert requeued.attempts == 0
    assert requeued.last_error is None


def test_clear_and_clear_dead_letters(store):
    a = store.enqueue(EntityType.BOOKMARK, MutationAction.CREATE, {}).mutation
    store.enqueue(EntityType.BOOKMARK, MutationAction.CREATE, {})
    store.dead_letter(a.id, "bad")

    assert store.clear() == 1
    assert store.count() == 0
    assert store.clear_dead_letters() == 1
    assert store.dead_letters() == []


def test_mark_synced_roundtrip(store):
    assert store.last_synced_at() is None
    when = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    store.mark_synced(when)
    assert store.last_synced_at() == when
