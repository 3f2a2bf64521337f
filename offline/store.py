"""Sync queue store: the ordered, durable list of pending mutations.

The whole queue lives under one storage key as a JSON array and is read and
written wholesale. Dead letters and the last sync time use their own keys.
Single-process only: two clients sharing one storage file are not coordinated.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from server.logging_config import get_logger

from .models import DeadLetter, EnqueueResult, EntityType, MutationAction, PendingMutation
from .storage import KeyValueStorage, StorageUnavailableError

logger = get_logger(__name__)

SYNC_QUEUE_KEY = "shelfsync-sync-queue"
DEAD_LETTER_KEY = "shelfsync-dead-letters"
LAST_SYNC_KEY = "shelfsync-last-sync"

T = TypeVar("T", bound=BaseModel)


class SyncQueueStore:
    """FIFO queue of PendingMutation records over a KeyValueStorage."""

    def __init__(
        self,
        storage: KeyValueStorage,
        key: str = SYNC_QUEUE_KEY,
        dead_letter_key: str = DEAD_LETTER_KEY,
        last_sync_key: str = LAST_SYNC_KEY,
    ):
        self.storage = storage
        self.key = key
        self.dead_letter_key = dead_letter_key
        self.last_sync_key = last_sync_key

    # --- serialization ---

    def _load(self, key: str, model: type[T]) -> List[T]:
        """Read a JSON array of records. Unreadable content reads as empty."""
        raw = self.storage.get(key)
        if not raw:
            return []
        try:
            items = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.error(f"Corrupt data under {key!r}, treating as empty: {exc}")
            return []
        if not isinstance(items, list):
            logger.error(f"Unexpected data under {key!r} (not a list), treating as empty")
            return []

        records = []
        for item in items:
            try:
                records.append(model.model_validate(item))
            except ValidationError as exc:
                logger.warning(f"Dropping unreadable record under {key!r}: {exc.error_count()} error(s)")
        return records

    def _save(self, key: str, records: List[BaseModel]) -> None:
        self.storage.set(key, json.dumps([r.model_dump(mode="json") for r in records]))

    def _read_queue(self) -> List[PendingMutation]:
        return self._load(self.key, PendingMutation)

    # --- queue ---

    def enqueue(
        self,
        entity_type: EntityType | str,
        action: MutationAction | str,
        payload: Optional[dict[str, Any]] = None,
    ) -> EnqueueResult:
        """Append a mutation with a fresh id and timestamp.

        Unknown entity types or actions raise ValueError. Storage failures do
        not raise: they are logged and returned as ``EnqueueResult(ok=False)``.
        """
        mutation = PendingMutation(
            entity_type=EntityType(entity_type),
            action=MutationAction(action),
            payload=dict(payload or {}),
        )
        try:
            queue = self._read_queue()
            queue.append(mutation)
            self._save(self.key, queue)
        except StorageUnavailableError as exc:
            logger.warning(
                f"Could not queue {mutation.entity_type.value} {mutation.action.value}: {exc}"
            )
            return EnqueueResult(ok=False, mutation=mutation, reason=str(exc))

        logger.debug(f"Queued {mutation.entity_type.value} {mutation.action.value} ({mutation.id})")
        return EnqueueResult(ok=True, mutation=mutation)

    def peek_all(self) -> List[PendingMutation]:
        """Current queue in insertion order; never mutates storage."""
        try:
            return self._read_queue()
        except StorageUnavailableError as exc:
            logger.error(f"Cannot read sync queue: {exc}")
            return []

    def snapshot(self) -> List[PendingMutation]:
        """Like peek_all, but raises StorageUnavailableError instead of reading as empty."""
        return self._read_queue()

    def count(self) -> int:
        return len(self.peek_all())

    def get(self, mutation_id: str) -> Optional[PendingMutation]:
        return next((m for m in self.peek_all() if m.id == mutation_id), None)

    def remove(self, mutation_id: str) -> bool:
        """Delete one entry by id. Raises StorageUnavailableError if the write fails."""
        queue = self._read_queue()
        remaining = [m for m in queue if m.id != mutation_id]
        if len(remaining) == len(queue):
            return False
        self._save(self.key, remaining)
        return True

    def _replace(self, mutation_id: str, update: Callable[[PendingMutation], PendingMutation]) -> Optional[PendingMutation]:
        queue = self._read_queue()
        updated = None
        for index, mutation in enumerate(queue):
            if mutation.id == mutation_id:
                updated = update(mutation)
                queue[index] = updated
                break
        if updated is not None:
            self._save(self.key, queue)
        return updated

    def record_failure(self, mutation_id: str, reason: str) -> Optional[PendingMutation]:
        """Bump the attempt counter of an entry and remember why it failed."""
        return self._replace(
            mutation_id,
            lambda m: m.model_copy(update={"attempts": m.attempts + 1, "last_error": reason}),
        )

    def clear(self) -> int:
        """Drop every pending entry. Returns how many were dropped."""
        dropped = len(self._read_queue())
        self.storage.delete(self.key)
        return dropped

    # --- dead letters ---

    def dead_letters(self) -> List[DeadLetter]:
        try:
            return self._load(self.dead_letter_key, DeadLetter)
        except StorageUnavailableError as exc:
            logger.error(f"Cannot read dead letters: {exc}")
            return []

    def dead_letter(self, mutation_id: str, reason: str) -> Optional[DeadLetter]:
        """Move an entry from the queue to the dead-letter list."""
        queue = self._read_queue()
        mutation = next((m for m in queue if m.id == mutation_id), None)
        if mutation is None:
            return None
        letter = DeadLetter(mutation=mutation, reason=reason)
        letters = self._load(self.dead_letter_key, DeadLetter)
        letters.append(letter)
        # Dead letter first: a failure between the writes leaves a duplicate, never a loss
        self._save(self.dead_letter_key, letters)
        self._save(self.key, [m for m in queue if m.id != mutation_id])
        logger.warning(
            f"Dead-lettered {mutation.entity_type.value} {mutation.action.value} ({mutation.id}): {reason}"
        )
        return letter

    def requeue_dead_letters(self) -> int:
        """Put every dead letter back at the end of the queue with a fresh attempt count."""
        letters = self._load(self.dead_letter_key, DeadLetter)
        if not letters:
            return 0
        queue = self._read_queue()
        known = {m.id for m in queue}
        for letter in letters:
            if letter.mutation.id not in known:
                queue.append(letter.mutation.model_copy(update={"attempts": 0, "last_error": None}))
        self._save(self.key, queue)
        self.storage.delete(self.dead_letter_key)
        return len(letters)

    def clear_dead_letters(self) -> int:
        dropped = len(self._load(self.dead_letter_key, DeadLetter))
        self.storage.delete(self.dead_letter_key)
        return dropped

    # --- last sync ---

    def mark_synced(self, when: Optional[datetime] = None) -> None:
        when = when or datetime.now(timezone.utc)
        try:
            self.storage.set(self.last_sync_key, when.isoformat())
        except StorageUnavailableError as exc:
            logger.warning(f"Could not record last sync time: {exc}")

    def last_synced_at(self) -> Optional[datetime]:
        try:
            raw = self.storage.get(self.last_sync_key)
        except StorageUnavailableError:
            return None
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None
