"""Queue records and results for the offline sync client."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EntityType(str, Enum):
    ANNOTATION = "annotation"
    BOOKMARK = "bookmark"
    READING_PROGRESS = "reading_progress"
    FAVORITE = "favorite"
    REVIEW = "review"


class MutationAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# Cache keys the UI layer refreshes after a sync touched an entity type.
QUERY_KEYS: dict[EntityType, tuple[str, ...]] = {
    EntityType.ANNOTATION: ("book-annotations",),
    EntityType.BOOKMARK: ("book-bookmarks",),
    EntityType.READING_PROGRESS: ("reading-progress", "currently-reading"),
    EntityType.FAVORITE: ("favorites",),
    EntityType.REVIEW: ("book-reviews",),
}


class PendingMutation(BaseModel):
    """A create/update/delete recorded locally while the remote write was not possible.

    Entity type, action and payload never change once queued; `attempts` and
    `last_error` are retry bookkeeping, updated by replacing the record.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    entity_type: EntityType
    action: MutationAction
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_now)
    attempts: int = 0
    last_error: Optional[str] = None


class DeadLetter(BaseModel):
    """A mutation taken out of the queue after failing permanently or too often."""

    mutation: PendingMutation
    reason: str
    failed_at: datetime = Field(default_factory=_now)


class EnqueueResult(BaseModel):
    ok: bool
    mutation: Optional[PendingMutation] = None
    reason: Optional[str] = None


class SyncFailure(BaseModel):
    mutation_id: str
    entity_type: EntityType
    action: MutationAction
    reason: str
    transient: bool
    dead_lettered: bool = False


SyncStatus = Literal["completed", "offline", "busy", "empty", "storage_unavailable"]


class SyncReport(BaseModel):
    """Outcome of one sync_all() call."""

    status: SyncStatus
    attempted: int = 0
    succeeded: int = 0
    failures: list[SyncFailure] = Field(default_factory=list)
    invalidated: list[str] = Field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def dead_lettered(self) -> int:
        return sum(1 for f in self.failures if f.dead_lettered)

    @property
    def ran(self) -> bool:
        return self.attempted > 0

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.succeeded == 0 and self.failed == self.attempted
