"""Replay of one pending mutation against the remote tables.

The (entity type, action) pair selects the remote call:

    annotation / bookmark / review   create -> insert, update -> update by id, delete -> delete by id
    reading_progress                 create, update -> upsert on (book_id, user_id), delete -> delete by key
    favorite                         create -> insert, delete -> delete by id (no update)
"""

from __future__ import annotations

from typing import Any

from .models import EntityType, MutationAction, PendingMutation
from .remote import RemoteDataApi

TABLES: dict[EntityType, str] = {
    EntityType.ANNOTATION: "book_annotations",
    EntityType.BOOKMARK: "book_bookmarks",
    EntityType.READING_PROGRESS: "reading_progress",
    EntityType.FAVORITE: "favorites",
    EntityType.REVIEW: "book_reviews",
}

PROGRESS_CONFLICT_COLUMNS = ("book_id", "user_id")


class UnsupportedMutationError(Exception):
    """The mutation can never be replayed (unsupported pair or malformed payload)."""


def _require(payload: dict[str, Any], *columns: str) -> dict[str, Any]:
    missing = [c for c in columns if payload.get(c) in (None, "")]
    if missing:
        raise UnsupportedMutationError(f"Payload is missing {', '.join(missing)}")
    return {c: payload[c] for c in columns}


async def apply_mutation(remote: RemoteDataApi, mutation: PendingMutation) -> None:
    """Perform the remote write for a mutation. Raises RemoteError or UnsupportedMutationError."""
    table = TABLES[mutation.entity_type]
    payload = mutation.payload

    match (mutation.entity_type, mutation.action):
        case (EntityType.READING_PROGRESS, MutationAction.CREATE | MutationAction.UPDATE):
            _require(payload, *PROGRESS_CONFLICT_COLUMNS)
            await remote.upsert(table, payload, PROGRESS_CONFLICT_COLUMNS)
        case (EntityType.READING_PROGRESS, MutationAction.DELETE):
            await remote.delete(table, _require(payload, *PROGRESS_CONFLICT_COLUMNS))
        case (EntityType.FAVORITE, MutationAction.UPDATE):
            raise UnsupportedMutationError("Favorites cannot be updated, only created or deleted")
        case (
            EntityType.ANNOTATION | EntityType.BOOKMARK | EntityType.FAVORITE | EntityType.REVIEW,
            MutationAction.CREATE,
        ):
            await remote.insert(table, payload)
        case (EntityType.ANNOTATION | EntityType.BOOKMARK | EntityType.REVIEW, MutationAction.UPDATE):
            row_id = _require(payload, "id")["id"]
            changes = {k: v for k, v in payload.items() if k != "id"}
            await remote.update(table, row_id, changes)
        case (
            EntityType.ANNOTATION | EntityType.BOOKMARK | EntityType.FAVORITE | EntityType.REVIEW,
            MutationAction.DELETE,
        ):
            await remote.delete(table, _require(payload, "id"))
        case _:
            raise UnsupportedMutationError(
                f"No handler for {mutation.entity_type.value} {mutation.action.value}"
            )
