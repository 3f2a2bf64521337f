"""Offline-capable reader actions.

Each action builds the row exactly as the remote table stores it. Online, the
write goes straight to the backend; offline (or when the backend cannot be
reached) the row is queued for the next sync pass.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel

from server.logging_config import get_logger
from server.moderation import ModerationResult, validate_fields

from .connectivity import ConnectivityMonitor
from .handlers import apply_mutation
from .models import EnqueueResult, EntityType, MutationAction, PendingMutation
from .remote import RemoteDataApi, RemoteError
from .store import SyncQueueStore

logger = get_logger(__name__)


class ContentRejectedError(ValueError):
    """User-written text failed moderation; nothing was sent or queued."""

    def __init__(self, result: ModerationResult):
        super().__init__(result.message or "Content rejected")
        self.result = result


class ActionResult(BaseModel):
    payload: dict[str, Any]
    queued: bool
    enqueue: Optional[EnqueueResult] = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def _moderate(**fields: Optional[str]) -> None:
    result = validate_fields(fields)
    if not result.is_clean:
        raise ContentRejectedError(result)


class OfflineActions:
    def __init__(
        self,
        store: SyncQueueStore,
        remote: RemoteDataApi,
        connectivity: ConnectivityMonitor,
        user_id: str,
    ):
        self.store = store
        self.remote = remote
        self.connectivity = connectivity
        self.user_id = user_id

    def _require_user(self) -> str:
        if not self.user_id:
            raise ValueError("A signed-in user is required (set [client] user_id)")
        return self.user_id

    async def _submit(
        self, entity_type: EntityType, action: MutationAction, payload: dict[str, Any]
    ) -> ActionResult:
        if self.connectivity.is_online:
            try:
                await apply_mutation(
                    self.remote,
                    PendingMutation(entity_type=entity_type, action=action, payload=payload),
                )
                return ActionResult(payload=payload, queued=False)
            except RemoteError as exc:
                if not exc.transient:
                    raise
                if exc.is_network_error:
                    self.connectivity.set_online(False)
                logger.info(f"Backend unavailable ({exc}), queueing {entity_type.value} {action.value}")

        result = self.store.enqueue(entity_type, action, payload)
        return ActionResult(payload=payload, queued=True, enqueue=result)

    # --- annotations ---

    async def add_annotation(
        self,
        book_id: str,
        page_number: int,
        annotation_type: str = "highlight",
        content: str = "",
        color: str = "yellow",
    ) -> ActionResult:
        _moderate(content=content)
        now = _now_iso()
        payload = {
            "id": _new_id(),
            "book_id": book_id,
            "user_id": self._require_user(),
            "page_number": page_number,
            "annotation_type": annotation_type,
            "content": content,
            "color": color,
            "created_at": now,
            "updated_at": now,
        }
        return await self._submit(EntityType.ANNOTATION, MutationAction.CREATE, payload)

    async def update_annotation(
        self, annotation_id: str, content: Optional[str] = None, color: Optional[str] = None
    ) -> ActionResult:
        _moderate(content=content)
        payload: dict[str, Any] = {"id": annotation_id, "updated_at": _now_iso()}
        if content is not None:
            payload["content"] = content
        if color is not None:
            payload["color"] = color
        return await self._submit(EntityType.ANNOTATION, MutationAction.UPDATE, payload)

    async def delete_annotation(self, annotation_id: str) -> ActionResult:
        return await self._submit(EntityType.ANNOTATION, MutationAction.DELETE, {"id": annotation_id})

    # --- bookmarks ---

    async def add_bookmark(
        self, book_id: str, page_number: int, title: Optional[str] = None, note: Optional[str] = None
    ) -> ActionResult:
        _moderate(title=title, note=note)
        now = _now_iso()
        payload = {
            "id": _new_id(),
            "book_id": book_id,
            "user_id": self._require_user(),
            "page_number": page_number,
            "title": title,
            "note": note,
            "created_at": now,
            "updated_at": now,
        }
        return await self._submit(EntityType.BOOKMARK, MutationAction.CREATE, payload)

    async def update_bookmark(
        self, bookmark_id: str, title: Optional[str] = None, note: Optional[str] = None
    ) -> ActionResult:
        _moderate(title=title, note=note)
        payload: dict[str, Any] = {"id": bookmark_id, "updated_at": _now_iso()}
        if title is not None:
            payload["title"] = title
        if note is not None:
            payload["note"] = note
        return await self._submit(EntityType.BOOKMARK, MutationAction.UPDATE, payload)

    async def delete_bookmark(self, bookmark_id: str) -> ActionResult:
        return await self._submit(EntityType.BOOKMARK, MutationAction.DELETE, {"id": bookmark_id})

    # --- reading progress ---

    async def update_progress(
        self,
        book_id: str,
        current_page: int,
        total_pages: Optional[int] = None,
        is_completed: Optional[bool] = None,
    ) -> ActionResult:
        now = _now_iso()
        payload: dict[str, Any] = {
            "book_id": book_id,
            "user_id": self._require_user(),
            "current_page": current_page,
            "last_read_at": now,
            "updated_at": now,
        }
        if total_pages is not None:
            payload["total_pages"] = total_pages
        if is_completed is not None:
            payload["is_completed"] = is_completed
        return await self._submit(EntityType.READING_PROGRESS, MutationAction.UPDATE, payload)

    # --- favorites ---

    async def add_favorite(self, book_id: str) -> ActionResult:
        payload = {
            "id": _new_id(),
            "book_id": book_id,
            "user_id": self._require_user(),
            "created_at": _now_iso(),
        }
        return await self._submit(EntityType.FAVORITE, MutationAction.CREATE, payload)

    async def remove_favorite(self, favorite_id: str) -> ActionResult:
        return await self._submit(EntityType.FAVORITE, MutationAction.DELETE, {"id": favorite_id})

    # --- reviews ---

    async def add_review(self, book_id: str, rating: int, review_text: Optional[str] = None) -> ActionResult:
        if not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")
        _moderate(review_text=review_text)
        now = _now_iso()
        payload = {
            "id": _new_id(),
            "book_id": book_id,
            "user_id": self._require_user(),
            "rating": rating,
            "review_text": review_text,
            "created_at": now,
            "updated_at": now,
        }
        return await self._submit(EntityType.REVIEW, MutationAction.CREATE, payload)

    async def update_review(
        self, review_id: str, rating: Optional[int] = None, review_text: Optional[str] = None
    ) -> ActionResult:
        if rating is not None and not 1 <= rating <= 5:
            raise ValueError("rating must be between 1 and 5")
        _moderate(review_text=review_text)
        payload: dict[str, Any] = {"id": review_id, "updated_at": _now_iso()}
        if rating is not None:
            payload["rating"] = rating
        if review_text is not None:
            payload["review_text"] = review_text
        return await self._submit(EntityType.REVIEW, MutationAction.UPDATE, payload)

    async def delete_review(self, review_id: str) -> ActionResult:
        return await self._submit(EntityType.REVIEW, MutationAction.DELETE, {"id": review_id})
