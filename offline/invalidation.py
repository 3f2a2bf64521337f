"""In-process pub/sub telling the UI layer which cached queries are stale."""

from __future__ import annotations

from typing import Callable, Iterable

from server.logging_config import get_logger

from .models import QUERY_KEYS, EntityType

logger = get_logger(__name__)

InvalidationHandler = Callable[[frozenset[str]], None]


def keys_for(entity_types: Iterable[EntityType]) -> frozenset[str]:
    """Query keys to invalidate after writes to these entity types."""
    return frozenset(key for entity_type in entity_types for key in QUERY_KEYS[entity_type])


class InvalidationBus:
    """Handlers receive the set of invalidated query keys.

    A failing handler is logged and does not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: list[InvalidationHandler] = []

    def subscribe(self, handler: InvalidationHandler) -> Callable[[], None]:
        """Register a handler. Returns a callable that unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, keys: Iterable[str]) -> frozenset[str]:
        keys = frozenset(keys)
        if not keys:
            return keys
        logger.debug(f"Invalidating {sorted(keys)}")
        for handler in list(self._handlers):
            try:
                handler(keys)
            except Exception:
                logger.exception(f"Invalidation handler {handler!r} failed")
        return keys

    def publish_for(self, entity_types: Iterable[EntityType]) -> frozenset[str]:
        return self.publish(keys_for(entity_types))
