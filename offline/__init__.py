"""Offline sync client for Shelfsync.

Queues annotation, bookmark, reading-progress, favorite and review writes
while offline and replays them against the backend when the connection returns.
"""

from .coordinator import SyncCoordinator
from .models import EntityType, MutationAction, PendingMutation, SyncReport
from .store import SyncQueueStore

__all__ = [
    "EntityType",
    "MutationAction",
    "PendingMutation",
    "SyncCoordinator",
    "SyncQueueStore",
    "SyncReport",
]
