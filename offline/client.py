"""Wiring of the offline client: one instance of each collaborator per process."""

from __future__ import annotations

import dataclasses
from typing import Optional

import httpx

from server.config import ShelfsyncConfig

from .actions import OfflineActions
from .connectivity import ConnectivityMonitor
from .coordinator import SyncCoordinator
from .invalidation import InvalidationBus
from .remote import HttpRemoteApi
from .storage import KeyValueStorage, SqliteKeyValueStorage
from .store import SyncQueueStore


@dataclasses.dataclass
class OfflineClient:
    store: SyncQueueStore
    remote: HttpRemoteApi
    connectivity: ConnectivityMonitor
    bus: InvalidationBus
    coordinator: SyncCoordinator
    actions: OfflineActions

    @classmethod
    def from_config(
        cls,
        config: ShelfsyncConfig,
        storage: Optional[KeyValueStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        online: bool = False,
    ) -> "OfflineClient":
        """Build a client. Connectivity starts offline until the first check()."""
        store = SyncQueueStore(storage or SqliteKeyValueStorage(config.offline_storage_path))
        remote = HttpRemoteApi(
            config.client.remote_url,
            token=config.client.token,
            timeout=config.client.request_timeout_seconds,
            transport=transport,
        )
        connectivity = ConnectivityMonitor(health_check=remote.health, online=online)
        bus = InvalidationBus()
        coordinator = SyncCoordinator(
            store,
            remote,
            connectivity,
            bus,
            max_attempts=config.sync.max_attempts,
            auto_sync_delay=config.sync.auto_sync_delay_seconds,
        )
        actions = OfflineActions(store, remote, connectivity, config.client.user_id)
        return cls(
            store=store,
            remote=remote,
            connectivity=connectivity,
            bus=bus,
            coordinator=coordinator,
            actions=actions,
        )

    async def aclose(self) -> None:
        self.coordinator.detach()
        self.connectivity.stop()
        await self.remote.aclose()
        if isinstance(self.store.storage, SqliteKeyValueStorage):
            self.store.storage.close()
