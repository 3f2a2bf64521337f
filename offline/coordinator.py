"""Sync coordinator: replays the pending-mutation queue against the remote tables.

One pass takes a snapshot of the queue and replays it in insertion order.
Successful entries are removed; failed ones stay for the next pass and are
dead-lettered once they fail permanently or `max_attempts` times. Nothing
raises out of `sync_all`; the outcome is returned as a `SyncReport`.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from server.logging_config import get_logger

from .connectivity import ConnectivityMonitor
from .handlers import UnsupportedMutationError, apply_mutation
from .invalidation import InvalidationBus
from .models import EntityType, PendingMutation, SyncFailure, SyncReport
from .remote import RemoteDataApi, RemoteError
from .storage import StorageUnavailableError
from .store import SyncQueueStore

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_AUTO_SYNC_DELAY = 2.0


def _classify(exc: Exception) -> bool:
    """True if retrying later may succeed."""
    if isinstance(exc, RemoteError):
        return exc.transient
    if isinstance(exc, UnsupportedMutationError):
        return False
    return True


class SyncCoordinator:
    """Owns the sync state for one client; construct once per process."""

    def __init__(
        self,
        store: SyncQueueStore,
        remote: RemoteDataApi,
        connectivity: ConnectivityMonitor,
        bus: Optional[InvalidationBus] = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        auto_sync_delay: float = DEFAULT_AUTO_SYNC_DELAY,
    ):
        self.store = store
        self.remote = remote
        self.connectivity = connectivity
        self.bus = bus or InvalidationBus()
        self.max_attempts = max(1, max_attempts)
        self.auto_sync_delay = auto_sync_delay
        self._active_passes = 0
        self._auto_sync_task: Optional[asyncio.Task] = None
        self._detach = None

    @property
    def is_syncing(self) -> bool:
        return self._active_passes > 0

    def pending_count(self) -> int:
        return self.store.count()

    async def sync_all(self, force: bool = False) -> SyncReport:
        """Replay every queued mutation once.

        Skipped while offline, and while another pass runs unless `force`.
        """
        if not self.connectivity.is_online:
            logger.debug("Offline, sync skipped")
            return SyncReport(status="offline")
        if self.is_syncing and not force:
            logger.debug("Sync already in progress, skipped")
            return SyncReport(status="busy")

        try:
            snapshot = self.store.snapshot()
        except StorageUnavailableError as exc:
            logger.error(f"Offline storage unavailable, sync skipped: {exc}")
            return SyncReport(status="storage_unavailable")
        if not snapshot:
            return SyncReport(status="empty")

        # Claimed before the first await so an overlapping call sees it
        self._active_passes += 1
        try:
            return await self._run_pass(snapshot)
        finally:
            self._active_passes -= 1

    async def _run_pass(self, snapshot: list[PendingMutation]) -> SyncReport:
        report = SyncReport(status="completed", attempted=len(snapshot))
        touched: set[EntityType] = set()
        logger.info(f"Syncing {len(snapshot)} pending change(s)...")

        for mutation in snapshot:
            try:
                try:
                    await apply_mutation(self.remote, mutation)
                except Exception as exc:
                    report.failures.append(self._record_failure(mutation, exc))
                    continue
                self.store.remove(mutation.id)
                report.succeeded += 1
                touched.add(mutation.entity_type)
            except StorageUnavailableError as exc:
                logger.error(f"Offline storage unavailable, stopping sync pass: {exc}")
                report.status = "storage_unavailable"
                break

        if touched:
            report.invalidated = sorted(self.bus.publish_for(touched))

        if report.status == "completed":
            self.store.mark_synced()

        if report.all_failed:
            logger.error(f"All {report.attempted} pending change(s) failed to sync")
        elif report.failed:
            logger.warning(f"Synced {report.succeeded} change(s), {report.failed} failed")
        else:
            logger.info(f"Synced {report.succeeded} change(s)")
        return report

    def _record_failure(self, mutation: PendingMutation, exc: Exception) -> SyncFailure:
        transient = _classify(exc)
        reason = str(exc) or type(exc).__name__
        label = f"{mutation.entity_type.value} {mutation.action.value} ({mutation.id})"

        if not isinstance(exc, (RemoteError, UnsupportedMutationError)):
            logger.exception(f"Unexpected error syncing {label}")
        else:
            logger.warning(f"Sync failed for {label}: {reason}")

        dead = False
        if not transient:
            dead = self.store.dead_letter(mutation.id, reason) is not None
        else:
            updated = self.store.record_failure(mutation.id, reason)
            if updated is not None and updated.attempts >= self.max_attempts:
                dead = self.store.dead_letter(
                    mutation.id, f"Gave up after {updated.attempts} attempts: {reason}"
                ) is not None

        return SyncFailure(
            mutation_id=mutation.id,
            entity_type=mutation.entity_type,
            action=mutation.action,
            reason=reason,
            transient=transient,
            dead_lettered=dead,
        )

    # --- automatic sync on reconnect ---

    def attach(self, monitor: Optional[ConnectivityMonitor] = None) -> None:
        """Sync automatically, after a short delay, whenever the connection comes back."""
        self.detach()
        monitor = monitor or self.connectivity
        self._detach = monitor.add_listener(self._on_connectivity_change)

    def detach(self) -> None:
        if self._detach is not None:
            self._detach()
            self._detach = None
        self._cancel_auto_sync()

    def _cancel_auto_sync(self) -> None:
        if self._auto_sync_task is not None and not self._auto_sync_task.done():
            self._auto_sync_task.cancel()
        self._auto_sync_task = None

    def _on_connectivity_change(self, online: bool) -> None:
        self._cancel_auto_sync()
        if not online or self.pending_count() == 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, automatic sync not scheduled")
            return
        self._auto_sync_task = loop.create_task(self._delayed_sync())

    async def _delayed_sync(self) -> SyncReport:
        await asyncio.sleep(self.auto_sync_delay)
        return await self.sync_all()

    @property
    def auto_sync_task(self) -> Optional[asyncio.Task]:
        return self._auto_sync_task
