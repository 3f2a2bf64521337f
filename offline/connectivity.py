"""Online/offline signal for the sync client.

The flag is either set directly (`set_online`) or refreshed by a health check
(normally a GET of the backend's /api/health). Listeners only hear about changes.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from server.logging_config import get_logger

logger = get_logger(__name__)

ConnectivityListener = Callable[[bool], None]
HealthCheck = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    def __init__(self, health_check: Optional[HealthCheck] = None, online: bool = True):
        self._health_check = health_check
        self._online = online
        self._listeners: list[ConnectivityListener] = []
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, listener: ConnectivityListener) -> Callable[[], None]:
        """Register a listener called with the new state on every change."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def set_online(self, online: bool) -> bool:
        """Update the flag. Returns True if the state changed."""
        if online == self._online:
            return False
        self._online = online
        logger.info("Connection restored" if online else "Connection lost, working offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception(f"Connectivity listener {listener!r} failed")
        return True

    async def check(self) -> bool:
        """Run the health check once and update the flag. Without one the flag is kept."""
        if self._health_check is None:
            return self._online
        try:
            online = bool(await self._health_check())
        except Exception as exc:
            logger.debug(f"Connectivity check raised {exc!r}")
            online = False
        self.set_online(online)
        return online

    async def run(self, interval: float) -> None:
        """Check every `interval` seconds until stop() is called."""
        self._stop_event = asyncio.Event()
        while not self._stop_event.is_set():
            await self.check()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
