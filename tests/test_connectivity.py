"""Tests for the connectivity monitor and invalidation bus."""

import asyncio

import pytest

from offline.connectivity import ConnectivityMonitor
from offline.invalidation import InvalidationBus, keys_for
from offline.models import EntityType


def test_listeners_hear_only_changes():
    monitor = ConnectivityMonitor(online=False)
    heard = []
    remove = monitor.add_listener(heard.append)

    assert monitor.set_online(False) is False
    assert monitor.set_online(True) is True
    monitor.set_online(True)
    remove()
    monitor.set_online(False)

    assert heard == [True]


def test_failing_listener_does_not_block_others():
    monitor = ConnectivityMonitor(online=True)
    heard = []

    def broken(online):
        raise RuntimeError("listener bug")

    monitor.add_listener(broken)
    monitor.add_listener(heard.append)
    monitor.set_online(False)

    assert heard == [False]


@pytest.mark.asyncio
async def test_check_uses_health_check():
    answers = iter([True, False])

    async def health():
        return next(answers)

    monitor = ConnectivityMonitor(health_check=health, online=False)
    assert await monitor.check() is True
    assert monitor.is_online
    assert await monitor.check() is False
    assert not monitor.is_online


@pytest.mark.asyncio
async def test_raising_health_check_means_offline():
    async def health():
        raise OSError("no route to host")

    monitor = ConnectivityMonitor(health_check=health, online=True)
    assert await monitor.check() is False


@pytest.mark.asyncio
async def test_run_polls_until_stopped():
    calls = []

    async def health():
        calls.append(1)
        if len(calls) == 3:
            monitor.stop()
        return True

    monitor = ConnectivityMonitor(health_check=health, online=False)
    await asyncio.wait_for(monitor.run(interval=0.01), timeout=2)

    assert len(calls) == 3


def test_keys_for_entity_types():
    assert keys_for([EntityType.READING_PROGRESS]) == {"reading-progress", "currently-reading"}
    assert keys_for([EntityType.ANNOTATION, EntityType.FAVORITE]) == {"book-annotations", "favorites"}
    assert keys_for([]) == frozenset()


def test_bus_publish_and_unsubscribe():
    bus = InvalidationBus()
    received = []
    unsubscribe = bus.subscribe(received.append)

    bus.publish_for([EntityType.BOOKMARK])
    unsubscribe()
    bus.publish_for([EntityType.REVIEW])

    assert received == [frozenset({"book-bookmarks"})]


def test_bus_skips_empty_publish():
    bus = InvalidationBus()
    received = []
    bus.subscribe(received.append)

    assert bus.publish([]) == frozenset()
    assert received == []
