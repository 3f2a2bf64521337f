"""Offline client replaying its queue against the real table API."""

import httpx
import pytest
import pytest_asyncio

from offline.client import OfflineClient
from offline.models import EntityType, MutationAction
from offline.storage import MemoryKeyValueStorage
from server.api import app


@pytest_asyncio.fixture
async def offline_client(test_config, test_db, monkeypatch):
    monkeypatch.setattr("server.api.get_config", lambda: test_config)
    client = OfflineClient.from_config(
        test_config,
        storage=MemoryKeyValueStorage(),
        transport=httpx.ASGITransport(app=app),
    )
    yield client
    await client.aclose()


@pytest.mark.asyncio
async def test_changes_made_offline_reach_the_backend(offline_client):
    actions = offline_client.actions
    bookmark = await actions.add_bookmark("b1", 42, title="Start here")
    await actions.update_progress("b1", 42, total_pages=300)
    await actions.update_progress("b1", 57)
    assert bookmark.queued
    assert offline_client.store.count() == 3

    assert await offline_client.connectivity.check() is True
    report = await offline_client.coordinator.sync_all()

    assert report.status == "completed"
    assert report.succeeded == 3
    assert offline_client.store.count() == 0

    bookmarks = await offline_client.remote.select("book_bookmarks")
    assert [b["id"] for b in bookmarks] == [bookmark.payload["id"]]
    progress = await offline_client.remote.select("reading_progress", {"book_id": "b1"})
    assert len(progress) == 1
    assert progress[0]["current_page"] == 57
    assert progress[0]["total_pages"] == 300


@pytest.mark.asyncio
async def test_rejected_change_is_dead_lettered(offline_client):
    store = offline_client.store
    store.enqueue(EntityType.BOOKMARK, MutationAction.UPDATE, {"id": "missing", "note": "x"})
    store.enqueue(EntityType.FAVORITE, MutationAction.CREATE, {"id": "f1", "book_id": "b1", "user_id": "user-1"})

    await offline_client.connectivity.check()
    report = await offline_client.coordinator.sync_all()

    assert report.succeeded == 1
    assert report.failures[0].dead_lettered is True
    assert "404" in store.dead_letters()[0].reason
    assert store.count() == 0


@pytest.mark.asyncio
async def test_replayed_delete_is_harmless(offline_client):
    await offline_client.connectivity.check()
    favorite = await offline_client.actions.add_favorite("b1")
    assert favorite.queued is False

    store = offline_client.store
    store.enqueue(EntityType.FAVORITE, MutationAction.DELETE, {"id": favorite.payload["id"]})
    store.enqueue(EntityType.FAVORITE, MutationAction.DELETE, {"id": favorite.payload["id"]})
    report = await offline_client.coordinator.sync_all()

    assert report.succeeded == 2
    assert await offline_client.remote.select("favorites") == []
