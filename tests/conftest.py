"""Shared fixtures for Shelfsync tests."""

import asyncio
from typing import Any, Callable, Optional

import pytest
from fastapi.testclient import TestClient
from sqlmodel import create_engine

from offline.connectivity import ConnectivityMonitor
from offline.storage import MemoryKeyValueStorage
from offline.store import SyncQueueStore
from server.config import ApiConfig, ClientConfig, ServerConfig, ShelfsyncConfig, SyncConfig
from server.database import init_db


class StubRemote:
    """Records every remote write; `fail` decides per call whether it raises."""

    def __init__(self, fail: Optional[Callable[[int, str, str, Any], Optional[Exception]]] = None):
        self.calls: list[tuple[str, str, Any]] = []
        self.fail = fail
        self.gate: Optional[asyncio.Event] = None
        self.started = asyncio.Event()

    async def _call(self, op: str, table: str, data: Any) -> None:
        self.calls.append((op, table, data))
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.fail is not None:
            exc = self.fail(len(self.calls), op, table, data)
            if exc is not None:
                raise exc

    async def insert(self, table, row):
        await self._call("insert", table, row)
        return row

    async def update(self, table, row_id, changes):
        await self._call("update", table, {"id": row_id, **changes})
        return changes

    async def upsert(self, table, row, on_conflict=("id",)):
        await self._call("upsert", table, (row, tuple(on_conflict)))
        return row

    async def delete(self, table, match):
        await self._call("delete", table, match)
        return 1


@pytest.fixture
def storage():
    return MemoryKeyValueStorage()


@pytest.fixture
def store(storage):
    return SyncQueueStore(storage)


@pytest.fixture
def remote():
    return StubRemote()


@pytest.fixture
def online():
    return ConnectivityMonitor(online=True)


@pytest.fixture
def test_config():
    """Open API (no secret) with the client pointing at the test server."""
    return ShelfsyncConfig(
        server=ServerConfig(),
        api=ApiConfig(),
        client=ClientConfig(remote_url="http://testserver", user_id="user-1"),
        sync=SyncConfig(auto_sync_delay_seconds=0),
    )


@pytest.fixture
def test_db(tmp_path, monkeypatch):
    """Create a test database."""
    db_file = tmp_path / "library.db"
    monkeypatch.setattr("server.database.DB_PATH", db_file, raising=True)

    engine = create_engine(f"sqlite:///{db_file}", connect_args={"check_same_thread": False})
    monkeypatch.setattr("server.database.engine", engine, raising=True)

    init_db()
    return engine


@pytest.fixture
def client(test_config, test_db, monkeypatch):
    """Create a test client."""
    from server.api import app

    monkeypatch.setattr("server.api.get_config", lambda: test_config)
    return TestClient(app)


@pytest.fixture
def make_remote():
    """Factory for stub remotes that fail on chosen calls."""
    return StubRemote
