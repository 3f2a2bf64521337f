"""Durable key-value storage for the offline client.

The queue is small and always read and written whole, so a single
key -> text table is enough. `SqliteKeyValueStorage` keeps it in
`offline.db`; `MemoryKeyValueStorage` is for ephemeral sessions and tests.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel

from server.database import enable_wal, make_engine
from server.logging_config import get_logger

logger = get_logger(__name__)


class StorageUnavailableError(Exception):
    """Raised when the storage cannot be read or written (I/O error, quota exceeded)."""


class KeyValueStorage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


def _check_quota(key: str, value: str, max_value_bytes: Optional[int]) -> None:
    if max_value_bytes is not None and len(value.encode("utf-8")) > max_value_bytes:
        raise StorageUnavailableError(
            f"Quota exceeded writing {key!r} ({len(value)} chars > {max_value_bytes} bytes)"
        )


class KeyValueEntry(SQLModel, table=True):
    __tablename__ = "kv_store"

    key: str = Field(primary_key=True)
    value: str
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SqliteKeyValueStorage:
    """Key-value storage in a SQLite file, one row per key."""

    def __init__(self, db_path: Path, max_value_bytes: Optional[int] = None):
        self.db_path = db_path
        self.max_value_bytes = max_value_bytes
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self.engine = make_engine(db_path)
            enable_wal(self.engine)
            SQLModel.metadata.create_all(self.engine, tables=[KeyValueEntry.__table__])
        except (OSError, SQLAlchemyError) as exc:
            raise StorageUnavailableError(f"Cannot open offline storage {db_path}: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        try:
            with Session(self.engine) as session:
                entry = session.get(KeyValueEntry, key)
                return entry.value if entry else None
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Cannot read {key!r}: {exc}") from exc

    def set(self, key: str, value: str) -> None:
        _check_quota(key, value, self.max_value_bytes)
        try:
            with Session(self.engine) as session:
                entry = session.get(KeyValueEntry, key)
                if entry is None:
                    entry = KeyValueEntry(key=key, value=value)
                else:
                    entry.value = value
                    entry.updated_at = datetime.now(timezone.utc)
                session.add(entry)
                session.commit()
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Cannot write {key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            with Session(self.engine) as session:
                entry = session.get(KeyValueEntry, key)
                if entry is not None:
                    session.delete(entry)
                    session.commit()
        except SQLAlchemyError as exc:
            raise StorageUnavailableError(f"Cannot delete {key!r}: {exc}") from exc

    def close(self) -> None:
        self.engine.dispose()


class MemoryKeyValueStorage:
    """Process-local storage; contents are lost on exit."""

    def __init__(self, max_value_bytes: Optional[int] = None):
        self.max_value_bytes = max_value_bytes
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        _check_quota(key, value, self.max_value_bytes)
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)
