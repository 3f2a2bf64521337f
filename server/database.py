"""Database connection and session management using SQLModel."""

from __future__ import annotations

from pathlib import Path
from typing import Generator

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session

from .config import DATA_DIR

DB_PATH = DATA_DIR / "library.db"


def make_engine(db_path: Path) -> Engine:
    """SQLite engine for a database file.

    check_same_thread=False is needed because FastAPI serves sync routes from a
    threadpool and the offline client may be driven from a worker thread.
    """
    return create_engine(f"sqlite:///{db_path}", connect_args={"check_same_thread": False})


engine = make_engine(DB_PATH)


def get_session() -> Generator[Session, None, None]:
    """Dependency for FastAPI or context manager for scripts."""
    with Session(engine) as session:
        yield session


def enable_wal(target: Engine) -> None:
    """Switch a SQLite database to WAL journaling (readers don't block the writer)."""
    with target.connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL;")
        conn.exec_driver_sql("PRAGMA foreign_keys=ON;")


def init_db() -> None:
    """Create the backend tables."""
    # Import models to ensure they are registered with SQLModel.metadata
    from . import models

    enable_wal(engine)
    SQLModel.metadata.create_all(engine, tables=[m.__table__ for m in models.TABLE_MODELS.values()])


def get_engine() -> Engine:
    """Return the global engine instance."""
    return engine
