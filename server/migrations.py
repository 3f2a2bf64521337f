"""Alembic migration helpers for the Shelfsync backend database.

This is the only module in the project that imports alembic directly.
Everything else (CLI, serve) goes through the functions below.
"""

from __future__ import annotations

import shutil
import sqlite3

from alembic import command as alembic_command
from alembic.config import Config as AlembicConfig
from alembic.script import ScriptDirectory

from . import database
from .config import PROJECT_ROOT


def _alembic_cfg() -> AlembicConfig:
    """Build an AlembicConfig that points at our alembic.ini."""
    cfg = AlembicConfig(str(PROJECT_ROOT / "alembic.ini"))
    # Absolute script_location so it works regardless of the working directory.
    cfg.set_main_option("script_location", str(PROJECT_ROOT / "migrations"))
    return cfg


def _backup_db() -> None:
    """Copy library.db -> library.db.bak (overwrite previous backup)."""
    if database.DB_PATH.exists():
        shutil.copy2(database.DB_PATH, database.DB_PATH.with_suffix(".db.bak"))


def _current_revision() -> str | None:
    """Revision stored in alembic_version, or None when the DB is unversioned."""
    if not database.DB_PATH.exists():
        return None
    conn = sqlite3.connect(database.DB_PATH)
    try:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
        )
        if cur.fetchone() is None:
            return None
        row = conn.execute("SELECT version_num FROM alembic_version").fetchone()
        return row[0] if row else None
    finally:
        conn.close()


def run_migrations(backup: bool = True) -> None:
    """Run ``alembic upgrade head``.

    If *backup* is True and library.db already exists, a copy is made first.
    """
    if backup:
        _backup_db()
    alembic_command.upgrade(_alembic_cfg(), "head")


def stamp_if_needed() -> None:
    """Stamp a database created by ``init_db`` (create_all) to the current head.

    No-op when the DB does not exist yet or already carries a revision.
    """
    if not database.DB_PATH.exists():
        return
    if _current_revision() is not None:
        return
    alembic_command.stamp(_alembic_cfg(), "head")


def get_status() -> tuple[str | None, str]:
    """Return (current_revision, head_revision)."""
    script = ScriptDirectory.from_config(_alembic_cfg())
    head_rev: str = script.get_current_head() or "unknown"
    return _current_revision(), head_rev
