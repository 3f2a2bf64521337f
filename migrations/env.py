"""Alembic migration environment.

Imports the engine and metadata from the Shelfsync server package so that
migrations use the exact same database connection the backend does.
"""

from __future__ import annotations

from alembic import context
from sqlmodel import SQLModel

from server.database import engine

# Register the backend tables on SQLModel.metadata before Alembic inspects it.
from server import models as _models  # noqa: F401

target_metadata = SQLModel.metadata


def _include_object(obj, name, type_, reflected, compare_to) -> bool:
    """Only the backend tables are managed here (the client kv_store lives in offline.db)."""
    if type_ == "table":
        return name in _models.TABLE_MODELS
    return True


def run_migrations_online() -> None:
    """Run migrations with a real database connection."""
    with engine.connect() as conn:
        context.configure(
            connection=conn,
            target_metadata=target_metadata,
            include_object=_include_object,
            render_as_batch=True,
        )

        with context.begin_transaction():
            context.run_migrations()


# Only online mode is supported.
if context.is_offline_mode():
    raise RuntimeError(
        "Offline migration mode is not supported. "
        "Run without --sql."
    )
else:
    run_migrations_online()
