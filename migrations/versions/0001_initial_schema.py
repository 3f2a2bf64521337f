"""Initial schema: book_annotations, book_bookmarks, reading_progress, favorites, book_reviews

Revision ID: 0001
Revises: None
Create Date: 2026-10-19 00:00:00
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | None = None
depends_on: str | None = None


def _table_exists(name: str) -> bool:
    """Check whether a table already exists in the database."""
    conn = op.get_bind()
    result = conn.execute(
        sa.text("SELECT 1 FROM sqlite_master WHERE type='table' AND name=:n"),
        {"n": name},
    )
    return result.fetchone() is not None


def _owner_columns() -> list[sa.Column]:
    return [
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("book_id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
    ]


def _owner_indexes(table: str) -> None:
    op.create_index(f"ix_{table}_book_id", table, ["book_id"])
    op.create_index(f"ix_{table}_user_id", table, ["user_id"])


def upgrade() -> None:
    # Guarded by _table_exists so a DB created by init_db()'s create_all can be
    # stamped and upgraded without errors.

    if not _table_exists("book_annotations"):
        op.create_table(
            "book_annotations",
            *_owner_columns(),
            sa.Column("page_number", sa.Integer(), nullable=False),
            sa.Column("annotation_type", sa.String(), nullable=True),
            sa.Column("content", sa.String(), nullable=False, server_default=""),
            sa.Column("color", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        _owner_indexes("book_annotations")

    if not _table_exists("book_bookmarks"):
        op.create_table(
            "book_bookmarks",
            *_owner_columns(),
            sa.Column("page_number", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(), nullable=True),
            sa.Column("note", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        _owner_indexes("book_bookmarks")

    if not _table_exists("reading_progress"):
        op.create_table(
            "reading_progress",
            *_owner_columns(),
            sa.Column("current_page", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("total_pages", sa.Integer(), nullable=True),
            sa.Column("is_completed", sa.Boolean(), nullable=True, server_default="0"),
            sa.Column("last_read_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("book_id", "user_id", name="uq_reading_progress_book_user"),
        )
        _owner_indexes("reading_progress")

    if not _table_exists("favorites"):
        op.create_table(
            "favorites",
            *_owner_columns(),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.UniqueConstraint("book_id", "user_id", name="uq_favorites_book_user"),
        )
        _owner_indexes("favorites")

    if not _table_exists("book_reviews"):
        op.create_table(
            "book_reviews",
            *_owner_columns(),
            sa.Column("rating", sa.Integer(), nullable=False),
            sa.Column("review_text", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False),
            sa.Column("updated_at", sa.DateTime(), nullable=False),
        )
        _owner_indexes("book_reviews")


def downgrade() -> None:
    op.drop_table("book_reviews")
    op.drop_table("favorites")
    op.drop_table("reading_progress")
    op.drop_table("book_bookmarks")
    op.drop_table("book_annotations")
