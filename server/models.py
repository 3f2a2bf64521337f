"""SQLModel database models for the Shelfsync library backend."""

import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BookAnnotationBase(SQLModel):
    book_id: str = Field(index=True)
    user_id: str = Field(index=True)
    page_number: int = Field(ge=0)
    annotation_type: Optional[str] = "highlight"
    content: str = ""
    color: Optional[str] = "yellow"

class BookAnnotation(BookAnnotationBase, table=True):
    __tablename__ = "book_annotations"
    id: str = Field(default_factory=_new_id, primary_key=True)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class BookBookmarkBase(SQLModel):
    book_id: str = Field(index=True)
    user_id: str = Field(index=True)
    page_number: int = Field(ge=0)
    title: Optional[str] = None
    note: Optional[str] = None

class BookBookmark(BookBookmarkBase, table=True):
    __tablename__ = "book_bookmarks"
    id: str = Field(default_factory=_new_id, primary_key=True)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class ReadingProgressBase(SQLModel):
    book_id: str = Field(index=True)
    user_id: str = Field(index=True)
    current_page: int = Field(default=1, ge=0)
    total_pages: Optional[int] = None
    is_completed: Optional[bool] = False
    last_read_at: Optional[datetime] = None

class ReadingProgress(ReadingProgressBase, table=True):
    __tablename__ = "reading_progress"
    __table_args__ = (UniqueConstraint("book_id", "user_id", name="uq_reading_progress_book_user"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


class FavoriteBase(SQLModel):
    book_id: str = Field(index=True)
    user_id: str = Field(index=True)

class Favorite(FavoriteBase, table=True):
    __tablename__ = "favorites"
    __table_args__ = (UniqueConstraint("book_id", "user_id", name="uq_favorites_book_user"),)

    id: str = Field(default_factory=_new_id, primary_key=True)
    created_at: datetime = Field(default_factory=_now)


class BookReviewBase(SQLModel):
    book_id: str = Field(index=True)
    user_id: str = Field(index=True)
    rating: int = Field(ge=1, le=5)
    review_text: Optional[str] = None

class BookReview(BookReviewBase, table=True):
    __tablename__ = "book_reviews"
    id: str = Field(default_factory=_new_id, primary_key=True)
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)


# Table name -> model, the only tables exposed through the table API.
TABLE_MODELS: dict[str, type[SQLModel]] = {
    "book_annotations": BookAnnotation,
    "book_bookmarks": BookBookmark,
    "reading_progress": ReadingProgress,
    "favorites": Favorite,
    "book_reviews": BookReview,
}

# User-written text columns that go through content moderation.
MODERATED_COLUMNS: dict[str, tuple[str, ...]] = {
    "book_annotations": ("content",),
    "book_bookmarks": ("title", "note"),
    "book_reviews": ("review_text",),
}
