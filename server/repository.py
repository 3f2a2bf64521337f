"""Data Access Layer for the Shelfsync table API.

Encapsulates database operations using SQLModel/SQLAlchemy. Every table in
`TABLE_MODELS` supports the same four writes (insert, update by id, upsert on a
conflict key, delete by column match), which is all the offline client needs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, select

from .logging_config import get_logger
from .models import MODERATED_COLUMNS, TABLE_MODELS
from .moderation import ModerationResult, validate_fields

logger = get_logger(__name__)

# Columns the client may never change on an existing row.
_IMMUTABLE_COLUMNS = frozenset({"id", "created_at"})


class RepositoryError(Exception):
    """Base class for table API errors; `status_code` maps to the HTTP response."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnknownTableError(RepositoryError):
    status_code = 404


class UnknownColumnError(RepositoryError):
    status_code = 400


class RowNotFoundError(RepositoryError):
    status_code = 404


class ForbiddenRowError(RepositoryError):
    status_code = 403


class DuplicateRowError(RepositoryError):
    status_code = 409


class RowValidationError(RepositoryError):
    status_code = 422


class ModerationRejectedError(RepositoryError):
    status_code = 422

    def __init__(self, result: ModerationResult):
        super().__init__(result.message or "Content rejected by moderation")
        self.result = result


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "Invalid row"


class TableRepository:
    """Generic row operations over the whitelisted tables.

    Methods flush but do not commit; callers control the transaction.
    """

    def __init__(self, session: Session):
        self.session = session

    def commit(self, *rows: SQLModel) -> None:
        """Commit the current transaction and reload `rows`, which the commit expires."""
        self.session.commit()
        for row in rows:
            self.session.refresh(row)

    def model_for(self, table: str) -> type[SQLModel]:
        model = TABLE_MODELS.get(table)
        if model is None:
            raise UnknownTableError(f"Unknown table: {table}")
        return model

    def _check_columns(self, model: type[SQLModel], columns: Sequence[str]) -> None:
        unknown = [c for c in columns if c not in model.model_fields]
        if unknown:
            raise UnknownColumnError(f"Unknown column(s) for {model.__tablename__}: {', '.join(unknown)}")

    def _validate(self, model: type[SQLModel], data: dict[str, Any]) -> SQLModel:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise RowValidationError(_validation_message(exc)) from exc

    def _moderate(self, table: str, data: dict[str, Any]) -> None:
        columns = MODERATED_COLUMNS.get(table, ())
        fields = {c: data.get(c) for c in columns if isinstance(data.get(c), str)}
        if not fields:
            return
        result = validate_fields(fields)
        if not result.is_clean:
            logger.warning(f"Moderation rejected {table} write ({result.severity}): {result.flagged_words}")
            raise ModerationRejectedError(result)

    def _flush(self) -> None:
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateRowError(f"Row conflicts with an existing row: {exc.orig}") from exc

    def _find(self, model: type[SQLModel], match: dict[str, Any]) -> List[SQLModel]:
        statement = select(model)
        for column, value in match.items():
            statement = statement.where(getattr(model, column) == value)
        return list(self.session.exec(statement).all())

    def list_rows(self, table: str, match: Optional[dict[str, Any]] = None) -> List[SQLModel]:
        model = self.model_for(table)
        match = match or {}
        self._check_columns(model, list(match))
        return self._find(model, match)

    def get(self, table: str, row_id: str) -> Optional[SQLModel]:
        return self.session.get(self.model_for(table), row_id)

    def insert(self, table: str, row: dict[str, Any]) -> SQLModel:
        """Insert a new row; an existing primary key or unique key is a conflict."""
        model = self.model_for(table)
        obj = self._validate(model, row)
        self._moderate(table, row)
        if self.session.get(model, obj.id) is not None:
            raise DuplicateRowError(f"{table} row {obj.id} already exists")
        self.session.add(obj)
        self._flush()
        self.session.refresh(obj)
        return obj

    def update(self, table: str, row_id: str, changes: dict[str, Any]) -> SQLModel:
        """Apply a partial update to the row with this primary key."""
        model = self.model_for(table)
        changes = {k: v for k, v in changes.items() if k not in _IMMUTABLE_COLUMNS}
        self._check_columns(model, list(changes))
        obj = self.session.get(model, row_id)
        if obj is None:
            raise RowNotFoundError(f"{table} row {row_id} not found")

        merged = obj.model_dump()
        merged.update(changes)
        if "updated_at" in model.model_fields and "updated_at" not in changes:
            merged["updated_at"] = datetime.now(timezone.utc)
        validated = self._validate(model, merged)
        self._moderate(table, changes)

        for key in set(changes) | ({"updated_at"} & set(model.model_fields)):
            setattr(obj, key, getattr(validated, key))
        self.session.add(obj)
        self._flush()
        self.session.refresh(obj)
        return obj

    def upsert(
        self,
        table: str,
        row: dict[str, Any],
        on_conflict: Sequence[str] = ("id",),
        owner: Optional[str] = None,
    ) -> SQLModel:
        """Insert, or update the row matching `on_conflict` columns with this row's values.

        With `owner` set, an existing row that belongs to another user is not touched.
        """
        model = self.model_for(table)
        on_conflict = list(on_conflict) or ["id"]
        self._check_columns(model, on_conflict)
        obj = self._validate(model, row)

        existing = self._find(model, {c: getattr(obj, c) for c in on_conflict})
        if not existing:
            self._moderate(table, row)
            self.session.add(obj)
            self._flush()
            self.session.refresh(obj)
            return obj

        target = existing[0]
        if owner is not None and target.user_id != owner:
            raise ForbiddenRowError(f"{table} row {target.id} belongs to another user")
        changes = {k: v for k, v in row.items() if k in model.model_fields}
        return self.update(table, target.id, changes)

    def delete(self, table: str, match: dict[str, Any]) -> int:
        """Delete rows matching every column in `match`. Returns the number deleted."""
        model = self.model_for(table)
        if not match:
            raise UnknownColumnError("Refusing to delete without a filter")
        self._check_columns(model, list(match))
        rows = self._find(model, match)
        for row in rows:
            self.session.delete(row)
        self.session.flush()
        return len(rows)
