"""FastAPI table API for the Shelfsync library backend.

Exposes:
- GET    /api/health
- GET    /api/tables/{table}?col=value        (list rows)
- POST   /api/tables/{table}                  (insert)
- PATCH  /api/tables/{table}/{row_id}         (update by primary key)
- PUT    /api/tables/{table}?on_conflict=a,b  (upsert)
- DELETE /api/tables/{table}?col=value        (delete matching rows)
"""

from __future__ import annotations

import asyncio
import logging
import os
import socket
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from sqlmodel import Session
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_config import get_logger

logger = get_logger(__name__)

from . import auth as api_auth
from .config import ShelfsyncConfig, get_config
from .database import get_session
from .repository import ForbiddenRowError, ModerationRejectedError, RepositoryError, TableRepository


def _api_config():
    try:
        return get_config().api
    except FileNotFoundError:
        return None


class ApiAuthMiddleware(BaseHTTPMiddleware):
    """Require a valid bearer token on /api/tables when an API secret is configured."""

    async def dispatch(self, request, call_next):
        request.state.user_id = None
        if not request.url.path.startswith("/api/tables"):
            return await call_next(request)
        api_config = _api_config()
        if api_config is None or not api_config.auth_enabled:
            return await call_next(request)
        token = api_auth.bearer_token(request.headers.get("authorization"))
        user_id = api_auth.verify_token(token, api_config.secret)
        if user_id is None:
            return JSONResponse(
                status_code=401,
                content={"detail": "Missing or invalid API token"},
                headers={"WWW-Authenticate": "Bearer"},
            )
        request.state.user_id = user_id
        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log the first request from a client for debugging connectivity."""

    async def dispatch(self, request, call_next):
        if not getattr(request.app.state, "logged_first_request", False):
            request_logger = logging.getLogger("shelfsync.request")
            user_agent = request.headers.get("user-agent", "")
            client_name = user_agent.split("/")[0] if user_agent else "unknown"
            client_ip = request.client.host if request.client else "unknown"
            request_logger.info(
                'client_connected="%s" ip="%s" url="%s %s" ua="%s"'
                % (client_name, client_ip, request.method, str(request.url), user_agent)
            )
            request.app.state.logged_first_request = True
        return await call_next(request)


def _info(msg: str) -> None:
    logger.info(msg)


def _get_lan_ip() -> Optional[str]:
    """Return this machine's LAN IP (for the client URL when binding to 0.0.0.0)."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return None


@asynccontextmanager
async def _lifespan(app: FastAPI):
    async def _print_startup_messages():
        await asyncio.sleep(0.1)
        _info("Started server process [" + str(os.getpid()) + "]")
        _info("Application startup complete. (Press CTRL+C to quit)")
        api_url = getattr(app.state, "api_url_public", None)
        if api_url:
            _info("Table API available at: " + api_url)
        if getattr(app.state, "auth_enabled", False):
            _info("Bearer token authentication enabled")

    asyncio.create_task(_print_startup_messages())
    yield


app = FastAPI(title="Shelfsync", lifespan=_lifespan)
app.add_middleware(ApiAuthMiddleware)
app.add_middleware(RequestLoggingMiddleware)


@app.exception_handler(RepositoryError)
async def _repository_error_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    content: dict[str, Any] = {"detail": exc.message}
    if isinstance(exc, ModerationRejectedError):
        content["moderation"] = exc.result.model_dump()
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.debug(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=content)


@app.get("/favicon.ico", include_in_schema=False)
def favicon() -> Response:
    return Response(status_code=204)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _dump(obj) -> dict[str, Any]:
    return obj.model_dump(mode="json")


def _owner(request: Request) -> Optional[str]:
    return getattr(request.state, "user_id", None)


def _claim_row(row: dict[str, Any], user_id: Optional[str]) -> dict[str, Any]:
    """Stamp the caller's user id on a row; reject rows written for someone else."""
    if user_id is None:
        return row
    if row.get("user_id") not in (None, user_id):
        raise ForbiddenRowError("Row belongs to another user")
    return {**row, "user_id": user_id}


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok", "time": _now_iso()}


@app.get("/api/tables/{table}")
def list_rows(table: str, request: Request, session: Session = Depends(get_session)):
    """Rows matching every query parameter (column=value)."""
    match = dict(request.query_params)
    user_id = _owner(request)
    if user_id is not None:
        match["user_id"] = user_id
    repo = TableRepository(session)
    return [_dump(row) for row in repo.list_rows(table, match)]


@app.post("/api/tables/{table}", status_code=201)
def insert_row(
    table: str,
    request: Request,
    row: dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
):
    """Insert a row. 409 if the primary key (or a unique key) already exists."""
    repo = TableRepository(session)
    obj = repo.insert(table, _claim_row(row, _owner(request)))
    repo.commit(obj)
    return _dump(obj)


@app.patch("/api/tables/{table}/{row_id}")
def update_row(
    table: str,
    row_id: str,
    request: Request,
    changes: dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
):
    """Partial update by primary key. 404 if the row does not exist."""
    repo = TableRepository(session)
    user_id = _owner(request)
    if user_id is not None:
        existing = repo.get(table, row_id)
        if existing is not None and existing.user_id != user_id:
            raise ForbiddenRowError("Row belongs to another user")
        if changes.get("user_id") not in (None, user_id):
            raise ForbiddenRowError("Cannot reassign a row to another user")
    obj = repo.update(table, row_id, changes)
    repo.commit(obj)
    return _dump(obj)


@app.put("/api/tables/{table}")
def upsert_row(
    table: str,
    request: Request,
    row: dict[str, Any] = Body(...),
    on_conflict: str = Query("id", description="Comma-separated conflict columns"),
    session: Session = Depends(get_session),
):
    """Insert or update the row matching the conflict columns. 403 if that row is someone else's."""
    columns = [c.strip() for c in on_conflict.split(",") if c.strip()]
    repo = TableRepository(session)
    user_id = _owner(request)
    obj = repo.upsert(table, _claim_row(row, user_id), columns, owner=user_id)
    repo.commit(obj)
    return _dump(obj)


@app.delete("/api/tables/{table}")
def delete_rows(table: str, request: Request, session: Session = Depends(get_session)):
    """Delete rows matching every query parameter. Deleting nothing is not an error."""
    match = dict(request.query_params)
    user_id = _owner(request)
    if user_id is not None:
        match["user_id"] = user_id
    repo = TableRepository(session)
    deleted = repo.delete(table, match)
    repo.commit()
    return {"deleted": deleted}


class _AccessFilter(logging.Filter):
    """Filter out access log lines for successful requests to reduce console noise.
    Keep errors (4xx, 5xx) visible for debugging.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except Exception:
            return True
        return not any(p in msg for p in ('" 200', '" 201', '" 204', '" 304'))


class _UvicornStartupFilter(logging.Filter):
    """Suppress uvicorn startup messages; we print our own in lifespan."""

    _PATTERNS = (
        "Started server process",
        "Waiting for application startup",
        "Application startup complete",
        "running on",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
        except Exception:
            return True
        raw = str(getattr(record, "msg", ""))
        return not any(p in msg or p in raw for p in self._PATTERNS)


def run_server(
    config: ShelfsyncConfig,
    host: Optional[str],
    port: Optional[int],
) -> None:
    """Run the FastAPI app with Uvicorn."""
    import uvicorn

    effective_host = host or config.server_host
    effective_port = port or config.server_port

    # Show network IP when binding to 0.0.0.0 so clients know where to connect
    if effective_host == "0.0.0.0":
        lan_ip = _get_lan_ip()
        public_host = lan_ip if lan_ip else "0.0.0.0"
    else:
        public_host = effective_host
    app.state.api_url_public = f"http://{public_host}:{effective_port}/api/"
    app.state.auth_enabled = config.api.auth_enabled

    startup_filter = _UvicornStartupFilter()
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "uvicorn.lifespan"):
        logging.getLogger(name).addFilter(startup_filter)
    logging.getLogger("uvicorn.access").addFilter(_AccessFilter())

    uvicorn.run(
        app,
        host=effective_host,
        port=effective_port,
        log_level="info",
        log_config=None,
    )
