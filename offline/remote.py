"""Remote data API: the four table writes the sync coordinator replays.

`HttpRemoteApi` talks to the Shelfsync backend table API with httpx.
Every failure surfaces as `RemoteError`; `transient` tells the coordinator
whether retrying later can help.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence
from urllib.parse import quote

import httpx

from server.logging_config import get_logger

logger = get_logger(__name__)

# Statuses worth retrying; every other 4xx is a permanent rejection.
_RETRYABLE_STATUSES = frozenset({408, 425, 429})


class RemoteError(Exception):
    """A remote write failed. `status_code` is None for network-level failures."""

    def __init__(self, reason: str, status_code: Optional[int] = None):
        super().__init__(reason)
        self.reason = reason
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code in _RETRYABLE_STATUSES

    @property
    def is_network_error(self) -> bool:
        return self.status_code is None

    def __str__(self) -> str:
        if self.status_code is None:
            return self.reason
        return f"HTTP {self.status_code}: {self.reason}"


class RemoteDataApi(Protocol):
    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any]: ...

    async def upsert(
        self, table: str, row: dict[str, Any], on_conflict: Sequence[str]
    ) -> dict[str, Any]: ...

    async def delete(self, table: str, match: dict[str, Any]) -> int: ...


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(body, dict) and body.get("detail"):
        detail = body["detail"]
        return detail if isinstance(detail, str) else str(detail)
    return response.reason_phrase


class HttpRemoteApi:
    """RemoteDataApi over the backend's /api/tables endpoints."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "HttpRemoteApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteError(f"{type(exc).__name__}: {exc}") from exc
        if response.is_error:
            raise RemoteError(_error_detail(response), response.status_code)
        return response

    async def health(self) -> bool:
        """True if the backend answers its health check."""
        try:
            response = await self._client.get("/api/health")
        except httpx.HTTPError as exc:
            logger.debug(f"Health check failed: {exc}")
            return False
        return response.status_code == 200

    async def select(self, table: str, match: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        response = await self._request("GET", f"/api/tables/{table}", params=match or {})
        return response.json()

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("POST", f"/api/tables/{table}", json=row)
        return response.json()

    async def update(self, table: str, row_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("PATCH", f"/api/tables/{table}/{quote(row_id, safe='')}", json=changes)
        return response.json()

    async def upsert(
        self, table: str, row: dict[str, Any], on_conflict: Sequence[str] = ("id",)
    ) -> dict[str, Any]:
        response = await self._request(
            "PUT",
            f"/api/tables/{table}",
            json=row,
            params={"on_conflict": ",".join(on_conflict)},
        )
        return response.json()

    async def delete(self, table: str, match: dict[str, Any]) -> int:
        response = await self._request("DELETE", f"/api/tables/{table}", params=match)
        return int(response.json().get("deleted", 0))
