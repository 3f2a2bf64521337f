"""Config management for Shelfsync.

Reads `config.ini` from the data directory (beside main.py unless DATA_DIR is set).
The same file configures the library backend (`[server]`, `[api]`) and the
offline client (`[client]`, `[sync]`).
"""

from __future__ import annotations

import configparser
import dataclasses
import os
import pathlib
import sys
from typing import Optional

from .logging_config import get_logger

logger = get_logger(__name__)

def _get_project_root() -> pathlib.Path:
    if getattr(sys, "frozen", False):
        return pathlib.Path(sys.executable).resolve().parent
    return pathlib.Path(__file__).resolve().parents[1]


PROJECT_ROOT = _get_project_root()

# DATA_DIR holds all persistent state (config.ini, library.db, offline.db, logs).
# Set via env var for Docker; defaults to PROJECT_ROOT for standalone use.
DATA_DIR = pathlib.Path(os.environ.get("DATA_DIR", str(PROJECT_ROOT)))
DEFAULT_CONFIG_PATH = DATA_DIR / "config.ini"


@dataclasses.dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8282


@dataclasses.dataclass
class ApiConfig:
    """Token signing for the table API. If secret is empty the API is open."""

    secret: str = ""
    token_max_age_days: int = 30

    @property
    def auth_enabled(self) -> bool:
        return bool(self.secret)


@dataclasses.dataclass
class ClientConfig:
    remote_url: str = "http://127.0.0.1:8282"
    token: str = ""
    user_id: str = ""
    request_timeout_seconds: float = 10.0


@dataclasses.dataclass
class SyncConfig:
    max_attempts: int = 5
    auto_sync_delay_seconds: float = 2.0
    poll_interval_seconds: float = 5.0


@dataclasses.dataclass
class ShelfsyncConfig:
    server: ServerConfig
    api: ApiConfig
    client: ClientConfig
    sync: SyncConfig

    @property
    def server_host(self) -> str:
        return self.server.host

    @property
    def server_port(self) -> int:
        return self.server.port

    @property
    def database_path(self) -> pathlib.Path:
        return DATA_DIR / "library.db"

    @property
    def offline_storage_path(self) -> pathlib.Path:
        return DATA_DIR / "offline.db"


def load_config(config_path: Optional[pathlib.Path] = None) -> ShelfsyncConfig:
    """Load configuration from config.ini.

    Defaults to `config.ini` in the data directory.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    parser = configparser.ConfigParser()
    parser.read(path)

    server = ServerConfig(
        host=parser.get("server", "host", fallback="0.0.0.0"),
        port=parser.getint("server", "port", fallback=8282),
    )

    api = ApiConfig(
        secret=parser.get("api", "secret", fallback="").strip(),
        token_max_age_days=parser.getint("api", "token_max_age_days", fallback=30),
    )

    client = ClientConfig(
        remote_url=parser.get(
            "client", "remote_url", fallback="http://127.0.0.1:8282"
        ).rstrip("/"),
        token=parser.get("client", "token", fallback="").strip(),
        user_id=parser.get("client", "user_id", fallback="").strip(),
        request_timeout_seconds=parser.getfloat(
            "client", "request_timeout_seconds", fallback=10.0
        ),
    )

    sync = SyncConfig(
        max_attempts=max(1, parser.getint("sync", "max_attempts", fallback=5)),
        auto_sync_delay_seconds=parser.getfloat(
            "sync", "auto_sync_delay_seconds", fallback=2.0
        ),
        poll_interval_seconds=parser.getfloat(
            "sync", "poll_interval_seconds", fallback=5.0
        ),
    )

    return ShelfsyncConfig(server=server, api=api, client=client, sync=sync)


def write_default_config(
    config_path: pathlib.Path,
    remote_url: str,
    user_id: str,
    secret: str = "",
) -> None:
    """Write a config.ini with default settings for both backend and client."""
    parser = configparser.ConfigParser()

    parser["server"] = {
        "host": "0.0.0.0",
        "port": "8282",
    }
    parser["api"] = {
        "secret": secret,
        "token_max_age_days": "30",
    }
    parser["client"] = {
        "remote_url": remote_url,
        "token": "",
        "user_id": user_id,
        "request_timeout_seconds": "10",
    }
    parser["sync"] = {
        "max_attempts": "5",
        "auto_sync_delay_seconds": "2",
        "poll_interval_seconds": "5",
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w") as handle:
        parser.write(handle)


def set_client_token(config_path: pathlib.Path, token: str) -> None:
    """Store a freshly issued API token in the `[client]` section."""
    parser = configparser.ConfigParser()
    parser.read(config_path)
    if not parser.has_section("client"):
        parser.add_section("client")
    parser.set("client", "token", token)
    with config_path.open("w") as handle:
        parser.write(handle)


_cached_config: Optional[ShelfsyncConfig] = None


def get_config() -> ShelfsyncConfig:
    """Return the cached config singleton. Loads from disk on first call."""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config()
    return _cached_config


def reset_config_cache() -> None:
    """Clear the cached config (useful for tests)."""
    global _cached_config
    _cached_config = None
