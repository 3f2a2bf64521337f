"""Logging for Shelfsync.

Every module logs through `get_logger(__name__)`, which places it under the
`shelfsync` namespace (`shelfsync.offline.coordinator`, `shelfsync.server.api`).
`setup_logging` attaches two handlers to that namespace:

- a rotating file log, `shelfsync.log` in the data directory, at DEBUG
- a Rich console on stderr at the requested level, so CLI output on stdout stays clean
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

ROOT_LOGGER_NAME = "shelfsync"
LOG_FILE_NAME = "shelfsync.log"

# Third-party loggers that only matter when something goes wrong.
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}

_handlers: list[logging.Handler] = []
_console_handler: Optional[RichHandler] = None


def _get_data_dir() -> Path:
    """Data directory, resolved like config.DATA_DIR (imported lazily there, so no cycle)."""
    env = os.environ.get("DATA_DIR")
    if env:
        return Path(env)
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parents[1]


def _level(log_level: str) -> int:
    return getattr(logging, log_level.upper(), logging.INFO)


def _file_handler(log_file: Path) -> RotatingFileHandler:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(levelname)-8s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    return handler


def _rich_handler(level: int) -> RichHandler:
    theme = Theme({
        "logging.level.info": "bold cyan",
        "logging.level.warning": "bold yellow",
    })
    handler = RichHandler(
        console=Console(theme=theme, stderr=True),
        rich_tracebacks=True,
        show_time=False,
        show_path=False,
        markup=False,
    )
    handler.setLevel(level)
    return handler


def setup_logging(log_level: str = "INFO", log_file: Optional[Path] = None) -> Path:
    """Attach the file and console handlers to the shelfsync logger.

    Calling it again only changes the console level. Returns the log file path.
    """
    global _console_handler

    log_file = log_file or _get_data_dir() / LOG_FILE_NAME
    if _console_handler is not None:
        _console_handler.setLevel(_level(log_level))
        return log_file

    app_logger = logging.getLogger(ROOT_LOGGER_NAME)
    app_logger.setLevel(logging.DEBUG)
    _console_handler = _rich_handler(_level(log_level))
    _handlers.extend([_file_handler(log_file), _console_handler])
    for handler in _handlers:
        app_logger.addHandler(handler)

    # uvicorn.error and alembic log outside our namespace; route them to the same handlers
    for name in ("uvicorn.error", "alembic"):
        external = logging.getLogger(name)
        external.handlers = list(_handlers)
        external.propagate = False
        external.setLevel(logging.INFO)

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    return log_file


def reset_logging() -> None:
    """Detach and close the handlers added by setup_logging (useful for tests)."""
    global _console_handler

    for name in (ROOT_LOGGER_NAME, "uvicorn.error", "alembic"):
        target = logging.getLogger(name)
        for handler in _handlers:
            target.removeHandler(handler)
    for handler in _handlers:
        handler.close()
    _handlers.clear()
    _console_handler = None


def get_logger(name: str) -> logging.Logger:
    """Logger for a module, nested under the shelfsync namespace."""
    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
