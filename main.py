"""Shelfsync CLI entry point."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from offline.client import OfflineClient
from offline.models import EntityType, MutationAction, SyncReport
from offline.storage import SqliteKeyValueStorage, StorageUnavailableError
from offline.store import SyncQueueStore
from server import auth
from server.config import DEFAULT_CONFIG_PATH, ShelfsyncConfig, load_config, set_client_token, write_default_config
from server.database import init_db
from server.logging_config import setup_logging
from server.migrations import get_status, run_migrations, stamp_if_needed
from server.moderation import check_text


__version__ = "0.1.0"

app = typer.Typer(add_completion=False, help="Shelfsync offline library sync CLI")
logger = logging.getLogger("shelfsync")
console = Console()

STARTUP_BANNER = r"""
     _          _  __
 ___| |__   ___| |/ _|___ _   _ _ __   ___
/ __| '_ \ / _ \ | |_/ __| | | | '_ \ / __|
\__ \ | | |  __/ |  _\__ \ |_| | | | | (__
|___/_| |_|\___|_|_| |___/\__, |_| |_|\___|
                          |___/
"""


def _ensure_config() -> ShelfsyncConfig:
    try:
        return load_config()
    except FileNotFoundError:
        typer.echo("[ERROR] config.ini not found. Run: shelfsync init --user <user-id>")
        raise typer.Exit(code=1)


def _open_store(config: ShelfsyncConfig) -> SyncQueueStore:
    try:
        return SyncQueueStore(SqliteKeyValueStorage(config.offline_storage_path))
    except StorageUnavailableError as exc:
        typer.echo(f"[ERROR] {exc}")
        raise typer.Exit(code=1)


def _print_report(report: SyncReport) -> None:
    if report.status == "offline":
        typer.echo("[WARN] Backend unreachable, nothing synced.")
        return
    if report.status == "busy":
        typer.echo("[INFO] A sync is already running.")
        return
    if report.status == "empty":
        typer.echo("[OK] Nothing to sync.")
        return

    typer.echo(
        f"✓ Sync finished: {report.succeeded} synced, "
        f"{report.failed} failed ({report.dead_lettered} dead-lettered)."
    )
    for failure in report.failures:
        marker = "dead-letter" if failure.dead_lettered else "will retry"
        typer.echo(
            f"  - {failure.entity_type.value} {failure.action.value} "
            f"{failure.mutation_id[:8]}: {failure.reason} [{marker}]"
        )
    if report.status == "storage_unavailable":
        typer.echo("[ERROR] Offline storage became unavailable during the sync.")


@app.command()
def init(
    user: str = typer.Option("", "--user", help="User id the client writes rows for"),
    remote_url: str = typer.Option("http://127.0.0.1:8282", "--remote-url", help="Backend base URL"),
    with_auth: bool = typer.Option(False, "--with-auth", help="Generate an API secret (token required)"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config.ini"),
) -> None:
    """Initialize config.ini with default settings."""
    config_path = DEFAULT_CONFIG_PATH
    if config_path.exists() and not force:
        typer.echo(f"[ERROR] {config_path} already exists. Use --force to overwrite.")
        raise typer.Exit(code=1)
    secret = secrets.token_urlsafe(32) if with_auth else ""
    write_default_config(config_path, remote_url=remote_url, user_id=user, secret=secret)
    typer.echo(f"[OK] Config created at {config_path}")
    if with_auth:
        typer.echo("[INFO] API auth enabled. Issue a client token with: shelfsync token <user-id> --save")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Server host"),
    port: Optional[int] = typer.Option(None, "--port", help="Server port"),
) -> None:
    """Start the library backend (table API)."""
    from server.api import run_server

    setup_logging()

    typer.echo(typer.style(STARTUP_BANNER, fg=typer.colors.CYAN, bold=True))
    config = _ensure_config()
    init_db()

    # Migrations: stamp DBs created by create_all, then upgrade to head.
    stamp_if_needed()
    current, head = get_status()
    if current != head:
        logger.info(f"Migrating database {current} -> {head} ...")
        run_migrations(backup=True)
        logger.info("Migration complete.")
    else:
        logger.info(f"Database at {head} (up to date).")

    try:
        run_server(config, host=host, port=port)
    except KeyboardInterrupt:
        pass


@app.command()
def migrate(
    check: bool = typer.Option(False, "--check", help="Print status and exit (1 if not at head)"),
) -> None:
    """Run pending database migrations (or check status with --check)."""
    _ensure_config()
    init_db()

    current, head = get_status()

    if check:
        if current == head:
            typer.echo(f"[OK] Database at {head} (head).")
            raise typer.Exit(code=0)
        typer.echo(f"[WARN] Database behind, current: {current}, head: {head}")
        raise typer.Exit(code=1)

    if current == head:
        logger.info(f"Database already at {head} (head). Nothing to do.")
        raise typer.Exit(code=0)

    logger.info(f"Migrating database {current} -> {head} ...")
    run_migrations(backup=True)
    logger.info("Migration complete.")


@app.command()
def token(
    user_id: str = typer.Argument(..., help="User id to issue the token for"),
    save: bool = typer.Option(False, "--save", help="Store the token in [client] token"),
) -> None:
    """Issue a signed API token."""
    config = _ensure_config()
    if not config.api.auth_enabled:
        typer.echo("[ERROR] No [api] secret configured; the API is open and needs no token.")
        raise typer.Exit(code=1)
    value = auth.create_token(user_id, config.api.secret, config.api.token_max_age_days)
    if save:
        set_client_token(DEFAULT_CONFIG_PATH, value)
        typer.echo(f"[OK] Token for {user_id} saved to {DEFAULT_CONFIG_PATH}")
    else:
        typer.echo(value)


@app.command()
def enqueue(
    entity_type: EntityType = typer.Argument(..., help="annotation, bookmark, reading_progress, favorite, review"),
    action: MutationAction = typer.Argument(..., help="create, update, delete"),
    payload: str = typer.Option("{}", "--payload", help="Row as a JSON object"),
) -> None:
    """Queue a change for the next sync."""
    setup_logging("WARNING")
    config = _ensure_config()
    try:
        row = json.loads(payload)
    except json.JSONDecodeError as exc:
        typer.echo(f"[ERROR] --payload is not valid JSON: {exc}")
        raise typer.Exit(code=1)
    if not isinstance(row, dict):
        typer.echo("[ERROR] --payload must be a JSON object")
        raise typer.Exit(code=1)
    if config.client.user_id and action is not MutationAction.DELETE:
        row.setdefault("user_id", config.client.user_id)

    store = _open_store(config)
    result = store.enqueue(entity_type, action, row)
    if not result.ok:
        typer.echo(f"[ERROR] Could not queue change: {result.reason}")
        raise typer.Exit(code=1)
    typer.echo(f"[OK] Queued {entity_type.value} {action.value} ({result.mutation.id}); {store.count()} pending")


@app.command()
def status() -> None:
    """Show pending changes, dead letters and connection state."""
    config = _ensure_config()

    async def _status() -> bool:
        client = OfflineClient.from_config(config)
        try:
            return await client.connectivity.check()
        finally:
            await client.aclose()

    online = asyncio.run(_status())
    store = _open_store(config)
    pending = store.peek_all()
    last_sync = store.last_synced_at()

    typer.echo("Sync status:")
    typer.echo(f"  Backend: {config.client.remote_url} ({'online' if online else 'offline'})")
    typer.echo(f"  Pending changes: {len(pending)}")
    if pending:
        typer.echo(f"  Pending since: {pending[0].created_at:%Y-%m-%d %H:%M:%S} UTC")
    typer.echo(f"  Dead letters: {len(store.dead_letters())}")
    typer.echo(f"  Last sync: {last_sync:%Y-%m-%d %H:%M:%S} UTC" if last_sync else "  Last sync: never")


@app.command()
def sync(
    force: bool = typer.Option(False, "--force", help="Run even if another pass is in progress"),
) -> None:
    """Replay pending changes against the backend now."""
    setup_logging()
    config = _ensure_config()

    async def _sync() -> SyncReport:
        client = OfflineClient.from_config(config)
        try:
            await client.connectivity.check()
            return await client.coordinator.sync_all(force=force)
        finally:
            await client.aclose()

    report = asyncio.run(_sync())
    _print_report(report)
    if report.status in ("offline", "storage_unavailable") or report.all_failed:
        raise typer.Exit(code=1)


@app.command()
def watch() -> None:
    """Poll the backend and sync automatically whenever the connection comes back."""
    setup_logging()
    config = _ensure_config()

    async def _watch() -> None:
        client = OfflineClient.from_config(config)
        client.bus.subscribe(lambda keys: logger.info(f"Refreshed: {', '.join(sorted(keys))}"))
        client.coordinator.attach()
        logger.info(
            f"Watching {config.client.remote_url} every {config.sync.poll_interval_seconds:g}s "
            f"({client.store.count()} pending)"
        )
        try:
            await client.connectivity.run(config.sync.poll_interval_seconds)
        finally:
            await client.aclose()

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        pass


@app.command("dead-letters")
def dead_letters() -> None:
    """List changes that were given up on."""
    config = _ensure_config()
    letters = _open_store(config).dead_letters()
    if not letters:
        typer.echo("[OK] No dead letters.")
        return

    table = Table(title=f"Dead letters ({len(letters)})")
    table.add_column("Id")
    table.add_column("Change")
    table.add_column("Queued")
    table.add_column("Failed")
    table.add_column("Reason", overflow="fold")
    for letter in letters:
        m = letter.mutation
        table.add_row(
            m.id[:8],
            f"{m.entity_type.value} {m.action.value}",
            f"{m.created_at:%Y-%m-%d %H:%M}",
            f"{letter.failed_at:%Y-%m-%d %H:%M}",
            letter.reason,
        )
    console.print(table)


@app.command()
def requeue() -> None:
    """Move every dead letter back into the pending queue."""
    config = _ensure_config()
    moved = _open_store(config).requeue_dead_letters()
    typer.echo(f"[INFO] Requeued {moved} dead letter(s)")


@app.command()
def clear(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm discarding changes"),
    dead: bool = typer.Option(False, "--dead-letters", help="Clear dead letters instead of the queue"),
) -> None:
    """Discard pending changes (or dead letters) without syncing them."""
    if not confirm:
        typer.echo("[ERROR] This discards unsynced changes. Use --confirm.")
        raise typer.Exit(code=1)
    config = _ensure_config()
    store = _open_store(config)
    if dead:
        typer.echo(f"[INFO] Removed {store.clear_dead_letters()} dead letter(s)")
    else:
        typer.echo(f"[INFO] Removed {store.clear()} pending change(s)")


@app.command()
def moderate(text: str = typer.Argument(..., help="Text to check")) -> None:
    """Run the content moderation check on a piece of text."""
    result = check_text(text)
    if result.is_clean:
        typer.echo("[OK] Clean")
        return
    typer.echo(f"[FLAGGED] severity={result.severity}: {', '.join(result.flagged_words)}")
    raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
