from __future__ import annotations

import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger
from pydantic import ValidationError
import typer

from banksync.adapters.db.facade import DB
from banksync.config import SyncConfig, SyncConfigError, load_sync_config_from_env
from banksync.jobs.manual_sync import run_balance_refresh, run_manual_sync
from banksync.sync.ports import StorageError

# Load environment variables from .env
load_dotenv()

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} [{level}] {name}: {message}"

app = typer.Typer(
    help="Bank sync: pull bank transactions and balances for a connection.",
    no_args_is_help=True,
)


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level)


def _load_config() -> SyncConfig:
    try:
        config = load_sync_config_from_env()
    except SyncConfigError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2) from e
    _configure_logging(config.log_level)
    return config


@app.command("sync")
def sync(
    connection_id: str = typer.Option(..., help="Bank connection to sync"),
    team_id: str = typer.Option(..., help="Team that owns the connection"),
) -> None:
    """Sync transactions and balances for every enabled account of a connection."""
    config = _load_config()
    payload = {"connectionId": connection_id, "teamId": team_id}
    try:
        result = asyncio.run(run_manual_sync(payload, config=config))
    except (StorageError, ValidationError) as e:
        typer.echo(f"Sync failed: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(
        f"Synced connection {result.connection_id}: "
        f"{result.total_upserts} upserted, "
        f"{result.total_failed_upserts} failed, "
        f"{len(result.new_transactions)} new"
    )
    if result.failed_accounts:
        typer.echo(f"Failed accounts: {', '.join(result.failed_accounts)}")
    if not result.success:
        raise typer.Exit(code=1)


@app.command("refresh-balances")
def refresh_balances(
    connection_id: str = typer.Option(..., help="Bank connection to refresh"),
    team_id: str = typer.Option(..., help="Team that owns the connection"),
) -> None:
    """Refresh balances without fetching transactions."""
    config = _load_config()
    payload = {"connectionId": connection_id, "teamId": team_id}
    try:
        result = asyncio.run(run_balance_refresh(payload, config=config))
    except (StorageError, ValidationError) as e:
        typer.echo(f"Balance refresh failed: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(
        f"Refreshed {len(result.updated_accounts)} balances "
        f"for connection {result.connection_id}"
    )
    if result.failed_accounts:
        typer.echo(f"Failed accounts: {', '.join(result.failed_accounts)}")
    if not result.success:
        raise typer.Exit(code=1)


@app.command("init-db")
def init_db(
    url: str | None = typer.Option(
        None, help="Database URL; defaults to BANKSYNC_DATABASE_URL"
    ),
) -> None:
    """Create the bank connection, account and transaction tables."""
    if url is None:
        url = _load_config().database_url
    db = DB(url)
    try:
        db.create_schema()
    except StorageError as e:
        typer.echo(f"Failed to initialize database: {e}", err=True)
        raise typer.Exit(code=1) from e
    finally:
        db.dispose()
    typer.echo(f"Initialized database at {url}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
