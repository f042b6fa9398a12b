"""CLI entrypoint for alert-catalog."""

import logging
import os
from datetime import datetime
from pathlib import Path

import rich_click as click

from alert_catalog import __version__
from alert_catalog.errors import LedgerError
from alert_catalog.ingestion.controllers import (
    AlertCatalogCliController,
    CatalogListCommand,
    CatalogMarkReadCommand,
    RunPipelineCommand,
    RunsCommand,
)
from alert_catalog.ingestion.repository import ActiveRunError
from alert_catalog.ingestion.sources.base import MessageStoreError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = AlertCatalogCliController()
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.group()
@click.version_option(version=__version__, prog_name="alert-catalog")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Logging level. Defaults to ALERT_CATALOG_LOG_LEVEL or INFO.",
)
def alert_catalog(log_level: str | None) -> None:
    """Catalog of unique reports discovered through news alerts."""

    level = (log_level or os.getenv("ALERT_CATALOG_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@alert_catalog.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--messages",
    "messages_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="JSON Lines file with alert messages. Defaults to ALERT_CATALOG_MESSAGES_PATH.",
)
@click.option(
    "--since",
    type=click.DateTime(formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S"]),
    default=None,
    help="Only consider messages received at or after this time (UTC).",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1),
    default=None,
    help="Max number of messages to read from the store.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1, max=64),
    default=None,
    help="Parallel fetch/AI calls. Defaults to ALERT_CATALOG_PIPELINE_CONCURRENCY.",
)
def run_pipeline(
    db_path: Path | None,
    messages_path: Path | None,
    since: datetime | None,
    limit: int | None,
    concurrency: int | None,
) -> None:
    """Process new alert messages into the report catalog."""

    _emit_lines(
        _guarded(
            CONTROLLER.run,
            RunPipelineCommand(
                db_path=db_path,
                messages_path=messages_path,
                since=since,
                limit=limit,
                concurrency=concurrency,
            ),
        ),
    )


@alert_catalog.group()
def catalog() -> None:
    """Catalog review commands."""


@catalog.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--unread-only/--all",
    default=False,
    show_default=True,
    help="Only list entries that were not marked read.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=None,
    help="Max number of entries to print, newest first.",
)
def catalog_list(db_path: Path | None, unread_only: bool, limit: int | None) -> None:
    """List catalog entries."""

    _emit_lines(
        _guarded(
            CONTROLLER.list_catalog,
            CatalogListCommand(db_path=db_path, unread_only=unread_only, limit=limit),
        ),
    )


@catalog.command("mark-read")
@click.argument("entry_id")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--unread",
    is_flag=True,
    default=False,
    help="Mark the entry unread instead.",
)
def catalog_mark_read(entry_id: str, db_path: Path | None, unread: bool) -> None:
    """Toggle the read flag of one catalog entry."""

    _emit_lines(
        _guarded(
            CONTROLLER.mark_read,
            CatalogMarkReadCommand(db_path=db_path, entry_id=entry_id, is_read=not unread),
        ),
    )


@alert_catalog.command("runs")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=50),
    default=5,
    show_default=True,
    help="How many latest runs to display.",
)
def runs(db_path: Path | None, limit: int) -> None:
    """Show recent pipeline runs."""

    _emit_lines(_guarded(CONTROLLER.runs, RunsCommand(db_path=db_path, limit=limit)))


def _guarded(handler, command) -> list[str]:  # noqa: ANN001
    try:
        return handler(command)
    except (ActiveRunError, LedgerError, LookupError, MessageStoreError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    alert_catalog()
