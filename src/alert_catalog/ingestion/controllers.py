"""Controllers for alert catalog CLI commands."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from alert_catalog.config import Settings
from alert_catalog.http.content import ContentFetcher
from alert_catalog.ingestion.models import (
    CatalogEntry,
    FailureRecord,
    MessageFilter,
    PipelineRunView,
    RunSummary,
)
from alert_catalog.ingestion.pipeline import CatalogOrchestrator
from alert_catalog.ingestion.repository import SQLiteRepository
from alert_catalog.ingestion.sources.jsonl import JsonlMessageStore
from alert_catalog.ingestion.urls import extract_domain
from alert_catalog.llm.backend import CliAgentBackend
from alert_catalog.llm.classifier import ClassificationClient
from alert_catalog.llm.report_extractor import ReportExtractor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RunPipelineCommand:
    """CLI inputs for one pipeline pass."""

    db_path: Path | None
    messages_path: Path | None
    since: datetime | None
    limit: int | None
    concurrency: int | None


@dataclass(slots=True)
class CatalogListCommand:
    """CLI inputs for catalog listing."""

    db_path: Path | None
    unread_only: bool
    limit: int | None


@dataclass(slots=True)
class CatalogMarkReadCommand:
    """CLI inputs for the read/unread toggle."""

    db_path: Path | None
    entry_id: str
    is_read: bool


@dataclass(slots=True)
class RunsCommand:
    """CLI inputs for recent run listing."""

    db_path: Path | None
    limit: int


class AlertCatalogCliController:
    """Coordinates alert catalog command execution."""

    def run(self, command: RunPipelineCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        if command.messages_path is not None:
            settings.store.messages_path = command.messages_path
        if command.concurrency is not None:
            settings.pipeline.concurrency = command.concurrency
        settings.validate()
        if settings.store.messages_path is None:
            raise ValueError(
                "Message file is required: pass --messages or set ALERT_CATALOG_MESSAGES_PATH.",
            )

        message_filter = MessageFilter(since=_aware(command.since), limit=command.limit)
        with _repository(settings) as repository, _cancellation() as cancel_requested:
            with open_orchestrator(
                settings=settings,
                repository=repository,
                cancel_requested=cancel_requested,
            ) as orchestrator:
                summary = orchestrator.run(message_filter)
        return format_run_summary(summary)

    def list_catalog(self, command: CatalogListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            entries = repository.list_catalog(
                unread_only=command.unread_only,
                limit=command.limit,
            )
        if not entries:
            return ["Catalog is empty." if not command.unread_only else "No unread entries."]
        lines = [f"Catalog entries: {len(entries)}"]
        lines.extend(_format_entry(entry) for entry in entries)
        return lines

    def mark_read(self, command: CatalogMarkReadCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            updated = repository.set_read(command.entry_id, command.is_read)
        if not updated:
            raise LookupError(f"Catalog entry not found: {command.entry_id}")
        state = "read" if command.is_read else "unread"
        return [f"Entry {command.entry_id} marked {state}."]

    def runs(self, command: RunsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            recent = repository.list_recent_runs(limit=command.limit)
        if not recent:
            return ["No pipeline runs recorded yet."]
        return [_format_run(run) for run in recent]


@contextmanager
def open_orchestrator(
    *,
    settings: Settings,
    repository: SQLiteRepository,
    cancel_requested: Callable[[], bool] | None = None,
) -> Iterator[CatalogOrchestrator]:
    """Wire the production adapters around ``repository``."""

    if settings.store.messages_path is None:
        raise ValueError("ALERT_CATALOG_MESSAGES_PATH is not set.")

    backend = CliAgentBackend()
    with ContentFetcher(
        max_chars=settings.fetch.max_chars,
        timeout_seconds=settings.fetch.timeout_seconds,
        max_retries=settings.fetch.max_retries,
    ) as content:
        yield CatalogOrchestrator(
            settings=settings,
            repository=repository,
            store=JsonlMessageStore(settings.store.messages_path),
            content=content,
            classifier=ClassificationClient(
                backend=backend,
                settings=settings.llm,
                topic=settings.pipeline.topic,
                min_confidence=settings.pipeline.min_confidence,
                shutdown_requested=cancel_requested,
            ),
            report_extractor=ReportExtractor(
                backend=backend,
                settings=settings.llm,
                topic=settings.pipeline.topic,
                shutdown_requested=cancel_requested,
            ),
            cancel_requested=cancel_requested,
        )


def format_run_summary(summary: RunSummary) -> list[str]:
    counters = summary.counters
    lines = [
        "Pipeline run completed: "
        f"run_id={summary.run_id} status={summary.status.value} "
        f"processed={counters.processed} "
        f"skipped={counters.skipped} "
        f"not_relevant={counters.discarded_not_relevant} "
        f"duplicate={counters.discarded_duplicate} "
        f"committed={counters.committed} "
        f"failed={counters.failed}",
    ]
    if summary.canceled:
        lines.append("Run was canceled; unstarted messages will be picked up next run.")
    if summary.failures:
        lines.append(f"Failures ({len(summary.failures)}):")
        lines.extend(_format_failure(failure) for failure in summary.failures)
    return lines


@contextmanager
def _repository(settings: Settings) -> Iterator[SQLiteRepository]:
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
    repository = SQLiteRepository(settings.db_path)
    try:
        repository.init_schema()
        yield repository
    finally:
        repository.close()


@contextmanager
def _cancellation() -> Iterator[Callable[[], bool]]:
    """SIGINT/SIGTERM request a cooperative stop instead of killing the run."""

    stop = threading.Event()

    def _handler(signum: int, _: object | None) -> None:
        logger.warning("Received %s; finishing in-flight items", signal.Signals(signum).name)
        stop.set()

    originals: dict[int, object] = {}
    try:
        for signum in (signal.SIGINT, signal.SIGTERM):
            originals[signum] = signal.getsignal(signum)
            signal.signal(signum, _handler)
    except ValueError:
        # Signal handlers can only be installed in main thread.
        originals.clear()
    try:
        yield stop.is_set
    finally:
        for signum, original in originals.items():
            signal.signal(signum, original)  # type: ignore[arg-type]


def _aware(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _format_entry(entry: CatalogEntry) -> str:
    marker = " " if entry.is_read else "*"
    severity = entry.severity.value if entry.severity is not None else "-"
    scope = "domain" if entry.is_domain_specific else "general"
    lines = [
        f"{marker} {entry.id} [{severity}/{scope}] {entry.title} "
        f"({extract_domain(entry.source_url)}) first_seen={entry.first_seen_at.isoformat()}"
        f" sources={entry.source_count}"
        f"{f' id={entry.canonical_id}' if entry.canonical_id else ''}",
        f"    {entry.source_url}",
        f"    {entry.summary}",
    ]
    seen: set[str] = set()
    for source in entry.sources:
        if source.article_url not in seen:
            seen.add(source.article_url)
            lines.append(f"    via {source.article_url}")
    return "\n".join(lines)


def _format_failure(failure: FailureRecord) -> str:
    return (
        f"  message={failure.message_id} url={failure.url or '-'} "
        f"stage={failure.stage.value} kind={failure.kind} "
        f"retryable={'yes' if failure.retryable else 'no'} error={failure.error}"
    )


def _format_run(run: PipelineRunView) -> str:
    finished = run.finished_at.isoformat() if run.finished_at is not None else "-"
    line = (
        f"{run.run_id} pipeline={run.pipeline} status={run.status} "
        f"started={run.started_at.isoformat()} finished={finished} "
        f"processed={run.processed} skipped={run.skipped} "
        f"not_relevant={run.discarded_not_relevant} duplicate={run.discarded_duplicate} "
        f"committed={run.committed} failed={run.failed}"
    )
    if run.error_summary:
        line += f" error={run.error_summary}"
    return line
