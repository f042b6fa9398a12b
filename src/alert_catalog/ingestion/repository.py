"""SQLModel-backed storage facade for ledgers, catalog and runs."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, col, select

from alert_catalog.errors import LedgerError
from alert_catalog.ingestion.models import (
    CatalogEntry,
    Category,
    FailureRecord,
    LedgerOutcome,
    PipelineRunView,
    ReportSource,
    RunCounters,
    RunStatus,
    Severity,
    Stage,
)
from alert_catalog.ingestion.storage.alembic_runner import upgrade_head
from alert_catalog.ingestion.storage.common import build_sqlite_engine, to_utc_aware, utc_now
from alert_catalog.ingestion.storage.sqlmodel_models import (
    CatalogEntryRow,
    MessageLedger,
    PipelineRun,
    ReportLedger,
    ReportSourceRow,
    RunFailure,
)

logger = logging.getLogger(__name__)
DEFAULT_ACTIVE_RUN_STALE_AFTER = timedelta(minutes=30)


class ActiveRunError(RuntimeError):
    """Another run of the same pipeline holds the single-active-run lock."""


class SQLiteRepository:
    """Facade over the message ledger, report ledger, catalog and run tables.

    Ledger and catalog operations raise ``LedgerError`` on storage failures so
    the orchestrator can abort the batch instead of double processing.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path)

    def close(self) -> None:
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def start_run(
        self,
        pipeline: str,
        *,
        stale_after: timedelta = DEFAULT_ACTIVE_RUN_STALE_AFTER,
    ) -> str:
        if stale_after.total_seconds() <= 0:
            raise ValueError("stale_after must be > 0")

        while True:
            run_id = str(uuid4())
            with _storage_errors("start run"), Session(self.engine) as session:
                now = utc_now()
                session.add(
                    PipelineRun(
                        run_id=run_id,
                        pipeline=pipeline,
                        status=RunStatus.RUNNING.value,
                        started_at=now,
                        heartbeat_at=now,
                    ),
                )
                try:
                    session.commit()
                    return run_id
                except IntegrityError as error:
                    session.rollback()
                    active_run = session.exec(
                        select(PipelineRun).where(
                            PipelineRun.pipeline == pipeline,
                            PipelineRun.status == RunStatus.RUNNING.value,
                        ),
                    ).one_or_none()
                    if active_run is None:
                        raise

                    heartbeat_at = to_utc_aware(active_run.heartbeat_at or active_run.started_at)
                    if datetime.now(tz=UTC) - heartbeat_at > stale_after:
                        reclaimed_at = utc_now()
                        active_run.status = RunStatus.FAILED.value
                        active_run.finished_at = reclaimed_at
                        active_run.heartbeat_at = reclaimed_at
                        active_run.error_summary = (
                            "Auto-recovered stale running run after crash/interruption."
                        )
                        session.add(active_run)
                        session.commit()
                        logger.warning(
                            "Recovered stale running run and starting a new one "
                            "(pipeline=%s stale_run_id=%s stale_heartbeat_at=%s).",
                            pipeline,
                            active_run.run_id,
                            heartbeat_at.isoformat(),
                        )
                        continue

                    raise ActiveRunError(
                        "Another run is already active for this pipeline "
                        f"(pipeline={pipeline}, run_id={active_run.run_id}, "
                        f"heartbeat_at={heartbeat_at.isoformat()}).",
                    ) from error

    def touch_run(self, run_id: str) -> None:
        with _storage_errors("touch run"), Session(self.engine) as session:
            run = session.exec(
                select(PipelineRun).where(
                    PipelineRun.run_id == run_id,
                    PipelineRun.status == RunStatus.RUNNING.value,
                ),
            ).one_or_none()
            if run is None:
                return
            run.heartbeat_at = utc_now()
            session.add(run)
            session.commit()

    def finish_run(
        self,
        run_id: str,
        status: RunStatus,
        counters: RunCounters,
        error_summary: str | None = None,
    ) -> None:
        with _storage_errors("finish run"), Session(self.engine) as session:
            run = session.get(PipelineRun, run_id)
            if run is None:
                raise LedgerError(f"Run not found: {run_id}")

            now = utc_now()
            run.status = status.value
            run.finished_at = now
            run.heartbeat_at = now
            run.processed_count = counters.processed
            run.skipped_count = counters.skipped
            run.not_relevant_count = counters.discarded_not_relevant
            run.duplicate_count = counters.discarded_duplicate
            run.committed_count = counters.committed
            run.failed_count = counters.failed
            run.error_summary = error_summary
            session.add(run)
            session.commit()

    def list_recent_runs(
        self,
        *,
        limit: int = 5,
        pipeline: str | None = None,
    ) -> list[PipelineRunView]:
        with _storage_errors("list runs"), Session(self.engine) as session:
            statement = select(PipelineRun).order_by(
                col(PipelineRun.started_at).desc(),
                col(PipelineRun.run_id).desc(),
            )
            if pipeline is not None:
                statement = statement.where(PipelineRun.pipeline == pipeline)
            rows = session.exec(statement.limit(max(1, limit))).all()

        return [
            PipelineRunView(
                run_id=row.run_id,
                pipeline=row.pipeline,
                status=row.status,
                started_at=to_utc_aware(row.started_at),
                finished_at=to_utc_aware(row.finished_at) if row.finished_at is not None else None,
                processed=row.processed_count,
                skipped=row.skipped_count,
                discarded_not_relevant=row.not_relevant_count,
                discarded_duplicate=row.duplicate_count,
                committed=row.committed_count,
                failed=row.failed_count,
                error_summary=row.error_summary,
            )
            for row in rows
        ]

    def record_failures(self, run_id: str, failures: list[FailureRecord]) -> None:
        if not failures:
            return
        with _storage_errors("record failures"), Session(self.engine) as session:
            now = utc_now()
            for failure in failures:
                session.add(
                    RunFailure(
                        run_id=run_id,
                        message_id=failure.message_id,
                        url=failure.url,
                        stage=failure.stage.value,
                        kind=failure.kind,
                        error=failure.error,
                        retryable=failure.retryable,
                        created_at=now,
                    ),
                )
            session.commit()

    def list_failures(self, run_id: str) -> list[FailureRecord]:
        with _storage_errors("list failures"), Session(self.engine) as session:
            rows = session.exec(
                select(RunFailure)
                .where(RunFailure.run_id == run_id)
                .order_by(col(RunFailure.id)),
            ).all()
        return [
            FailureRecord(
                message_id=row.message_id,
                url=row.url,
                stage=Stage(row.stage),
                kind=row.kind,
                error=row.error,
                retryable=row.retryable,
            )
            for row in rows
        ]

    def has_seen(self, message_id: str) -> bool:
        with _storage_errors("check message ledger"), Session(self.engine) as session:
            return session.get(MessageLedger, message_id) is not None

    def mark_seen(self, message_id: str, *, run_id: str | None, outcome: LedgerOutcome) -> bool:
        """Insert ``message_id`` unless present. Returns False when it already was."""

        with _storage_errors("mark message seen"), Session(self.engine) as session:
            session.add(
                MessageLedger(
                    message_id=message_id,
                    run_id=run_id,
                    outcome=outcome.value,
                    recorded_at=utc_now(),
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                if session.get(MessageLedger, message_id) is None:
                    raise
                return False
            return True

    def has_report(self, report_key: str) -> bool:
        with _storage_errors("check report ledger"), Session(self.engine) as session:
            return session.get(ReportLedger, report_key) is not None

    def record_report(self, report_key: str, entry: CatalogEntry) -> bool:
        """Append ``entry`` to the catalog and claim ``report_key`` atomically.

        Returns False, writing nothing, when the key is already claimed.
        """

        with _storage_errors("record report"), Session(self.engine) as session:
            recorded_at = utc_now()
            session.add(_entry_to_row(entry))
            try:
                session.flush()
                session.add(
                    ReportLedger(
                        report_key=report_key,
                        entry_id=entry.id,
                        recorded_at=recorded_at,
                    ),
                )
                if entry.origin_message_id and entry.article_url:
                    session.flush()
                    session.add(
                        ReportSourceRow(
                            report_key=report_key,
                            message_id=entry.origin_message_id,
                            article_url=entry.article_url,
                            recorded_at=recorded_at,
                        ),
                    )
                session.commit()
            except IntegrityError:
                session.rollback()
                if session.get(ReportLedger, report_key) is None:
                    raise
                return False
            return True

    def add_report_source(self, report_key: str, source: ReportSource) -> bool:
        """Attach another alert article to an already claimed report.

        Returns False when the message was already recorded for that report.
        """

        with _storage_errors("record report source"), Session(self.engine) as session:
            session.add(
                ReportSourceRow(
                    report_key=report_key,
                    message_id=source.message_id,
                    article_url=source.article_url,
                    recorded_at=utc_now(),
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                if session.get(ReportSourceRow, (report_key, source.message_id)) is None:
                    raise
                return False
            return True

    def get_catalog_entry(self, entry_id: str) -> CatalogEntry | None:
        with _storage_errors("read catalog"), Session(self.engine) as session:
            row = session.get(CatalogEntryRow, entry_id)
            if row is None:
                return None
            return _with_sources(session, [_row_to_entry(row)])[0]

    def list_catalog(
        self,
        *,
        unread_only: bool = False,
        limit: int | None = None,
    ) -> list[CatalogEntry]:
        with _storage_errors("list catalog"), Session(self.engine) as session:
            statement = select(CatalogEntryRow).order_by(
                col(CatalogEntryRow.first_seen_at).desc(),
                col(CatalogEntryRow.entry_id),
            )
            if unread_only:
                statement = statement.where(col(CatalogEntryRow.is_read).is_(False))
            if limit is not None:
                statement = statement.limit(max(1, limit))
            entries = [_row_to_entry(row) for row in session.exec(statement).all()]
            return _with_sources(session, entries)

    def set_read(self, entry_id: str, is_read: bool) -> bool:
        """Toggle the read flag. Returns False when the entry does not exist."""

        with _storage_errors("update catalog"), Session(self.engine) as session:
            row = session.get(CatalogEntryRow, entry_id)
            if row is None:
                return False
            row.is_read = is_read
            session.add(row)
            session.commit()
            return True


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (SQLAlchemyError, sqlite3.Error) as error:
        raise LedgerError(f"Storage failure during {operation}: {error}") from error


def _entry_to_row(entry: CatalogEntry) -> CatalogEntryRow:
    return CatalogEntryRow(
        entry_id=entry.id,
        title=entry.title,
        summary=entry.summary,
        source_url=entry.source_url,
        severity=entry.severity.value if entry.severity is not None else None,
        is_domain_specific=entry.is_domain_specific,
        first_seen_at=entry.first_seen_at,
        is_read=entry.is_read,
        discovery_date=entry.discovery_date,
        canonical_id=entry.canonical_id,
        affected_systems_json=json.dumps(entry.affected_systems, ensure_ascii=False),
        origin_message_id=entry.origin_message_id,
        article_url=entry.article_url,
        category=entry.category.value if entry.category is not None else None,
    )


def _row_to_entry(row: CatalogEntryRow) -> CatalogEntry:
    try:
        affected = json.loads(row.affected_systems_json or "[]")
    except json.JSONDecodeError:
        logger.warning("Corrupt affected_systems_json for catalog entry %s", row.entry_id)
        affected = []
    return CatalogEntry(
        id=row.entry_id,
        title=row.title,
        summary=row.summary,
        source_url=row.source_url,
        severity=Severity(row.severity) if row.severity else None,
        is_domain_specific=row.is_domain_specific,
        first_seen_at=to_utc_aware(row.first_seen_at),
        is_read=row.is_read,
        discovery_date=row.discovery_date,
        canonical_id=row.canonical_id,
        affected_systems=[str(item) for item in affected] if isinstance(affected, list) else [],
        origin_message_id=row.origin_message_id,
        article_url=row.article_url,
        category=Category(row.category) if row.category else None,
    )


def _with_sources(session: Session, entries: list[CatalogEntry]) -> list[CatalogEntry]:
    if not entries:
        return entries
    by_id = {entry.id: entry for entry in entries}
    rows = session.exec(
        select(ReportLedger.entry_id, ReportSourceRow.message_id, ReportSourceRow.article_url)
        .select_from(ReportSourceRow)
        .join(ReportLedger, col(ReportLedger.report_key) == col(ReportSourceRow.report_key))
        .where(col(ReportLedger.entry_id).in_(list(by_id)))
        .order_by(col(ReportSourceRow.recorded_at), col(ReportSourceRow.message_id)),
    ).all()
    for entry_id, message_id, article_url in rows:
        by_id[entry_id].sources.append(ReportSource(message_id=message_id, article_url=article_url))
    return entries
