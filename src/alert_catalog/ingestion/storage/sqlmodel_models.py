"""SQLModel ORM tables for ledgers, catalog and run bookkeeping."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text, text
from sqlmodel import Field, SQLModel


class PipelineRun(SQLModel, table=True):
    __tablename__ = "pipeline_runs"  # type: ignore[bad-override]
    __table_args__ = (
        Index(
            "uq_pipeline_runs_pipeline_running",
            "pipeline",
            unique=True,
            sqlite_where=text("status = 'running'"),
        ),
    )

    run_id: str = Field(primary_key=True)
    pipeline: str = Field(index=True)
    status: str = Field(index=True)
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    heartbeat_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    processed_count: int = 0
    skipped_count: int = 0
    not_relevant_count: int = 0
    duplicate_count: int = 0
    committed_count: int = 0
    failed_count: int = 0
    error_summary: str | None = Field(default=None, sa_column=Column(Text, nullable=True))


class MessageLedger(SQLModel, table=True):
    __tablename__ = "message_ledger"  # type: ignore[bad-override]

    message_id: str = Field(primary_key=True)
    run_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("pipeline_runs.run_id", ondelete="SET NULL"),
            nullable=True,
            index=True,
        ),
    )
    outcome: str
    recorded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class CatalogEntryRow(SQLModel, table=True):
    __tablename__ = "catalog_entries"  # type: ignore[bad-override]

    entry_id: str = Field(primary_key=True)
    title: str
    summary: str = Field(sa_column=Column(Text, nullable=False))
    source_url: str = Field(index=True)
    severity: str | None = None
    is_domain_specific: bool = False
    first_seen_at: datetime = Field(
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    is_read: bool = Field(default=False, index=True)
    discovery_date: str | None = None
    canonical_id: str | None = None
    affected_systems_json: str = Field(
        default="[]",
        sa_column=Column(Text, nullable=False, server_default="[]"),
    )
    origin_message_id: str | None = None
    article_url: str | None = None
    category: str | None = None


class ReportLedger(SQLModel, table=True):
    __tablename__ = "report_ledger"  # type: ignore[bad-override]

    report_key: str = Field(primary_key=True)
    entry_id: str = Field(
        sa_column=Column(
            ForeignKey("catalog_entries.entry_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    recorded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ReportSourceRow(SQLModel, table=True):
    __tablename__ = "report_sources"  # type: ignore[bad-override]

    report_key: str = Field(
        sa_column=Column(
            ForeignKey("report_ledger.report_key", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    message_id: str = Field(primary_key=True)
    article_url: str
    recorded_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class RunFailure(SQLModel, table=True):
    __tablename__ = "run_failures"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    run_id: str = Field(
        sa_column=Column(
            ForeignKey("pipeline_runs.run_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    message_id: str = Field(index=True)
    url: str | None = None
    stage: str
    kind: str
    error: str = Field(sa_column=Column(Text, nullable=False))
    retryable: bool = False
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
