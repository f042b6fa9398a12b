"""Initial alert catalog schema: runs, ledgers, catalog, failures."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "pipeline_runs",
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("pipeline", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("heartbeat_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("skipped_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("not_relevant_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("duplicate_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("committed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_summary", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("ix_pipeline_runs_pipeline", "pipeline_runs", ["pipeline"])
    op.create_index("ix_pipeline_runs_status", "pipeline_runs", ["status"])
    op.create_index(
        "uq_pipeline_runs_pipeline_running",
        "pipeline_runs",
        ["pipeline"],
        unique=True,
        sqlite_where=sa.text("status = 'running'"),
    )

    op.create_table(
        "message_ledger",
        sa.Column("message_id", sa.String(), nullable=False),
        sa.Column("run_id", sa.String(), nullable=True),
        sa.Column("outcome", sa.String(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["pipeline_runs.run_id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("message_id"),
    )
    op.create_index("ix_message_ledger_run_id", "message_ledger", ["run_id"])

    op.create_table(
        "catalog_entries",
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("source_url", sa.String(), nullable=False),
        sa.Column("severity", sa.String(), nullable=True),
        sa.Column("is_domain_specific", sa.Boolean(), nullable=False),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("discovery_date", sa.String(), nullable=True),
        sa.Column("canonical_id", sa.String(), nullable=True),
        sa.Column("affected_systems_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("origin_message_id", sa.String(), nullable=True),
        sa.Column("article_url", sa.String(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("entry_id"),
    )
    op.create_index("ix_catalog_entries_source_url", "catalog_entries", ["source_url"])
    op.create_index("ix_catalog_entries_first_seen_at", "catalog_entries", ["first_seen_at"])
    op.create_index("ix_catalog_entries_is_read", "catalog_entries", ["is_read"])

    op.create_table(
        "report_ledger",
        sa.Column("report_key", sa.String(), nullable=False),
        sa.Column("entry_id", sa.String(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["entry_id"],
            ["catalog_entries.entry_id"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("report_key"),
    )
    op.create_index("ix_report_ledger_entry_id", "report_ledger", ["entry_id"])

    op.create_table(
        "run_failures",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("message_id", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=True),
        sa.Column("stage", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("error", sa.Text(), nullable=False),
        sa.Column("retryable", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["run_id"], ["pipeline_runs.run_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_run_failures_run_id", "run_failures", ["run_id"])
    op.create_index("ix_run_failures_message_id", "run_failures", ["message_id"])


def downgrade() -> None:
    op.drop_index("ix_run_failures_message_id", table_name="run_failures")
    op.drop_index("ix_run_failures_run_id", table_name="run_failures")
    op.drop_table("run_failures")
    op.drop_index("ix_report_ledger_entry_id", table_name="report_ledger")
    op.drop_table("report_ledger")
    op.drop_index("ix_catalog_entries_is_read", table_name="catalog_entries")
    op.drop_index("ix_catalog_entries_first_seen_at", table_name="catalog_entries")
    op.drop_index("ix_catalog_entries_source_url", table_name="catalog_entries")
    op.drop_table("catalog_entries")
    op.drop_index("ix_message_ledger_run_id", table_name="message_ledger")
    op.drop_table("message_ledger")
    op.drop_index("uq_pipeline_runs_pipeline_running", table_name="pipeline_runs")
    op.drop_index("ix_pipeline_runs_status", table_name="pipeline_runs")
    op.drop_index("ix_pipeline_runs_pipeline", table_name="pipeline_runs")
    op.drop_table("pipeline_runs")
