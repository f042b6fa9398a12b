"""Alert articles referencing each cataloged report."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261017_0002"
down_revision = "20261017_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "report_sources",
        sa.Column("report_key", sa.String(), nullable=False),
        sa.Column("message_id", sa.String(), nullable=False),
        sa.Column("article_url", sa.String(), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["report_key"],
            ["report_ledger.report_key"],
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("report_key", "message_id"),
    )

    op.execute(
        """
        INSERT INTO report_sources (report_key, message_id, article_url, recorded_at)
        SELECT ledger.report_key, entry.origin_message_id, entry.article_url, ledger.recorded_at
        FROM report_ledger AS ledger
        JOIN catalog_entries AS entry ON entry.entry_id = ledger.entry_id
        WHERE entry.origin_message_id IS NOT NULL
          AND entry.article_url IS NOT NULL
        """,
    )


def downgrade() -> None:
    op.drop_table("report_sources")
