"""Prefect flow running one alert catalog pass, for scheduled deployments."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from prefect import flow

from alert_catalog.config import Settings
from alert_catalog.ingestion.controllers import open_orchestrator
from alert_catalog.ingestion.models import MessageFilter
from alert_catalog.ingestion.repository import SQLiteRepository

logger = logging.getLogger(__name__)


@flow(name="alert_catalog_flow")
def catalog_flow(
    db_path: Path | None = None,
    messages_path: Path | None = None,
    since: datetime | None = None,
    limit: int | None = None,
) -> dict[str, object]:
    """Run the pipeline once and return the run summary as plain data."""

    settings = Settings.from_env(db_path=db_path)
    if messages_path is not None:
        settings.store.messages_path = messages_path
    settings.validate()

    repository = SQLiteRepository(settings.db_path)
    try:
        repository.init_schema()
        with open_orchestrator(settings=settings, repository=repository) as orchestrator:
            summary = orchestrator.run(MessageFilter(since=since, limit=limit))
    finally:
        repository.close()

    logger.info("Flow finished run %s with status %s", summary.run_id, summary.status.value)
    counters = summary.counters
    return {
        "run_id": summary.run_id,
        "status": summary.status.value,
        "processed": counters.processed,
        "skipped": counters.skipped,
        "discarded_not_relevant": counters.discarded_not_relevant,
        "discarded_duplicate": counters.discarded_duplicate,
        "committed": counters.committed,
        "failed": counters.failed,
        "failures": [
            {
                "message_id": failure.message_id,
                "url": failure.url,
                "stage": failure.stage.value,
                "kind": failure.kind,
                "retryable": failure.retryable,
            }
            for failure in summary.failures
        ],
    }
