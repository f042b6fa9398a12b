from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from alert_catalog.config import LlmSettings, PipelineSettings, Settings
from alert_catalog.ingestion.repository import SQLiteRepository


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        db_path=tmp_path / "catalog.db",
        pipeline=PipelineSettings(concurrency=2),
        llm=LlmSettings(workdir=tmp_path / "llm", retry_backoff_seconds=0.0),
    )


@pytest.fixture()
def repository(settings: Settings) -> Iterator[SQLiteRepository]:
    repo = SQLiteRepository(settings.db_path)
    repo.init_schema()
    yield repo
    repo.close()
