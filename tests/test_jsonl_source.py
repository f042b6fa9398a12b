from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

import allure
import pytest

from alert_catalog.ingestion.models import MessageFilter
from alert_catalog.ingestion.sources.base import MessageStoreError
from alert_catalog.ingestion.sources.jsonl import JsonlMessageStore

pytestmark = [
    allure.epic("Catalog pipeline"),
    allure.feature("Message store"),
]


def _write_lines(path: Path, lines: list[object]) -> Path:
    path.write_text(
        "\n".join(line if isinstance(line, str) else json.dumps(line) for line in lines) + "\n",
        encoding="utf-8",
    )
    return path


def test_reads_messages_oldest_first(tmp_path: Path) -> None:
    store = JsonlMessageStore(
        _write_lines(
            tmp_path / "messages.jsonl",
            [
                {
                    "id": "b",
                    "received_at": "2026-10-02T08:00:00Z",
                    "raw_body": "second",
                    "subject": "Google Alert - jailbreak",
                },
                {
                    "id": "a",
                    "received_at": "2026-10-01T08:00:00",
                    "raw_body": "first",
                    "sender": "alerts@example.com",
                },
            ],
        ),
    )

    messages = store.list_messages(MessageFilter())

    assert [message.id for message in messages] == ["a", "b"]
    assert messages[0].received_at == datetime(2026, 10, 1, 8, tzinfo=UTC)
    assert messages[0].sender == "alerts@example.com"
    assert messages[1].subject == "Google Alert - jailbreak"


def test_since_and_limit_filters(tmp_path: Path) -> None:
    store = JsonlMessageStore(
        _write_lines(
            tmp_path / "messages.jsonl",
            [
                {"id": f"m{day}", "received_at": f"2026-10-0{day}T00:00:00+00:00", "raw_body": ""}
                for day in range(1, 6)
            ],
        ),
    )

    since = store.list_messages(MessageFilter(since=datetime(2026, 10, 3)))
    limited = store.list_messages(MessageFilter(since=datetime(2026, 10, 3, tzinfo=UTC), limit=2))

    assert [message.id for message in since] == ["m3", "m4", "m5"]
    assert [message.id for message in limited] == ["m3", "m4"]


def test_bad_lines_are_skipped_with_warning(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    store = JsonlMessageStore(
        _write_lines(
            tmp_path / "messages.jsonl",
            [
                "{not json",
                "[1, 2, 3]",
                {"id": "", "received_at": "2026-10-01T00:00:00Z", "raw_body": "x"},
                {"id": "no-body", "received_at": "2026-10-01T00:00:00Z"},
                {"id": "bad-date", "received_at": "yesterday", "raw_body": "x"},
                "",
                {"id": "ok", "received_at": "2026-10-01T00:00:00Z", "raw_body": "x"},
            ],
        ),
    )

    with caplog.at_level(logging.WARNING):
        messages = store.list_messages(MessageFilter())

    assert [message.id for message in messages] == ["ok"]
    assert len([record for record in caplog.records if "Skipping" in record.message]) == 5


def test_missing_file_raises(tmp_path: Path) -> None:
    store = JsonlMessageStore(tmp_path / "absent.jsonl")

    with pytest.raises(MessageStoreError, match="not found"):
        store.list_messages(MessageFilter())
