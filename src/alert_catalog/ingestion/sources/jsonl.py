"""JSON Lines message store adapter."""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from alert_catalog.ingestion.models import AlertMessage, MessageFilter
from alert_catalog.ingestion.sources.base import MessageStoreError

logger = logging.getLogger(__name__)


class JsonlMessageStore:
    """Reads alert messages exported one JSON object per line.

    Each line carries ``id``, ``received_at`` (ISO 8601) and ``raw_body``;
    ``subject`` and ``sender`` are optional. Lines that fail to parse are
    logged and skipped.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    def list_messages(self, message_filter: MessageFilter) -> list[AlertMessage]:
        if not self._path.exists():
            raise MessageStoreError(f"Message file not found: {self._path}")

        messages: list[AlertMessage] = []
        with self._path.open(encoding="utf-8") as handle:
            for line_no, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                message = _parse_line(line, line_no=line_no, path=self._path)
                if message is None:
                    continue
                if message_filter.since is not None and message.received_at < _aware(
                    message_filter.since,
                ):
                    continue
                messages.append(message)

        messages.sort(key=lambda item: item.received_at)
        if message_filter.limit is not None:
            messages = messages[: message_filter.limit]
        return messages


def _parse_line(line: str, *, line_no: int, path: Path) -> AlertMessage | None:
    try:
        payload = json.loads(line)
    except json.JSONDecodeError as error:
        logger.warning("Skipping invalid JSON at %s:%d: %s", path, line_no, error)
        return None
    if not isinstance(payload, dict):
        logger.warning("Skipping non-object line at %s:%d", path, line_no)
        return None

    message_id = payload.get("id")
    raw_body = payload.get("raw_body")
    if not isinstance(message_id, str) or not message_id.strip() or not isinstance(raw_body, str):
        logger.warning("Skipping line without id/raw_body at %s:%d", path, line_no)
        return None

    try:
        received_at = _parse_datetime(payload.get("received_at"))
    except ValueError as error:
        logger.warning("Skipping line with bad received_at at %s:%d: %s", path, line_no, error)
        return None

    return AlertMessage(
        id=message_id.strip(),
        received_at=received_at,
        raw_body=raw_body,
        subject=str(payload.get("subject") or ""),
        sender=str(payload.get("sender") or ""),
    )


def _parse_datetime(value: object) -> datetime:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"expected ISO timestamp, got {value!r}")
    return _aware(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
