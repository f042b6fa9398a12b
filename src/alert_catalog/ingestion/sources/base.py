"""Message store contracts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from alert_catalog.ingestion.models import AlertMessage, MessageFilter


@dataclass(slots=True)
class MessageStoreError(Exception):
    """Message store could not be read."""

    message: str
    code: str = "message_store_error"

    def __str__(self) -> str:
        return self.message


class MessageStore(Protocol):
    """Read-only access to alert messages owned by an external system."""

    def list_messages(self, message_filter: MessageFilter) -> list[AlertMessage]:
        """Return messages matching the filter, oldest first."""
        raise NotImplementedError
