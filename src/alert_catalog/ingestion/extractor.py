"""Candidate article extraction from rendered alert message bodies."""

from __future__ import annotations

import html
import json
import logging
import re
from typing import Any

from alert_catalog.ingestion.models import AlertMessage, CandidateArticle
from alert_catalog.ingestion.urls import normalize, unwrap

logger = logging.getLogger(__name__)

DEFAULT_MARKER = "NEWS"

_TAG_RE = re.compile(r"<[^>]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_MARKDOWN_LINK_RE = re.compile(r"\[([^\]]+)\]\((\S+?)\)")
_BLANK_LINE_RE = re.compile(r"\n\s*\n")


class ArticleExtractor:
    """Reads the single article an alert message points at.

    The primary path reads the structured metadata object that prefixes the
    body (``cards[0].widgets[0]``). The fallback looks for the marker token
    followed by a markdown link.
    """

    def __init__(self, *, marker: str = DEFAULT_MARKER) -> None:
        self._marker_re = re.compile(
            rf"(?:^|\W){re.escape(marker)}\s+(?=\[)",
        )

    def extract(self, message: AlertMessage) -> CandidateArticle | None:
        triple = _from_metadata_block(message.raw_body)
        if triple is None:
            triple = self._from_marker_link(message.raw_body)
        if triple is None:
            logger.debug("No candidate article in message %s", message.id)
            return None

        title, description, raw_url = triple
        unwrapped = unwrap(raw_url)
        return CandidateArticle(
            source_message_id=message.id,
            title=title,
            description=description,
            raw_url=raw_url,
            unwrapped_url=unwrapped,
            normalized_url=normalize(unwrapped),
        )

    def _from_marker_link(self, body: str) -> tuple[str, str, str] | None:
        marker = self._marker_re.search(body)
        if marker is None:
            return None
        link = _MARKDOWN_LINK_RE.search(body, marker.end())
        if link is None:
            return None
        url = link.group(2).strip().strip("<>")
        if not url:
            return None
        trailing = _BLANK_LINE_RE.split(body[link.end() :].lstrip(" \t\r\n"), maxsplit=1)[0]
        return _clean_text(link.group(1)), _clean_text(trailing), url


def _from_metadata_block(body: str) -> tuple[str, str, str] | None:
    stripped = body.lstrip()
    if not stripped.startswith("{"):
        return None
    try:
        payload, _ = json.JSONDecoder().raw_decode(stripped)
    except json.JSONDecodeError as error:
        logger.debug("Metadata block is not valid JSON: %s", error)
        return None

    widget = _dig(payload, "cards", 0, "widgets", 0)
    if not isinstance(widget, dict):
        return None
    url = widget.get("url")
    if not isinstance(url, str) or not url.strip():
        return None
    title = widget.get("title")
    description = widget.get("description")
    return (
        _clean_text(title if isinstance(title, str) else ""),
        _clean_text(description if isinstance(description, str) else ""),
        url.strip(),
    )


def _dig(payload: Any, *path: str | int) -> Any:
    current = payload
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or len(current) <= key:
                return None
        elif not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def _clean_text(raw: str) -> str:
    unescaped = html.unescape(_TAG_RE.sub(" ", raw))
    return _WHITESPACE_RE.sub(" ", unescaped).replace("**", "").strip()
