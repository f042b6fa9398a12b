"""HTML to report text extraction using trafilatura."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import trafilatura

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ExtractionResult:
    """Result of HTML text extraction."""

    text: str
    is_success: bool
    error: str | None = None


def extract_text(html: str, *, url: str | None = None, max_chars: int = 0) -> ExtractionResult:
    """Extract the main article text from HTML.

    Tries a precision-oriented pass first and retries with recall when it
    yields nothing. Links stay in the output text.
    """

    if not html or not html.strip():
        return ExtractionResult(text="", is_success=False, error="empty HTML input")

    text: str | None = None
    for mode in ("precision", "recall"):
        try:
            text = trafilatura.extract(
                html,
                url=url,
                include_links=True,
                include_tables=True,
                favor_precision=mode == "precision",
                favor_recall=mode == "recall",
                deduplicate=True,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("trafilatura %s pass failed for %s: %s", mode, url or "<unknown>", exc)
            text = None
        if text:
            break

    if not text:
        return ExtractionResult(text="", is_success=False, error="no content extracted")

    if max_chars > 0 and len(text) > max_chars:
        text = text[:max_chars].rstrip()
    return ExtractionResult(text=text, is_success=True)
