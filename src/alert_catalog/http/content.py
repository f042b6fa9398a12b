"""Content fetcher used for alert articles and resolved reports."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from html import unescape
from typing import Protocol

from alert_catalog.errors import FailureKind
from alert_catalog.http.fetcher import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_SECONDS, HttpFetcher
from alert_catalog.http.html_extractor import extract_text
from alert_catalog.http.youtube_extractor import TranscriptReader, is_youtube_url

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 8_000

_TAG_RE = re.compile(r"<[^>]+>")
_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b.*?</\1>", re.IGNORECASE | re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class FetchOutcome:
    """Either ``content`` or an ``error_kind``, never both."""

    url: str
    content: str | None = None
    error_kind: str | None = None
    error: str | None = None
    retryable: bool = False

    @property
    def is_success(self) -> bool:
        return self.content is not None


class ContentSource(Protocol):
    """Anything able to turn a URL into text for the AI stages."""

    def fetch(self, url: str) -> FetchOutcome:
        raise NotImplementedError


class ContentFetcher:
    """Fetch a URL and reduce it to plain text.

    HTML goes through trafilatura, other text types are kept as-is and YouTube
    links are read from transcripts. Text is truncated to ``max_chars``.
    """

    def __init__(
        self,
        *,
        fetcher: HttpFetcher | None = None,
        max_chars: int = DEFAULT_MAX_CHARS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transcripts: TranscriptReader | None = None,
    ) -> None:
        self._fetcher = fetcher or HttpFetcher(
            timeout_seconds=timeout_seconds,
            max_retries=max_retries,
        )
        self._owns_fetcher = fetcher is None
        self._max_chars = max_chars
        self._transcripts = transcripts or TranscriptReader(max_chars=max_chars)

    def fetch(self, url: str) -> FetchOutcome:
        if is_youtube_url(url):
            return self._fetch_youtube(url)
        return self._fetch_page(url)

    def _fetch_youtube(self, url: str) -> FetchOutcome:
        transcript = self._transcripts.read(url)
        if transcript.is_success:
            return FetchOutcome(url=url, content=transcript.text)
        return FetchOutcome(
            url=url,
            error_kind=transcript.error_kind or FailureKind.HTTP_ERROR,
            error=transcript.error,
            retryable=transcript.retryable,
        )

    def _fetch_page(self, url: str) -> FetchOutcome:
        result = self._fetcher.fetch(url)
        if not result.is_success:
            return FetchOutcome(
                url=url,
                error_kind=result.error_kind or FailureKind.NETWORK_ERROR,
                error=result.error,
                retryable=result.retryable,
            )

        if "html" not in result.content_type.lower() and result.content_type:
            return FetchOutcome(url=url, content=result.content[: self._max_chars])

        extraction = extract_text(result.content, url=url, max_chars=self._max_chars)
        if extraction.is_success:
            return FetchOutcome(url=url, content=extraction.text)

        logger.debug("Main-text extraction failed for %s: %s", url, extraction.error)
        return FetchOutcome(url=url, content=strip_html(result.content)[: self._max_chars])

    def close(self) -> None:
        if self._owns_fetcher:
            self._fetcher.close()

    def __enter__(self) -> ContentFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def strip_html(raw: str) -> str:
    """Crude tag stripper used when main-text extraction finds nothing."""

    text = _TAG_RE.sub(" ", _SCRIPT_STYLE_RE.sub(" ", raw))
    return _WHITESPACE_RE.sub(" ", unescape(text)).strip()
