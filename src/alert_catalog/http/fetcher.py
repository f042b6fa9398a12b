"""HTTP client with retries and timeout."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from alert_catalog.errors import FailureKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; AlertCatalogBot/0.1)"
RETRYABLE_HTTP_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(slots=True)
class FetchResult:
    """Result of an HTTP fetch operation."""

    url: str
    status_code: int
    content: str
    content_type: str
    is_success: bool
    error: str | None = None
    error_kind: str | None = None
    retryable: bool = False


class HttpFetcher:
    """HTTP client wrapper with retry, timeout, and user-agent configuration."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        base_headers = {"User-Agent": user_agent}
        if headers:
            base_headers.update(headers)
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            headers=base_headers,
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    def fetch(self, url: str) -> FetchResult:
        """Fetch URL content, returning structured result."""

        try:
            response = self._client.get(url)
        except httpx.TimeoutException:
            logger.warning("Timeout fetching %s", url)
            return _failed(url, error="timeout", kind=FailureKind.TIMEOUT, retryable=True)
        except httpx.HTTPError as exc:
            logger.warning("Network error fetching %s: %s", url, exc)
            return _failed(url, error=str(exc), kind=FailureKind.NETWORK_ERROR, retryable=True)
        except (httpx.InvalidURL, ValueError) as exc:
            logger.warning("Unusable URL %s: %s", url, exc)
            return _failed(
                url,
                error=f"invalid URL: {exc}",
                kind=FailureKind.HTTP_ERROR,
                retryable=False,
            )

        content_type = response.headers.get("content-type", "")
        if response.is_success:
            return FetchResult(
                url=url,
                status_code=response.status_code,
                content=response.text,
                content_type=content_type,
                is_success=True,
            )
        logger.warning("HTTP %s fetching %s", response.status_code, url)
        return FetchResult(
            url=url,
            status_code=response.status_code,
            content="",
            content_type=content_type,
            is_success=False,
            error=f"HTTP {response.status_code}",
            error_kind=FailureKind.HTTP_ERROR,
            retryable=response.status_code in RETRYABLE_HTTP_STATUS_CODES,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _failed(url: str, *, error: str, kind: str, retryable: bool) -> FetchResult:
    return FetchResult(
        url=url,
        status_code=0,
        content="",
        content_type="",
        is_success=False,
        error=error,
        error_kind=kind,
        retryable=retryable,
    )
