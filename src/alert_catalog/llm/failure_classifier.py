"""Deterministic backend failure classification for retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from alert_catalog.errors import FailureKind

DEFAULT_TRANSIENT_EXIT_CODES = (75,)

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "authentication",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
)
_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "overloaded",
    "please retry",
    "try again later",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "network error",
    "could not resolve host",
    "502",
    "503",
    "504",
)

_NON_RETRYABLE_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("billing_or_quota", _BILLING_OR_QUOTA_PATTERNS),
    ("access_or_auth", _ACCESS_OR_AUTH_PATTERNS),
    ("model_not_available", _MODEL_NOT_AVAILABLE_PATTERNS),
)


@dataclass(slots=True)
class BackendFailureClassification:
    """Normalized failure classification result."""

    kind: str
    transient: bool
    matched_rule: str
    matched_pattern: str | None


def classify_backend_failure(
    *,
    exit_code: int,
    stdout: str,
    stderr: str,
    transient_exit_codes: tuple[int, ...] = DEFAULT_TRANSIENT_EXIT_CODES,
) -> BackendFailureClassification:
    """Classify a non-timeout backend failure as transient or not."""

    haystack = f"{stderr}\n{stdout}".lower()

    for rule, patterns in _NON_RETRYABLE_RULES:
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return BackendFailureClassification(
                kind=FailureKind.BACKEND_ERROR,
                transient=False,
                matched_rule=rule,
                matched_pattern=pattern,
            )

    pattern = _first_match(haystack, _TRANSIENT_PATTERNS)
    if pattern is not None or exit_code in transient_exit_codes:
        return BackendFailureClassification(
            kind=FailureKind.BACKEND_TRANSIENT,
            transient=True,
            matched_rule="transient_exit_code" if pattern is None else "transient_pattern",
            matched_pattern=pattern,
        )

    return BackendFailureClassification(
        kind=FailureKind.BACKEND_ERROR,
        transient=False,
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
