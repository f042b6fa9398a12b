"""Error taxonomy shared by pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass


class FailureKind:
    """Failure kinds recorded in per-run failure lists."""

    TIMEOUT = "timeout"
    HTTP_ERROR = "http-error"
    NETWORK_ERROR = "network-error"
    BACKEND_TRANSIENT = "backend-transient"
    BACKEND_ERROR = "backend-error"
    MALFORMED_RESPONSE = "malformed-response"
    DEPENDENCY_FAILED = "dependency-failed"
    CANCELED = "canceled"
    UNEXPECTED = "unexpected-error"


@dataclass(slots=True)
class PipelineError(Exception):
    """Base error for item-level pipeline failures."""

    message: str
    stage: str = "unknown"
    kind: str = FailureKind.BACKEND_ERROR
    retryable: bool = False

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class TransientExternalError(PipelineError):
    """Timeout, 5xx or network failure of an external call."""

    retryable: bool = True


@dataclass(slots=True)
class CallInterruptedError(PipelineError):
    """An external call was abandoned because shutdown was requested."""

    kind: str = FailureKind.CANCELED
    retryable: bool = True


@dataclass(slots=True)
class MalformedResponseError(PipelineError):
    """External AI response failed schema validation."""

    kind: str = FailureKind.MALFORMED_RESPONSE


class LedgerError(RuntimeError):
    """Ledger or catalog storage is unavailable or inconsistent.

    Fatal for the whole batch: the orchestrator aborts instead of risking
    double processing.
    """
