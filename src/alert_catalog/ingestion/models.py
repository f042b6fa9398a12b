"""Domain models for alert ingestion, classification and the report catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class RunStatus(str, Enum):
    """Lifecycle states for pipeline runs."""

    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"
    CANCELED = "canceled"


class Category(str, Enum):
    """Classification taxonomy for an alert's article."""

    ORIGINAL_REPORT = "original-report"
    REPOST = "repost"
    NOT_RELEVANT = "not-relevant"


class Severity(str, Enum):
    """Severity assigned by the report extractor."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class LedgerOutcome(str, Enum):
    """Terminal outcome recorded next to a consumed message id."""

    SKIPPED = "skipped"
    NOT_RELEVANT = "not-relevant"
    DUPLICATE = "duplicate"
    COMMITTED = "committed"


class Stage(str, Enum):
    """Pipeline stages that can fail for one item."""

    EXTRACT = "extract"
    FETCH = "fetch"
    CLASSIFY = "classify"
    REPORT_GATE = "report-gate"
    REPORT_FETCH = "report-fetch"
    REPORT_EXTRACT = "report-extract"
    COMMIT = "commit"


@dataclass(slots=True, frozen=True)
class AlertMessage:
    """Raw alert message owned by the external message store."""

    id: str
    received_at: datetime
    raw_body: str
    subject: str = ""
    sender: str = ""


@dataclass(slots=True, frozen=True)
class MessageFilter:
    """Selection criteria passed to a message store."""

    since: datetime | None = None
    limit: int | None = None


@dataclass(slots=True)
class CandidateArticle:
    """Article referenced by one alert message."""

    source_message_id: str
    title: str
    description: str
    raw_url: str
    unwrapped_url: str
    normalized_url: str


@dataclass(slots=True)
class ClassificationVerdict:
    """Validated classification result.

    ``referenced_url`` is set iff ``category`` is ``Category.REPOST``.
    """

    category: Category
    confidence: float
    referenced_url: str | None = None
    brief_description: str = ""

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1]: {self.confidence!r}")
        if (self.category is Category.REPOST) != bool(self.referenced_url):
            raise ValueError("referenced_url must be present iff category is repost")


@dataclass(slots=True)
class ReportFields:
    """Structured catalog fields returned by the report extractor."""

    title: str
    summary: str
    severity: Severity | None = None
    is_domain_specific: bool = False
    discovery_date: str | None = None
    canonical_id: str | None = None
    affected_systems: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ReportSource:
    """An alert article that led to a cataloged report."""

    message_id: str
    article_url: str


@dataclass(slots=True)
class CatalogEntry:
    """Unique report stored in the catalog."""

    id: str
    title: str
    summary: str
    source_url: str
    severity: Severity | None
    is_domain_specific: bool
    first_seen_at: datetime
    is_read: bool = False
    discovery_date: str | None = None
    canonical_id: str | None = None
    affected_systems: list[str] = field(default_factory=list)
    origin_message_id: str | None = None
    article_url: str | None = None
    category: Category | None = None
    sources: list[ReportSource] = field(default_factory=list)

    @property
    def source_count(self) -> int:
        return len({source.article_url for source in self.sources})


@dataclass(slots=True)
class FailureRecord:
    """One item that failed a stage during a run."""

    message_id: str
    url: str | None
    stage: Stage
    kind: str
    error: str
    retryable: bool


@dataclass(slots=True)
class RunCounters:
    """Counters tracked for one pipeline run."""

    processed: int = 0
    skipped: int = 0
    discarded_not_relevant: int = 0
    discarded_duplicate: int = 0
    committed: int = 0
    failed: int = 0


@dataclass(slots=True)
class RunSummary:
    """Result of one pipeline run."""

    run_id: str
    status: RunStatus
    counters: RunCounters
    failures: list[FailureRecord] = field(default_factory=list)
    canceled: bool = False


@dataclass(slots=True)
class PipelineRunView:
    """Compact run view for CLI reporting."""

    run_id: str
    pipeline: str
    status: str
    started_at: datetime
    finished_at: datetime | None
    processed: int
    skipped: int
    discarded_not_relevant: int
    discarded_duplicate: int
    committed: int
    failed: int
    error_summary: str | None = None
