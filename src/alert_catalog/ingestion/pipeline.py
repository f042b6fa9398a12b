"""End-to-end alert catalog pipeline orchestration."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Protocol
from uuid import uuid4

from alert_catalog.config import Settings
from alert_catalog.errors import CallInterruptedError, FailureKind, LedgerError, PipelineError
from alert_catalog.http.content import ContentSource, FetchOutcome
from alert_catalog.ingestion.extractor import ArticleExtractor
from alert_catalog.ingestion.models import (
    AlertMessage,
    CandidateArticle,
    CatalogEntry,
    Category,
    ClassificationVerdict,
    FailureRecord,
    LedgerOutcome,
    MessageFilter,
    ReportFields,
    ReportSource,
    RunCounters,
    RunStatus,
    RunSummary,
    Stage,
)
from alert_catalog.ingestion.repository import SQLiteRepository
from alert_catalog.ingestion.sources.base import MessageStore
from alert_catalog.ingestion.storage.common import utc_now
from alert_catalog.ingestion.urls import normalize, report_key, unwrap

logger = logging.getLogger(__name__)


class Classifier(Protocol):
    def classify(self, article: CandidateArticle, content: str) -> ClassificationVerdict: ...


class ReportFieldExtractor(Protocol):
    def extract_report(self, url: str, content: str) -> ReportFields: ...


@dataclass(slots=True)
class _WorkItem:
    """Per-message state carried across the fan-out stages."""

    message: AlertMessage
    candidate: CandidateArticle
    started: bool = False
    content: str | None = None
    verdict: ClassificationVerdict | None = None
    fetch_url: str | None = None
    report_url: str | None = None
    report_key: str | None = None
    report_started: bool = False
    report: ReportFields | None = None
    failure: FailureRecord | None = None
    followers: list[_WorkItem] = field(default_factory=list)


class CatalogOrchestrator:
    """Turns a batch of alert messages into new catalog entries.

    Fetch and AI stages fan out on a bounded thread pool. Ledger gates and
    commits stay on the calling thread and follow ingestion order. A message
    is marked seen only once its outcome is final; failed items stay unmarked
    so the next run retries them.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        settings: Settings,
        repository: SQLiteRepository,
        store: MessageStore,
        content: ContentSource,
        classifier: Classifier,
        report_extractor: ReportFieldExtractor,
        extractor: ArticleExtractor | None = None,
        cancel_requested: Callable[[], bool] | None = None,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.store = store
        self.content = content
        self.classifier = classifier
        self.report_extractor = report_extractor
        self.extractor = extractor or ArticleExtractor(
            marker=settings.pipeline.extractor_marker,
        )
        self._cancel_requested = cancel_requested or (lambda: False)

    def run(self, message_filter: MessageFilter | None = None) -> RunSummary:
        counters = RunCounters()
        failures: list[FailureRecord] = []
        pipeline_name = self.settings.pipeline.name
        run_id = self.repository.start_run(
            pipeline_name,
            stale_after=timedelta(seconds=self.settings.pipeline.stale_run_after_seconds),
        )
        logger.info("Started run %s for pipeline %s", run_id, pipeline_name)

        try:
            messages = self.store.list_messages(message_filter or MessageFilter())
            canceled = self._process(
                run_id=run_id,
                messages=messages,
                counters=counters,
                failures=failures,
            )
            _tally_processed(counters)
            self.repository.record_failures(run_id, failures)

            if canceled:
                final_status = RunStatus.CANCELED
            elif failures:
                final_status = RunStatus.PARTIAL
            else:
                final_status = RunStatus.SUCCEEDED
            self.repository.finish_run(run_id, final_status, counters)
        except Exception as exc:
            _tally_processed(counters)
            self._finish_failed(run_id, counters, exc)
            raise

        logger.info(
            "Run %s %s: processed=%d skipped=%d not_relevant=%d duplicate=%d "
            "committed=%d failed=%d",
            run_id,
            final_status.value,
            counters.processed,
            counters.skipped,
            counters.discarded_not_relevant,
            counters.discarded_duplicate,
            counters.committed,
            counters.failed,
        )
        return RunSummary(
            run_id=run_id,
            status=final_status,
            counters=counters,
            failures=failures,
            canceled=canceled,
        )

    def _finish_failed(self, run_id: str, counters: RunCounters, exc: Exception) -> None:
        logger.error("Run %s aborted: %s", run_id, exc)
        try:
            self.repository.finish_run(run_id, RunStatus.FAILED, counters, error_summary=str(exc))
        except LedgerError:
            logger.exception("Could not record failed status for run %s", run_id)

    def _process(
        self,
        *,
        run_id: str,
        messages: list[AlertMessage],
        counters: RunCounters,
        failures: list[FailureRecord],
    ) -> bool:
        items, canceled = self._gate_and_extract(
            run_id=run_id,
            messages=messages,
            counters=counters,
        )
        if not items:
            return canceled

        with ThreadPoolExecutor(
            max_workers=self.settings.pipeline.concurrency,
            thread_name_prefix="alert-catalog",
        ) as pool:
            try:
                analyses = [pool.submit(self._analyze, item) for item in items]
                leaders = self._route_verdicts(
                    run_id=run_id,
                    items=items,
                    futures=analyses,
                    counters=counters,
                    failures=failures,
                )
                self.repository.touch_run(run_id)

                reports = [pool.submit(self._build_report, leader) for leader in leaders]
                self._commit_reports(
                    run_id=run_id,
                    leaders=leaders,
                    futures=reports,
                    counters=counters,
                    failures=failures,
                )
            except BaseException:
                pool.shutdown(wait=False, cancel_futures=True)
                raise

        started = [item for item in items if item.started]
        return canceled or len(started) < len(items) or any(
            not leader.report_started for leader in leaders
        )

    def _gate_and_extract(
        self,
        *,
        run_id: str,
        messages: list[AlertMessage],
        counters: RunCounters,
    ) -> tuple[list[_WorkItem], bool]:
        items: list[_WorkItem] = []
        for message in _unique_by_id(messages):
            if self._cancel_requested():
                logger.info("Cancellation requested; leaving remaining messages untouched")
                return items, True
            if self.repository.has_seen(message.id):
                counters.skipped += 1
                continue

            candidate = self.extractor.extract(message)
            if candidate is None:
                counters.skipped += 1
                self._mark(message.id, run_id=run_id, outcome=LedgerOutcome.SKIPPED)
                continue
            items.append(_WorkItem(message=message, candidate=candidate))
        return items, False

    def _analyze(self, item: _WorkItem) -> None:
        """Fetch the alert's article and classify it. Runs on the pool."""

        if self._cancel_requested():
            return
        item.started = True
        candidate = item.candidate
        stage = Stage.FETCH

        try:
            outcome = self.content.fetch(candidate.unwrapped_url)
            if not outcome.is_success:
                item.failure = _fetch_failure(item, outcome, stage=stage)
                return
            item.content = outcome.content

            stage = Stage.CLASSIFY
            item.verdict = self.classifier.classify(candidate, outcome.content or "")
        except CallInterruptedError:
            logger.info("Classification of message %s interrupted", item.message.id)
            item.started = False
        except PipelineError as error:
            item.failure = _stage_failure(item, error, stage=stage, url=candidate.unwrapped_url)
        except LedgerError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error at %s for message %s", stage.value, item.message.id)
            item.failure = _unexpected_failure(item, exc, stage=stage, url=candidate.unwrapped_url)

    def _route_verdicts(  # noqa: PLR0913
        self,
        *,
        run_id: str,
        items: list[_WorkItem],
        futures: list[Future[None]],
        counters: RunCounters,
        failures: list[FailureRecord],
    ) -> list[_WorkItem]:
        leaders: list[_WorkItem] = []
        claimed: dict[str, _WorkItem] = {}
        granularity = self.settings.pipeline.report_key_granularity

        for item, future in zip(items, futures, strict=True):
            future.result()
            if not item.started:
                continue
            if item.failure is not None:
                self._record_failure(item.failure, counters, failures)
                continue

            verdict = item.verdict
            if verdict is None or verdict.category is Category.NOT_RELEVANT:
                counters.discarded_not_relevant += 1
                self._mark(item.message.id, run_id=run_id, outcome=LedgerOutcome.NOT_RELEVANT)
                continue

            _resolve_report_url(item, verdict)
            key = report_key(item.report_url or "", granularity)
            item.report_key = key

            if self.repository.has_report(key):
                logger.info("Report %s already cataloged (message %s)", key, item.message.id)
                self._discard_duplicate(item, key, run_id=run_id, counters=counters)
                continue

            leader = claimed.get(key)
            if leader is not None:
                leader.followers.append(item)
                continue
            claimed[key] = item
            leaders.append(item)
        return leaders

    def _build_report(self, item: _WorkItem) -> None:
        """Fetch the resolved report (unless it is the article) and extract fields."""

        if self._cancel_requested():
            return
        item.report_started = True
        report_url = item.report_url or item.candidate.normalized_url
        fetch_url = item.fetch_url or report_url

        stage = Stage.REPORT_FETCH

        try:
            if report_url == item.candidate.normalized_url and item.content is not None:
                content = item.content
            else:
                outcome = self.content.fetch(fetch_url)
                if not outcome.is_success:
                    item.failure = _fetch_failure(item, outcome, stage=stage)
                    return
                content = outcome.content or ""

            stage = Stage.REPORT_EXTRACT
            item.report = self.report_extractor.extract_report(fetch_url, content)
        except CallInterruptedError:
            logger.info("Report extraction for %s interrupted", report_url)
            item.report_started = False
        except PipelineError as error:
            item.failure = _stage_failure(item, error, stage=stage, url=report_url)
        except LedgerError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error at %s for %s", stage.value, fetch_url)
            item.failure = _unexpected_failure(item, exc, stage=stage, url=fetch_url)

    def _commit_reports(  # noqa: PLR0913
        self,
        *,
        run_id: str,
        leaders: list[_WorkItem],
        futures: list[Future[None]],
        counters: RunCounters,
        failures: list[FailureRecord],
    ) -> None:
        for leader, future in zip(leaders, futures, strict=True):
            future.result()
            if not leader.report_started:
                continue

            if leader.failure is not None:
                self._record_failure(leader.failure, counters, failures)
                for follower in leader.followers:
                    self._record_failure(_dependency_failure(follower, leader), counters, failures)
                continue

            if leader.report is None:
                continue
            entry = _build_entry(leader, leader.report)
            entry_key = leader.report_key or ""
            if self.repository.record_report(entry_key, entry):
                counters.committed += 1
                self._mark(leader.message.id, run_id=run_id, outcome=LedgerOutcome.COMMITTED)
                logger.info("Cataloged %s as entry %s", entry.source_url, entry.id)
            else:
                logger.info("Lost report ledger race for %s; duplicate", leader.report_key)
                self._discard_duplicate(leader, entry_key, run_id=run_id, counters=counters)

            for follower in leader.followers:
                self._discard_duplicate(follower, entry_key, run_id=run_id, counters=counters)

    def _discard_duplicate(
        self,
        item: _WorkItem,
        key: str,
        *,
        run_id: str,
        counters: RunCounters,
    ) -> None:
        self.repository.add_report_source(
            key,
            ReportSource(message_id=item.message.id, article_url=item.candidate.normalized_url),
        )
        counters.discarded_duplicate += 1
        self._mark(item.message.id, run_id=run_id, outcome=LedgerOutcome.DUPLICATE)

    def _mark(self, message_id: str, *, run_id: str, outcome: LedgerOutcome) -> None:
        if not self.repository.mark_seen(message_id, run_id=run_id, outcome=outcome):
            logger.debug("Message %s was already in the ledger", message_id)

    @staticmethod
    def _record_failure(
        failure: FailureRecord,
        counters: RunCounters,
        failures: list[FailureRecord],
    ) -> None:
        logger.warning(
            "Message %s failed at %s (%s, retryable=%s): %s",
            failure.message_id,
            failure.stage.value,
            failure.kind,
            failure.retryable,
            failure.error,
        )
        counters.failed += 1
        failures.append(failure)


def run_catalog_pipeline(  # noqa: PLR0913
    *,
    settings: Settings,
    repository: SQLiteRepository,
    store: MessageStore,
    content: ContentSource,
    classifier: Classifier,
    report_extractor: ReportFieldExtractor,
    message_filter: MessageFilter | None = None,
    cancel_requested: Callable[[], bool] | None = None,
) -> RunSummary:
    """Run one pipeline pass with provided dependencies."""

    return CatalogOrchestrator(
        settings=settings,
        repository=repository,
        store=store,
        content=content,
        classifier=classifier,
        report_extractor=report_extractor,
        cancel_requested=cancel_requested,
    ).run(message_filter)


def _tally_processed(counters: RunCounters) -> None:
    counters.processed = (
        counters.skipped
        + counters.discarded_not_relevant
        + counters.discarded_duplicate
        + counters.committed
        + counters.failed
    )


def _unique_by_id(messages: Iterable[AlertMessage]) -> list[AlertMessage]:
    seen: set[str] = set()
    unique: list[AlertMessage] = []
    for message in messages:
        if message.id in seen:
            continue
        seen.add(message.id)
        unique.append(message)
    return unique


def _resolve_report_url(item: _WorkItem, verdict: ClassificationVerdict) -> None:
    if verdict.category is Category.REPOST and verdict.referenced_url:
        destination = unwrap(verdict.referenced_url)
        item.fetch_url = destination
        item.report_url = normalize(destination)
        return
    item.fetch_url = item.candidate.unwrapped_url
    item.report_url = item.candidate.normalized_url


def _build_entry(item: _WorkItem, report: ReportFields) -> CatalogEntry:
    return CatalogEntry(
        id=str(uuid4()),
        title=report.title,
        summary=report.summary,
        source_url=item.report_url or item.candidate.normalized_url,
        severity=report.severity,
        is_domain_specific=report.is_domain_specific,
        first_seen_at=utc_now(),
        discovery_date=report.discovery_date,
        canonical_id=report.canonical_id,
        affected_systems=list(report.affected_systems),
        origin_message_id=item.message.id,
        article_url=item.candidate.normalized_url,
        category=item.verdict.category if item.verdict is not None else None,
    )


def _fetch_failure(item: _WorkItem, outcome: FetchOutcome, *, stage: Stage) -> FailureRecord:
    return FailureRecord(
        message_id=item.message.id,
        url=outcome.url,
        stage=stage,
        kind=outcome.error_kind or FailureKind.NETWORK_ERROR,
        error=outcome.error or "fetch failed",
        retryable=outcome.retryable,
    )


def _stage_failure(
    item: _WorkItem,
    error: PipelineError,
    *,
    stage: Stage,
    url: str | None,
) -> FailureRecord:
    return FailureRecord(
        message_id=item.message.id,
        url=url,
        stage=stage,
        kind=error.kind,
        error=str(error),
        retryable=error.retryable,
    )


def _unexpected_failure(
    item: _WorkItem,
    exc: Exception,
    *,
    stage: Stage,
    url: str | None,
) -> FailureRecord:
    return FailureRecord(
        message_id=item.message.id,
        url=url,
        stage=stage,
        kind=FailureKind.UNEXPECTED,
        error=f"{type(exc).__name__}: {exc}",
        retryable=False,
    )


def _dependency_failure(follower: _WorkItem, leader: _WorkItem) -> FailureRecord:
    return FailureRecord(
        message_id=follower.message.id,
        url=follower.report_url,
        stage=Stage.REPORT_GATE,
        kind=FailureKind.DEPENDENCY_FAILED,
        error=f"report {leader.report_key} failed for message {leader.message.id}",
        retryable=True,
    )
