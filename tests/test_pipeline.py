from __future__ import annotations

import threading
import time
from datetime import UTC, datetime

import allure
import httpx
import pytest

from alert_catalog.config import Settings
from alert_catalog.errors import (
    CallInterruptedError,
    FailureKind,
    LedgerError,
    MalformedResponseError,
    TransientExternalError,
)
from alert_catalog.http.content import ContentFetcher
from alert_catalog.http.fetcher import HttpFetcher
from alert_catalog.ingestion.models import (
    AlertMessage,
    CatalogEntry,
    Category,
    LedgerOutcome,
    MessageFilter,
    ReportSource,
    RunStatus,
    RunSummary,
    Stage,
)
from alert_catalog.ingestion.pipeline import CatalogOrchestrator, run_catalog_pipeline
from alert_catalog.ingestion.repository import ActiveRunError, SQLiteRepository
from alert_catalog.ingestion.urls import normalize
from fakes import (
    FakeClassifier,
    FakeContent,
    FakeReportExtractor,
    FakeStore,
    make_message,
    original,
    repost,
)

pytestmark = [
    allure.epic("Catalog pipeline"),
    allure.feature("Orchestration"),
]

REPORT_URL = "https://research.example/blog/prompt-injection"
NEWS_A = "https://news-a.example/story/123"
NEWS_B = "https://news-b.example/coverage"


def _run(  # noqa: PLR0913
    settings: Settings,
    repository: SQLiteRepository,
    messages: list[AlertMessage],
    *,
    content: FakeContent | None = None,
    classifier: FakeClassifier | None = None,
    report_extractor: FakeReportExtractor | None = None,
    cancel_requested=None,  # noqa: ANN001
    message_filter: MessageFilter | None = None,
) -> RunSummary:
    orchestrator = CatalogOrchestrator(
        settings=settings,
        repository=repository,
        store=FakeStore(messages),
        content=content or FakeContent(),
        classifier=classifier or FakeClassifier(),
        report_extractor=report_extractor or FakeReportExtractor(),
        cancel_requested=cancel_requested,
    )
    return orchestrator.run(message_filter)


def test_two_reposts_of_same_original_produce_one_entry(settings, repository) -> None:
    content = FakeContent()
    classifier = FakeClassifier({NEWS_A: repost(REPORT_URL), NEWS_B: repost(REPORT_URL)})
    extractor = FakeReportExtractor()

    summary = _run(
        settings,
        repository,
        [make_message("m1", NEWS_A), make_message("m2", NEWS_B, minutes=1)],
        content=content,
        classifier=classifier,
        report_extractor=extractor,
    )

    assert summary.status is RunStatus.SUCCEEDED
    assert summary.counters.committed == 1
    assert summary.counters.discarded_duplicate == 1
    assert summary.counters.processed == 2

    entries = repository.list_catalog()
    assert len(entries) == 1
    entry = entries[0]
    assert entry.source_url == normalize(REPORT_URL)
    assert entry.origin_message_id == "m1"
    assert entry.article_url == normalize(NEWS_A)
    assert entry.category is Category.REPOST
    assert entry.first_seen_at.tzinfo is not None
    assert entry.source_count == 2
    assert entry.sources == [
        ReportSource(message_id="m1", article_url=normalize(NEWS_A)),
        ReportSource(message_id="m2", article_url=normalize(NEWS_B)),
    ]

    assert [url for url, _ in extractor.calls] == [REPORT_URL]
    assert content.calls.count(REPORT_URL) == 1
    assert repository.has_seen("m1")
    assert repository.has_seen("m2")


def test_original_already_cataloged_is_discarded_as_duplicate(settings, repository) -> None:
    extractor = FakeReportExtractor()
    first = _run(
        settings,
        repository,
        [make_message("m1", REPORT_URL)],
        classifier=FakeClassifier({REPORT_URL: original()}),
        report_extractor=extractor,
    )
    assert first.counters.committed == 1

    tracked = f"{REPORT_URL}?utm_source=alerts&utm_medium=email"
    second = _run(
        settings,
        repository,
        [make_message("m2", NEWS_A)],
        classifier=FakeClassifier({NEWS_A: repost(tracked)}),
        report_extractor=extractor,
    )

    assert second.counters.discarded_duplicate == 1
    assert second.counters.committed == 0
    assert len(extractor.calls) == 1
    assert len(repository.list_catalog()) == 1
    assert repository.has_seen("m2")
    (entry,) = repository.list_catalog()
    assert [source.message_id for source in entry.sources] == ["m1", "m2"]
    assert entry.source_count == 2


def test_rerun_over_same_messages_is_idempotent(settings, repository) -> None:
    messages = [
        make_message("m1", REPORT_URL),
        make_message("m2", NEWS_A, minutes=1),
        make_message("m3", None, minutes=2),
    ]
    classifier = FakeClassifier({REPORT_URL: original()})

    first = _run(settings, repository, messages, classifier=classifier)
    calls_after_first = len(classifier.calls)
    second = _run(settings, repository, messages, classifier=classifier)

    assert first.counters.committed == 1
    assert first.counters.discarded_not_relevant == 1
    assert first.counters.skipped == 1
    assert second.counters.skipped == 3
    assert second.counters.processed == 3
    assert second.counters.committed == 0
    assert len(classifier.calls) == calls_after_first
    assert len(repository.list_catalog()) == 1


def test_messages_without_candidate_and_not_relevant_are_marked(settings, repository) -> None:
    summary = _run(
        settings,
        repository,
        [make_message("empty", None), make_message("noise", NEWS_B)],
    )

    assert summary.counters.skipped == 1
    assert summary.counters.discarded_not_relevant == 1
    assert summary.counters.processed == 2
    assert summary.status is RunStatus.SUCCEEDED
    assert repository.has_seen("empty")
    assert repository.has_seen("noise")
    assert repository.list_catalog() == []


def test_fetch_failure_is_isolated_and_retried_next_run(settings, repository) -> None:
    messages = [make_message("m1", REPORT_URL), make_message("m2", NEWS_A, minutes=1)]
    classifier = FakeClassifier({REPORT_URL: original(), NEWS_A: original()})
    failing = FakeContent(errors={NEWS_A: (FailureKind.TIMEOUT, True)})

    first = _run(settings, repository, messages, content=failing, classifier=classifier)

    assert first.status is RunStatus.PARTIAL
    assert first.counters.committed == 1
    assert first.counters.failed == 1
    failure = first.failures[0]
    assert failure.message_id == "m2"
    assert failure.stage is Stage.FETCH
    assert failure.kind == FailureKind.TIMEOUT
    assert failure.retryable is True
    assert not repository.has_seen("m2")
    assert repository.list_failures(first.run_id) == first.failures

    second = _run(settings, repository, messages, classifier=classifier)

    assert second.status is RunStatus.SUCCEEDED
    assert second.counters.skipped == 1
    assert second.counters.committed == 1
    assert repository.has_seen("m2")
    assert len(repository.list_catalog()) == 2


def test_malformed_classification_is_recorded_and_left_unmarked(settings, repository) -> None:
    classifier = FakeClassifier(
        {NEWS_A: MalformedResponseError(message="missing category", stage="classify")},
    )

    summary = _run(settings, repository, [make_message("m1", NEWS_A)], classifier=classifier)

    assert summary.status is RunStatus.PARTIAL
    assert summary.counters.failed == 1
    failure = summary.failures[0]
    assert failure.stage is Stage.CLASSIFY
    assert failure.kind == FailureKind.MALFORMED_RESPONSE
    assert failure.retryable is False
    assert failure.url == NEWS_A
    assert not repository.has_seen("m1")


def test_failed_leader_fails_its_followers_as_dependency(settings, repository) -> None:
    extractor = FakeReportExtractor(
        failures={
            REPORT_URL: TransientExternalError(
                message="agent timed out",
                stage="report-extract",
                kind=FailureKind.TIMEOUT,
            ),
        },
    )

    summary = _run(
        settings,
        repository,
        [make_message("m1", NEWS_A), make_message("m2", NEWS_B, minutes=1)],
        classifier=FakeClassifier({NEWS_A: repost(REPORT_URL), NEWS_B: repost(REPORT_URL)}),
        report_extractor=extractor,
    )

    assert summary.counters.failed == 2
    leader, follower = summary.failures
    assert (leader.message_id, leader.stage, leader.kind) == (
        "m1",
        Stage.REPORT_EXTRACT,
        FailureKind.TIMEOUT,
    )
    assert leader.retryable is True
    assert (follower.message_id, follower.stage, follower.kind) == (
        "m2",
        Stage.REPORT_GATE,
        FailureKind.DEPENDENCY_FAILED,
    )
    assert follower.retryable is True
    assert not repository.has_seen("m1")
    assert not repository.has_seen("m2")
    assert repository.list_catalog() == []


def test_report_fetch_failure_is_recorded_at_report_stage(settings, repository) -> None:
    summary = _run(
        settings,
        repository,
        [make_message("m1", NEWS_A)],
        content=FakeContent(errors={REPORT_URL: (FailureKind.HTTP_ERROR, False)}),
        classifier=FakeClassifier({NEWS_A: repost(REPORT_URL)}),
    )

    assert summary.counters.failed == 1
    failure = summary.failures[0]
    assert failure.stage is Stage.REPORT_FETCH
    assert failure.kind == FailureKind.HTTP_ERROR
    assert failure.url == REPORT_URL
    assert not repository.has_seen("m1")


def test_original_report_reuses_fetched_article(settings, repository) -> None:
    content = FakeContent(pages={REPORT_URL: "Full write-up of the vulnerability."})
    extractor = FakeReportExtractor()

    _run(
        settings,
        repository,
        [make_message("m1", REPORT_URL)],
        content=content,
        classifier=FakeClassifier({REPORT_URL: original()}),
        report_extractor=extractor,
    )

    assert content.calls == [REPORT_URL]
    assert extractor.calls == [(REPORT_URL, "Full write-up of the vulnerability.")]


def test_lost_report_ledger_race_counts_as_duplicate(settings, repository) -> None:
    competing = CatalogEntry(
        id="competing-entry",
        title="Cataloged elsewhere",
        summary="Inserted by a concurrent writer.",
        source_url=normalize(REPORT_URL),
        severity=None,
        is_domain_specific=True,
        first_seen_at=datetime(2026, 10, 1, tzinfo=UTC),
    )

    def _claim_first(_url: str) -> None:
        repository.record_report(normalize(REPORT_URL), competing)

    summary = _run(
        settings,
        repository,
        [make_message("m1", REPORT_URL)],
        classifier=FakeClassifier({REPORT_URL: original()}),
        report_extractor=FakeReportExtractor(on_extract=_claim_first),
    )

    assert summary.counters.committed == 0
    assert summary.counters.discarded_duplicate == 1
    assert [entry.id for entry in repository.list_catalog()] == ["competing-entry"]
    assert repository.has_seen("m1")
    assert repository.list_catalog()[0].sources == [
        ReportSource(message_id="m1", article_url=normalize(REPORT_URL)),
    ]


def test_domain_granularity_collapses_reports_on_one_host(settings, repository) -> None:
    settings.pipeline.report_key_granularity = "domain"
    first_url = "https://vendor.example/advisories/1"
    second_url = "https://vendor.example/advisories/2"

    summary = _run(
        settings,
        repository,
        [make_message("m1", first_url), make_message("m2", second_url, minutes=1)],
        classifier=FakeClassifier({first_url: original(), second_url: original()}),
    )

    assert summary.counters.committed == 1
    assert summary.counters.discarded_duplicate == 1
    assert repository.has_report("https://vendor.example")


def test_ledger_failure_aborts_run_as_failed(settings, repository) -> None:
    class BrokenLedger(SQLiteRepository):
        def mark_seen(self, message_id, *, run_id, outcome):  # noqa: ANN001, ANN202
            raise LedgerError("disk I/O error")

    broken = BrokenLedger(settings.db_path)
    try:
        with pytest.raises(LedgerError, match="disk I/O error"):
            _run(settings, broken, [make_message("m1", NEWS_A)])
    finally:
        broken.close()

    latest = repository.list_recent_runs(limit=1)[0]
    assert latest.status == RunStatus.FAILED.value
    assert latest.error_summary == "disk I/O error"
    assert not repository.has_seen("m1")

    recovered = _run(settings, repository, [make_message("m1", NEWS_A)])
    assert recovered.counters.discarded_not_relevant == 1


def test_cancellation_leaves_unstarted_messages_untouched(settings, repository) -> None:
    settings.pipeline.concurrency = 1
    stop = threading.Event()
    messages = [
        make_message("m1", NEWS_A),
        make_message("m2", NEWS_B, minutes=1),
        make_message("m3", REPORT_URL, minutes=2),
    ]

    summary = _run(
        settings,
        repository,
        messages,
        classifier=FakeClassifier(on_classify=lambda _article: stop.set()),
        cancel_requested=stop.is_set,
    )

    assert summary.status is RunStatus.CANCELED
    assert summary.canceled is True
    assert summary.counters.discarded_not_relevant == 1
    assert summary.counters.processed == 1
    assert repository.has_seen("m1")
    assert not repository.has_seen("m2")
    assert not repository.has_seen("m3")

    resumed = _run(settings, repository, messages)
    assert resumed.counters.skipped == 1
    assert resumed.counters.discarded_not_relevant == 2


def test_duplicate_message_ids_in_one_batch_are_processed_once(settings, repository) -> None:
    classifier = FakeClassifier()
    message = make_message("m1", NEWS_A)

    summary = _run(settings, repository, [message, message], classifier=classifier)

    assert classifier.calls == [NEWS_A]
    assert summary.counters.processed == 1


def test_second_mark_is_rejected(repository) -> None:
    assert repository.mark_seen("m1", run_id=None, outcome=LedgerOutcome.SKIPPED) is True
    assert repository.mark_seen("m1", run_id=None, outcome=LedgerOutcome.COMMITTED) is False


def test_active_run_blocks_another_pass(settings, repository) -> None:
    repository.start_run(settings.pipeline.name)

    with pytest.raises(ActiveRunError):
        _run(settings, repository, [make_message("m1", NEWS_A)])

    assert not repository.has_seen("m1")


def test_run_catalog_pipeline_honours_message_filter(settings, repository) -> None:
    classifier = FakeClassifier()

    summary = run_catalog_pipeline(
        settings=settings,
        repository=repository,
        store=FakeStore([make_message("m1", NEWS_A), make_message("m2", NEWS_B, minutes=1)]),
        content=FakeContent(),
        classifier=classifier,
        report_extractor=FakeReportExtractor(),
        message_filter=MessageFilter(limit=1),
    )

    assert summary.counters.processed == 1
    assert classifier.calls == [NEWS_A]
    assert not repository.has_seen("m2")


def test_unusable_report_url_fails_only_its_message(settings, repository) -> None:
    bad_report = "https://xn--a.com/advisory"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="Advisory text.", headers={"content-type": "text/plain"})

    with HttpFetcher(transport=httpx.MockTransport(handler)) as fetcher:
        summary = _run(
            settings,
            repository,
            [make_message("m1", REPORT_URL), make_message("m2", NEWS_A, minutes=1)],
            content=ContentFetcher(fetcher=fetcher),
            classifier=FakeClassifier({REPORT_URL: original(), NEWS_A: repost(bad_report)}),
        )

    assert summary.status is RunStatus.PARTIAL
    assert summary.counters.committed == 1
    assert summary.counters.failed == 1
    (failure,) = summary.failures
    assert failure.message_id == "m2"
    assert failure.stage is Stage.REPORT_FETCH
    assert failure.kind == FailureKind.HTTP_ERROR
    assert failure.retryable is False
    assert failure.url == bad_report
    assert repository.has_seen("m1")
    assert not repository.has_seen("m2")


class ExplodingContent(FakeContent):
    def fetch(self, url):  # noqa: ANN001, ANN201
        if url == NEWS_A:
            raise RuntimeError("parser blew up")
        return super().fetch(url)


def test_unexpected_errors_become_item_failures(settings, repository) -> None:
    summary = _run(
        settings,
        repository,
        [
            make_message("m1", NEWS_A),
            make_message("m2", NEWS_B, minutes=1),
            make_message("m3", REPORT_URL, minutes=2),
        ],
        content=ExplodingContent(),
        classifier=FakeClassifier({NEWS_B: repost(REPORT_URL), REPORT_URL: original()}),
        report_extractor=FakeReportExtractor(failures={REPORT_URL: KeyError("title")}),
    )

    assert summary.status is RunStatus.PARTIAL
    assert summary.counters.failed == 3
    by_message = {failure.message_id: failure for failure in summary.failures}
    assert by_message["m1"].stage is Stage.FETCH
    assert by_message["m1"].kind == FailureKind.UNEXPECTED
    assert by_message["m1"].error == "RuntimeError: parser blew up"
    assert by_message["m1"].retryable is False
    assert by_message["m2"].stage is Stage.REPORT_EXTRACT
    assert by_message["m2"].kind == FailureKind.UNEXPECTED
    assert by_message["m3"].kind == FailureKind.DEPENDENCY_FAILED
    assert not any(repository.has_seen(message_id) for message_id in ("m1", "m2", "m3"))


def test_interrupted_classification_is_canceled_not_failed(settings, repository) -> None:
    interrupted = CallInterruptedError(message="classify call interrupted", stage="classify")

    summary = _run(
        settings,
        repository,
        [make_message("m1", NEWS_A), make_message("m2", NEWS_B, minutes=1)],
        classifier=FakeClassifier({NEWS_A: interrupted}),
    )

    assert summary.status is RunStatus.CANCELED
    assert summary.canceled is True
    assert summary.failures == []
    assert summary.counters.failed == 0
    assert summary.counters.discarded_not_relevant == 1
    assert not repository.has_seen("m1")
    assert repository.has_seen("m2")
    assert repository.list_recent_runs(limit=1)[0].status == RunStatus.CANCELED.value


def test_interrupted_report_extraction_leaves_leader_and_followers_unmarked(
    settings,
    repository,
) -> None:
    summary = _run(
        settings,
        repository,
        [make_message("m1", NEWS_A), make_message("m2", NEWS_B, minutes=1)],
        classifier=FakeClassifier({NEWS_A: repost(REPORT_URL), NEWS_B: repost(REPORT_URL)}),
        report_extractor=FakeReportExtractor(
            failures={
                REPORT_URL: CallInterruptedError(message="interrupted", stage="report-extract"),
            },
        ),
    )

    assert summary.status is RunStatus.CANCELED
    assert summary.failures == []
    assert repository.list_catalog() == []
    assert not repository.has_seen("m1")
    assert not repository.has_seen("m2")


def test_ledger_failure_cancels_queued_analyses(settings, repository) -> None:
    settings.pipeline.concurrency = 1
    late_url = "https://news-c.example/late"

    class BrokenReportLedger(SQLiteRepository):
        def has_report(self, report_key):  # noqa: ANN001, ANN202
            raise LedgerError("database is locked")

    def slow_after_first(article) -> None:  # noqa: ANN001
        if article.unwrapped_url != REPORT_URL:
            time.sleep(0.3)

    classifier = FakeClassifier({REPORT_URL: original()}, on_classify=slow_after_first)
    broken = BrokenReportLedger(settings.db_path)
    try:
        with pytest.raises(LedgerError, match="database is locked"):
            _run(
                settings,
                broken,
                [
                    make_message("m1", REPORT_URL),
                    make_message("m2", NEWS_A, minutes=1),
                    make_message("m3", NEWS_B, minutes=2),
                    make_message("m4", late_url, minutes=3),
                ],
                classifier=classifier,
            )
    finally:
        broken.close()

    assert classifier.calls[0] == REPORT_URL
    assert late_url not in classifier.calls
    assert len(classifier.calls) <= 2
    assert repository.list_recent_runs(limit=1)[0].status == RunStatus.FAILED.value
