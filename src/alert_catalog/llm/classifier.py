"""Classification client: original report vs repost vs not relevant."""

from __future__ import annotations

import logging
from collections.abc import Callable

from alert_catalog.config import LlmSettings
from alert_catalog.errors import MalformedResponseError
from alert_catalog.ingestion.models import CandidateArticle, Category, ClassificationVerdict, Stage
from alert_catalog.ingestion.urls import is_absolute_http_url
from alert_catalog.llm.backend import LlmBackend
from alert_catalog.llm.prompts import build_classification_prompt
from alert_catalog.llm.runner import JsonCallRunner

logger = logging.getLogger(__name__)

CONFIDENCE_LABELS = {"high": 0.9, "medium": 0.6, "low": 0.3}
_URL_KEYS = ("referenced_url", "referencedUrl", "originalReportUrl")


class ClassificationClient:
    """Ask the AI backend what kind of article a candidate points at."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        backend: LlmBackend,
        settings: LlmSettings,
        topic: str,
        min_confidence: float = 0.0,
        shutdown_requested: Callable[[], bool] | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        runner_kwargs = {} if sleep is None else {"sleep": sleep}
        self._runner = JsonCallRunner(
            backend=backend,
            settings=settings,
            shutdown_requested=shutdown_requested,
            **runner_kwargs,
        )
        self._settings = settings
        self._topic = topic
        self._min_confidence = min_confidence

    def classify(self, article: CandidateArticle, content: str) -> ClassificationVerdict:
        prompt = build_classification_prompt(
            topic=self._topic,
            title=article.title,
            url=article.unwrapped_url,
            description=article.description,
            content=content[: self._settings.max_content_chars],
        )
        payload = self._runner.call(
            prompt,
            stage=Stage.CLASSIFY.value,
            timeout_seconds=self._settings.classify_timeout_seconds,
            task_type="classify",
        )
        verdict = parse_verdict(payload, article_url=article.normalized_url)
        if verdict.category is not Category.NOT_RELEVANT and (
            verdict.confidence < self._min_confidence
        ):
            logger.info(
                "Verdict %s for %s below min confidence (%.2f < %.2f); not relevant",
                verdict.category.value,
                article.normalized_url,
                verdict.confidence,
                self._min_confidence,
            )
            return ClassificationVerdict(
                category=Category.NOT_RELEVANT,
                confidence=verdict.confidence,
                brief_description=verdict.brief_description,
            )
        return verdict


def parse_verdict(payload: dict[str, object], *, article_url: str = "") -> ClassificationVerdict:
    """Validate a raw classification payload into a verdict.

    Unknown categories and unusable confidence values are malformed. A repost
    without a usable referenced URL is coerced to not relevant; a URL on any
    other category is dropped.
    """

    category = _parse_category(payload.get("category"))
    confidence = _parse_confidence(payload.get("confidence"))
    description = payload.get("brief_description")
    brief_description = description.strip() if isinstance(description, str) else ""

    if category is not Category.REPOST:
        return ClassificationVerdict(
            category=category,
            confidence=confidence,
            brief_description=brief_description,
        )

    referenced_url = _referenced_url(payload)
    if referenced_url is None:
        logger.warning(
            "Repost verdict for %s has no usable referenced URL; treating as not relevant",
            article_url or "<unknown>",
        )
        return ClassificationVerdict(
            category=Category.NOT_RELEVANT,
            confidence=confidence,
            brief_description=brief_description,
        )
    return ClassificationVerdict(
        category=Category.REPOST,
        confidence=confidence,
        referenced_url=referenced_url,
        brief_description=brief_description,
    )


def _parse_category(value: object) -> Category:
    if isinstance(value, str):
        normalized = value.strip().lower().replace("_", "-").replace(" ", "-")
        for category in Category:
            if category.value == normalized:
                return category
    raise MalformedResponseError(
        message=f"unknown classification category: {value!r}",
        stage=Stage.CLASSIFY.value,
    )


def _parse_confidence(value: object) -> float:
    if isinstance(value, int | float) and not isinstance(value, bool):
        if 0.0 <= float(value) <= 1.0:
            return float(value)
    elif isinstance(value, str) and value.strip().lower() in CONFIDENCE_LABELS:
        return CONFIDENCE_LABELS[value.strip().lower()]
    raise MalformedResponseError(
        message=f"invalid classification confidence: {value!r}",
        stage=Stage.CLASSIFY.value,
    )


def _referenced_url(payload: dict[str, object]) -> str | None:
    for key in _URL_KEYS:
        value = payload.get(key)
        # the literal string "null" fails the absolute-URL check too
        if is_absolute_http_url(value):
            return str(value).strip()
    return None
