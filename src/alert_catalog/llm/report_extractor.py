"""Report extractor: structured catalog fields from a resolved report."""

from __future__ import annotations

import logging
from collections.abc import Callable

from alert_catalog.config import LlmSettings
from alert_catalog.errors import MalformedResponseError
from alert_catalog.ingestion.models import ReportFields, Severity, Stage
from alert_catalog.llm.backend import LlmBackend
from alert_catalog.llm.prompts import build_report_prompt
from alert_catalog.llm.runner import JsonCallRunner

logger = logging.getLogger(__name__)

_MAX_AFFECTED_SYSTEMS = 20


class ReportExtractor:
    """Second AI call, made only for reports that passed the dedup gate."""

    def __init__(
        self,
        *,
        backend: LlmBackend,
        settings: LlmSettings,
        topic: str,
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

    def extract_report(self, url: str, content: str) -> ReportFields:
        prompt = build_report_prompt(
            topic=self._topic,
            url=url,
            content=content[: self._settings.max_content_chars],
        )
        payload = self._runner.call(
            prompt,
            stage=Stage.REPORT_EXTRACT.value,
            timeout_seconds=self._settings.extract_timeout_seconds,
            task_type="extract",
        )
        return parse_report_fields(payload, url=url)


def parse_report_fields(payload: dict[str, object], *, url: str = "") -> ReportFields:
    title = _required_text(payload, "title")
    summary = _required_text(payload, "summary")

    severity: Severity | None = None
    raw_severity = payload.get("severity")
    if isinstance(raw_severity, str) and raw_severity.strip():
        try:
            severity = Severity(raw_severity.strip().lower())
        except ValueError:
            logger.warning("Dropping invalid severity %r for %s", raw_severity, url or "<unknown>")
    elif raw_severity is not None:
        logger.warning("Dropping invalid severity %r for %s", raw_severity, url or "<unknown>")

    raw_specific = payload.get("isDomainSpecific", payload.get("isLLMSpecific", False))
    affected = payload.get("affectedSystems")
    return ReportFields(
        title=title,
        summary=summary,
        severity=severity,
        is_domain_specific=raw_specific is True,
        discovery_date=_optional_text(payload.get("discoveryDate")),
        canonical_id=_optional_text(payload.get("canonicalId")),
        affected_systems=[
            item.strip() for item in affected if isinstance(item, str) and item.strip()
        ][:_MAX_AFFECTED_SYSTEMS]
        if isinstance(affected, list)
        else [],
    )


def _required_text(payload: dict[str, object], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedResponseError(
            message=f"report response is missing {key!r}",
            stage=Stage.REPORT_EXTRACT.value,
        )
    return value.strip()


def _optional_text(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped or stripped.lower() == "null":
        return None
    return stripped
