from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from alert_catalog.config import LlmSettings
from alert_catalog.errors import FailureKind, MalformedResponseError
from alert_catalog.ingestion.models import Severity
from alert_catalog.llm.backend import BackendRunRequest, BackendRunResult
from alert_catalog.llm.report_extractor import ReportExtractor, parse_report_fields

pytestmark = [
    allure.epic("LLM Runtime"),
    allure.feature("Report Extraction"),
]


class _Backend:
    def __init__(self, stdout: str) -> None:
        self.stdout = stdout
        self.requests: list[BackendRunRequest] = []

    def run(self, request: BackendRunRequest) -> BackendRunResult:
        self.requests.append(request)
        return BackendRunResult(exit_code=0, timed_out=False, stdout=self.stdout, stderr="")


def test_extract_report_uses_extract_task_and_timeout(tmp_path: Path) -> None:
    payload = {
        "title": "Indirect prompt injection in coding agents",
        "summary": "Hidden instructions in docs make agents exfiltrate tokens.",
        "severity": "High",
        "isDomainSpecific": True,
        "discoveryDate": "2026-09-28",
        "canonicalId": "CVE-2026-12345",
        "affectedSystems": ["Agent IDE", "  ", 7, "Docs MCP server"],
    }
    backend = _Backend("```json\n" + json.dumps(payload) + "\n```")
    extractor = ReportExtractor(
        backend=backend,
        settings=LlmSettings(workdir=tmp_path, extract_timeout_seconds=45),
        topic="LLM security",
    )

    fields = extractor.extract_report("https://Research.example/Post", "report body")

    assert fields.title == "Indirect prompt injection in coding agents"
    assert fields.severity is Severity.HIGH
    assert fields.is_domain_specific is True
    assert fields.discovery_date == "2026-09-28"
    assert fields.canonical_id == "CVE-2026-12345"
    assert fields.affected_systems == ["Agent IDE", "Docs MCP server"]

    request = backend.requests[0]
    assert request.task_type == "extract"
    assert request.timeout_seconds == 45
    assert "https://Research.example/Post" in request.prompt
    assert "report body" in request.prompt


def test_optional_fields_default_when_absent_or_null() -> None:
    fields = parse_report_fields(
        {
            "title": "T",
            "summary": "S",
            "severity": None,
            "isDomainSpecific": "yes",
            "discoveryDate": "null",
            "canonicalId": " ",
            "affectedSystems": "Agent IDE",
        },
    )

    assert fields.severity is None
    assert fields.is_domain_specific is False
    assert fields.discovery_date is None
    assert fields.canonical_id is None
    assert fields.affected_systems == []


def test_invalid_severity_is_dropped(caplog: pytest.LogCaptureFixture) -> None:
    fields = parse_report_fields(
        {"title": "T", "summary": "S", "severity": "catastrophic"},
        url="https://r.example",
    )

    assert fields.severity is None
    assert "catastrophic" in caplog.text


def test_legacy_specificity_key_is_accepted() -> None:
    fields = parse_report_fields({"title": "T", "summary": "S", "isLLMSpecific": True})

    assert fields.is_domain_specific is True


def test_affected_systems_are_capped() -> None:
    fields = parse_report_fields(
        {"title": "T", "summary": "S", "affectedSystems": [f"system-{i}" for i in range(30)]},
    )

    assert len(fields.affected_systems) == 20
    assert fields.affected_systems[-1] == "system-19"


@pytest.mark.parametrize(
    "payload",
    [
        {"summary": "S"},
        {"title": "T"},
        {"title": "  ", "summary": "S"},
        {"title": "T", "summary": 5},
    ],
)
def test_missing_required_fields_are_malformed(payload: dict[str, object]) -> None:
    with pytest.raises(MalformedResponseError) as raised:
        parse_report_fields(payload)

    assert raised.value.kind == FailureKind.MALFORMED_RESPONSE
    assert raised.value.stage == "report-extract"
