"""Runtime configuration for the alert catalog pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

REPORT_KEY_GRANULARITIES = ("url", "domain")
DEFAULT_TOPIC = "prompt injection and LLM security"
DEFAULT_LLM_COMMAND_TEMPLATE = "claude -p --model {model} --output-format text -- {prompt}"
DEFAULT_LLM_MODEL = "sonnet"


@dataclass(slots=True)
class PipelineSettings:
    """Orchestrator-level settings."""

    name: str = "alerts"
    concurrency: int = 4
    min_confidence: float = 0.0
    report_key_granularity: str = "url"
    stale_run_after_seconds: int = 1_800
    topic: str = DEFAULT_TOPIC
    extractor_marker: str = "NEWS"


@dataclass(slots=True)
class FetchSettings:
    """Content fetcher settings."""

    timeout_seconds: float = 30.0
    max_retries: int = 2
    max_chars: int = 8_000


@dataclass(slots=True)
class LlmSettings:
    """Settings for the CLI agent used by classification and report extraction."""

    command_template: str = DEFAULT_LLM_COMMAND_TEMPLATE
    model: str = DEFAULT_LLM_MODEL
    classify_timeout_seconds: int = 120
    extract_timeout_seconds: int = 120
    max_retries: int = 1
    retry_backoff_seconds: float = 2.0
    max_content_chars: int = 8_000
    workdir: Path = Path(".alert_catalog_llm")


@dataclass(slots=True)
class StoreSettings:
    """Message store settings."""

    messages_path: Path | None = None


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".alert_catalog.db")
    log_level: str = "INFO"
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    fetch: FetchSettings = field(default_factory=FetchSettings)
    llm: LlmSettings = field(default_factory=LlmSettings)
    store: StoreSettings = field(default_factory=StoreSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        messages_path = os.getenv("ALERT_CATALOG_MESSAGES_PATH", "").strip()
        return cls(
            db_path=db_path or Path(os.getenv("ALERT_CATALOG_DB_PATH", ".alert_catalog.db")),
            log_level=os.getenv("ALERT_CATALOG_LOG_LEVEL", "INFO").strip().upper(),
            pipeline=PipelineSettings(
                name=os.getenv("ALERT_CATALOG_PIPELINE_NAME", "alerts"),
                concurrency=_env_int("ALERT_CATALOG_PIPELINE_CONCURRENCY", 4),
                min_confidence=_env_float("ALERT_CATALOG_PIPELINE_MIN_CONFIDENCE", 0.0),
                report_key_granularity=os.getenv(
                    "ALERT_CATALOG_REPORT_KEY_GRANULARITY",
                    "url",
                )
                .strip()
                .lower(),
                stale_run_after_seconds=_env_int(
                    "ALERT_CATALOG_PIPELINE_STALE_RUN_AFTER_SECONDS",
                    1800,
                ),
                topic=os.getenv("ALERT_CATALOG_TOPIC", DEFAULT_TOPIC),
                extractor_marker=os.getenv("ALERT_CATALOG_EXTRACTOR_MARKER", "NEWS"),
            ),
            fetch=FetchSettings(
                timeout_seconds=_env_float("ALERT_CATALOG_FETCH_TIMEOUT_SECONDS", 30.0),
                max_retries=_env_int("ALERT_CATALOG_FETCH_MAX_RETRIES", 2),
                max_chars=_env_int("ALERT_CATALOG_FETCH_MAX_CHARS", 8000),
            ),
            llm=LlmSettings(
                command_template=os.getenv(
                    "ALERT_CATALOG_LLM_COMMAND_TEMPLATE",
                    DEFAULT_LLM_COMMAND_TEMPLATE,
                ),
                model=os.getenv("ALERT_CATALOG_LLM_MODEL", DEFAULT_LLM_MODEL),
                classify_timeout_seconds=_env_int(
                    "ALERT_CATALOG_LLM_CLASSIFY_TIMEOUT_SECONDS",
                    120,
                ),
                extract_timeout_seconds=_env_int(
                    "ALERT_CATALOG_LLM_EXTRACT_TIMEOUT_SECONDS",
                    120,
                ),
                max_retries=_env_int("ALERT_CATALOG_LLM_MAX_RETRIES", 1),
                retry_backoff_seconds=_env_float("ALERT_CATALOG_LLM_RETRY_BACKOFF_SECONDS", 2.0),
                max_content_chars=_env_int("ALERT_CATALOG_LLM_MAX_CONTENT_CHARS", 8000),
                workdir=Path(os.getenv("ALERT_CATALOG_LLM_WORKDIR", ".alert_catalog_llm")),
            ),
            store=StoreSettings(
                messages_path=Path(messages_path) if messages_path else None,
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any setting is out of range."""

        if self.pipeline.concurrency <= 0:
            raise ValueError("ALERT_CATALOG_PIPELINE_CONCURRENCY must be > 0.")
        if not 0.0 <= self.pipeline.min_confidence <= 1.0:
            raise ValueError("ALERT_CATALOG_PIPELINE_MIN_CONFIDENCE must be within [0, 1].")
        if self.pipeline.report_key_granularity not in REPORT_KEY_GRANULARITIES:
            raise ValueError(
                "ALERT_CATALOG_REPORT_KEY_GRANULARITY must be one of "
                f"{', '.join(REPORT_KEY_GRANULARITIES)}: "
                f"{self.pipeline.report_key_granularity!r}",
            )
        if self.pipeline.stale_run_after_seconds <= 0:
            raise ValueError("ALERT_CATALOG_PIPELINE_STALE_RUN_AFTER_SECONDS must be > 0.")
        if not self.pipeline.extractor_marker.strip():
            raise ValueError("ALERT_CATALOG_EXTRACTOR_MARKER must not be empty.")
        if self.fetch.timeout_seconds <= 0:
            raise ValueError("ALERT_CATALOG_FETCH_TIMEOUT_SECONDS must be > 0.")
        if self.fetch.max_retries < 0:
            raise ValueError("ALERT_CATALOG_FETCH_MAX_RETRIES must be >= 0.")
        if self.fetch.max_chars <= 0:
            raise ValueError("ALERT_CATALOG_FETCH_MAX_CHARS must be > 0.")
        if self.llm.classify_timeout_seconds <= 0 or self.llm.extract_timeout_seconds <= 0:
            raise ValueError("ALERT_CATALOG_LLM_*_TIMEOUT_SECONDS must be > 0.")
        if self.llm.max_retries < 0:
            raise ValueError("ALERT_CATALOG_LLM_MAX_RETRIES must be >= 0.")
        if "{prompt}" not in self.llm.command_template and (
            "{prompt_file}" not in self.llm.command_template
        ):
            raise ValueError(
                "ALERT_CATALOG_LLM_COMMAND_TEMPLATE must include {prompt} or {prompt_file}.",
            )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number value for {name}: {value!r}") from error
