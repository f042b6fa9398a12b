"""Shared retrying call path for the AI adapters."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path

from alert_catalog.config import LlmSettings
from alert_catalog.errors import (
    FailureKind,
    CallInterruptedError,
    MalformedResponseError,
    PipelineError,
    TransientExternalError,
)
from alert_catalog.llm.backend import BackendRunError, BackendRunRequest, LlmBackend
from alert_catalog.llm.failure_classifier import classify_backend_failure
from alert_catalog.llm.output_parsing import parse_json_object

logger = logging.getLogger(__name__)

_STDERR_EXCERPT_CHARS = 300


class JsonCallRunner:
    """Run one prompt through the backend and return the JSON object it printed.

    Transient failures (timeouts, rate limits, start-up errors) are retried up to
    ``max_retries`` times with linear backoff, unless shutdown was requested in the
    meantime. Output that holds no JSON object raises ``MalformedResponseError``
    straight away.
    """

    def __init__(
        self,
        *,
        backend: LlmBackend,
        settings: LlmSettings,
        shutdown_requested: Callable[[], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._backend = backend
        self._settings = settings
        self._shutdown_requested = shutdown_requested
        self._sleep = sleep

    def call(
        self,
        prompt: str,
        *,
        stage: str,
        timeout_seconds: int,
        task_type: str,
    ) -> dict[str, object]:
        attempts = self._settings.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                stdout = self._run_once(
                    prompt,
                    stage=stage,
                    timeout_seconds=timeout_seconds,
                    task_type=task_type,
                )
            except TransientExternalError as error:
                if attempt >= attempts:
                    raise
                if self._stopping():
                    raise CallInterruptedError(
                        message=f"{stage} call abandoned after {error.kind}: shutdown requested",
                        stage=stage,
                    ) from error
                delay = self._settings.retry_backoff_seconds * attempt
                logger.warning(
                    "%s call failed (attempt %d/%d, %s); retrying in %.1fs",
                    stage,
                    attempt,
                    attempts,
                    error,
                    delay,
                )
                self._sleep(delay)
                continue

            payload = parse_json_object(stdout)
            if payload is None:
                raise MalformedResponseError(
                    message=f"{stage} response holds no JSON object",
                    stage=stage,
                )
            return payload

        raise AssertionError("unreachable")  # pragma: no cover

    def _stopping(self) -> bool:
        return self._shutdown_requested is not None and self._shutdown_requested()

    def _run_once(
        self,
        prompt: str,
        *,
        stage: str,
        timeout_seconds: int,
        task_type: str,
    ) -> str:
        request = BackendRunRequest(
            prompt=prompt,
            timeout_seconds=timeout_seconds,
            model=self._settings.model,
            command_template=self._settings.command_template,
            workdir=Path(self._settings.workdir),
            task_type=task_type,
            shutdown_requested=self._shutdown_requested,
        )
        try:
            result = self._backend.run(request)
        except BackendRunError as error:
            if error.transient:
                raise TransientExternalError(
                    message=str(error),
                    stage=stage,
                    kind=FailureKind.BACKEND_TRANSIENT,
                ) from error
            raise PipelineError(
                message=str(error),
                stage=stage,
                kind=FailureKind.BACKEND_ERROR,
            ) from error

        if result.interrupted:
            raise CallInterruptedError(
                message=f"{stage} call interrupted by shutdown",
                stage=stage,
            )
        if result.timed_out:
            raise TransientExternalError(
                message=f"{stage} call timed out after {timeout_seconds}s",
                stage=stage,
                kind=FailureKind.TIMEOUT,
            )
        if result.exit_code != 0:
            classification = classify_backend_failure(
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
            )
            message = (
                f"{stage} backend exited with {result.exit_code} "
                f"({classification.matched_rule}): {_excerpt(result.stderr or result.stdout)}"
            )
            if classification.transient:
                raise TransientExternalError(message=message, stage=stage, kind=classification.kind)
            raise PipelineError(message=message, stage=stage, kind=classification.kind)
        return result.stdout


def _excerpt(text: str) -> str:
    stripped = " ".join(text.split())
    if len(stripped) <= _STDERR_EXCERPT_CHARS:
        return stripped
    return stripped[:_STDERR_EXCERPT_CHARS] + "..."
