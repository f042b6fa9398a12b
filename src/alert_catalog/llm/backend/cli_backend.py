"""Subprocess-based backend runner for CLI agents."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import time
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import IO

from alert_catalog.llm.backend.base import BackendRunRequest, BackendRunResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
INTERRUPTED_EXIT_CODE = 130
_POLL_INTERVAL_SECONDS = 0.1


class BackendRunError(RuntimeError):
    """Backend execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class CliAgentBackend:
    """Run a CLI agent command template once per AI call.

    The template may reference ``{prompt}``, ``{prompt_file}`` and ``{model}``.
    Each call gets its own directory under the request workdir holding the
    prompt and the captured stdout/stderr.
    """

    def run(self, request: BackendRunRequest) -> BackendRunResult:
        call_dir = request.workdir / f"{request.task_type}-{uuid.uuid4().hex[:12]}"
        call_dir.mkdir(parents=True, exist_ok=True)
        prompt_file = call_dir / "prompt.txt"
        prompt_file.write_text(request.prompt, "utf-8")
        stdout_path = call_dir / "stdout.txt"
        stderr_path = call_dir / "stderr.txt"

        run_args = build_run_args(
            command_template=request.command_template,
            model=request.model,
            prompt=request.prompt,
            prompt_file=prompt_file,
        )

        env = os.environ.copy()
        env["ALERT_CATALOG_LLM_MODEL"] = request.model
        env["ALERT_CATALOG_LLM_TASK"] = request.task_type

        logger.debug("Running %s backend call in %s", request.task_type, call_dir)
        try:
            with (
                stdout_path.open("w", encoding="utf-8") as stdout_handle,
                stderr_path.open("w", encoding="utf-8") as stderr_handle,
            ):
                exit_code, timed_out, interrupted = _run_subprocess(
                    run_args=run_args,
                    env=env,
                    cwd=call_dir,
                    timeout_seconds=request.timeout_seconds,
                    stdout_handle=stdout_handle,
                    stderr_handle=stderr_handle,
                    shutdown_requested=request.shutdown_requested,
                )
        except FileNotFoundError as error:
            raise BackendRunError(
                f"CLI backend command not found: {run_args[0]}",
                transient=False,
            ) from error
        except OSError as error:
            raise BackendRunError(
                f"CLI backend failed to start: {error}",
                transient=True,
            ) from error

        return BackendRunResult(
            exit_code=exit_code,
            timed_out=timed_out,
            interrupted=interrupted,
            stdout=stdout_path.read_text("utf-8", errors="replace"),
            stderr=stderr_path.read_text("utf-8", errors="replace"),
        )


def build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    prompt_file: Path,
) -> list[str]:
    """Render the command template into an argv list."""

    stripped = command_template.strip()
    if not stripped:
        raise BackendRunError("CLI backend command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise BackendRunError(
            "CLI backend command template must include {prompt} or {prompt_file}.",
            transient=False,
        )

    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
        )
    except (KeyError, IndexError) as error:
        raise BackendRunError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise BackendRunError(
            "CLI backend command template rendered empty command.",
            transient=False,
        )
    return argv


def _run_subprocess(  # noqa: PLR0913
    *,
    run_args: list[str],
    env: dict[str, str],
    cwd: Path,
    timeout_seconds: int,
    stdout_handle: IO[str],
    stderr_handle: IO[str],
    shutdown_requested: Callable[[], bool] | None,
) -> tuple[int, bool, bool]:
    process = subprocess.Popen(  # noqa: S603
        run_args,
        env=env,
        cwd=cwd,
        stdin=subprocess.DEVNULL,
        stdout=stdout_handle,
        stderr=stderr_handle,
        text=True,
    )
    started = time.monotonic()

    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode, False, False

        if shutdown_requested is not None and shutdown_requested():
            _terminate_process(process)
            return INTERRUPTED_EXIT_CODE, False, True
        if time.monotonic() - started >= timeout_seconds:
            _terminate_process(process)
            return TIMEOUT_EXIT_CODE, True, False

        time.sleep(_POLL_INTERVAL_SECONDS)


def _terminate_process(process: subprocess.Popen[str]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
