"""Backend interface for one AI call."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class BackendRunRequest:
    """Inputs required to execute one AI call."""

    prompt: str
    timeout_seconds: int
    model: str
    command_template: str
    workdir: Path
    task_type: str = "classify"
    shutdown_requested: Callable[[], bool] | None = None


@dataclass(slots=True)
class BackendRunResult:
    """Execution outcome from backend runner."""

    exit_code: int
    timed_out: bool
    stdout: str
    stderr: str
    interrupted: bool = False


class LlmBackend(Protocol):
    """Protocol implemented by backend runners."""

    def run(self, request: BackendRunRequest) -> BackendRunResult:
        """Run one AI call and return its captured output."""
