"""AI backend implementations."""

from alert_catalog.llm.backend.base import BackendRunRequest, BackendRunResult, LlmBackend
from alert_catalog.llm.backend.cli_backend import BackendRunError, CliAgentBackend

__all__ = [
    "BackendRunError",
    "BackendRunRequest",
    "BackendRunResult",
    "CliAgentBackend",
    "LlmBackend",
]
