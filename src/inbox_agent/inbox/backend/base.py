"""Backend interface for agent task execution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class AgentBackendError(RuntimeError):
    """Backend execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


@dataclass(slots=True)
class AgentRunRequest:
    """Options for one agent run."""

    task_id: str
    intent: str
    timeout_seconds: int


@dataclass(slots=True)
class AgentRunResult:
    """Outcome of one agent run or resume."""

    success: bool
    needs_input: bool
    result_text: str
    session_id: str | None = None
    cost_units: float = 0.0
    duration_ms: int = 0
    # the agent process itself failed: non-zero exit, an error payload or no
    # JSON result document
    process_failed: bool = False


class AgentBackend(Protocol):
    """Protocol implemented by agent runners.

    Implementations must bound their own run time; failures surface either as
    :class:`AgentBackendError` or as ``success=False``.
    """

    def execute(self, prompt: str, request: AgentRunRequest) -> AgentRunResult:
        """Run ``prompt`` as a fresh session."""

    def resume(self, session_id: str, prompt: str, request: AgentRunRequest) -> AgentRunResult:
        """Continue the conversation held by ``session_id``."""
