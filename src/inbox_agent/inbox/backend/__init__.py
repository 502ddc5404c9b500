"""Agent backend implementations."""

from inbox_agent.inbox.backend.base import (
    AgentBackend,
    AgentBackendError,
    AgentRunRequest,
    AgentRunResult,
)
from inbox_agent.inbox.backend.cli_backend import CliAgentBackend

__all__ = [
    "AgentBackend",
    "AgentBackendError",
    "AgentRunRequest",
    "AgentRunResult",
    "CliAgentBackend",
]
