"""Runtime configuration for the inbox task queue."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from inbox_agent.inbox.backend.cli_backend import (
    DEFAULT_COMMAND_TEMPLATE,
    DEFAULT_RESUME_COMMAND_TEMPLATE,
)

DEFAULT_TIMEOUT_BY_INTENT: dict[str, int] = {
    "research": 30 * 60,
    "code_change": 15 * 60,
    "organize": 10 * 60,
    "question": 5 * 60,
    "reminder": 5 * 60,
}


@dataclass(slots=True)
class QueueSettings:
    """Scheduler and recovery settings."""

    max_concurrent: int = 3
    recovery_delay_seconds: float = 3.0
    idle_poll_seconds: float = 1.0


@dataclass(slots=True)
class AgentSettings:
    """Agent backend settings."""

    command_template: str = DEFAULT_COMMAND_TEMPLATE
    resume_command_template: str = DEFAULT_RESUME_COMMAND_TEMPLATE
    default_timeout_seconds: int = 10 * 60
    timeout_by_intent: dict[str, int] = field(
        default_factory=lambda: dict(DEFAULT_TIMEOUT_BY_INTENT),
    )
    output_dir: Path | None = None

    def timeout_for(self, intent: str) -> int:
        """Per-intent run timeout; unknown intents get the default."""

        return self.timeout_by_intent.get(intent, self.default_timeout_seconds)


@dataclass(slots=True)
class ChatSettings:
    """Messaging surface settings."""

    channel: str = "inbox"
    webhook_url: str | None = None
    webhook_timeout_seconds: float = 10.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".inbox_agent.db")
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "INFO"
    queue: QueueSettings = field(default_factory=QueueSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    chat: ChatSettings = field(default_factory=ChatSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        output_dir = os.getenv("INBOX_AGENT_OUTPUT_DIR", "").strip()
        timeout_by_intent = dict(DEFAULT_TIMEOUT_BY_INTENT)
        timeout_by_intent.update(_collect_timeout_overrides())
        return cls(
            db_path=db_path or Path(os.getenv("INBOX_AGENT_DB_PATH", ".inbox_agent.db")),
            sqlite_busy_timeout_ms=int(os.getenv("INBOX_AGENT_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("INBOX_AGENT_LOG_LEVEL", "INFO").strip().upper(),
            queue=QueueSettings(
                max_concurrent=int(os.getenv("INBOX_AGENT_MAX_CONCURRENT", "3")),
                recovery_delay_seconds=float(
                    os.getenv("INBOX_AGENT_RECOVERY_DELAY_SECONDS", "3.0"),
                ),
                idle_poll_seconds=float(os.getenv("INBOX_AGENT_IDLE_POLL_SECONDS", "1.0")),
            ),
            agent=AgentSettings(
                command_template=os.getenv("INBOX_AGENT_COMMAND", DEFAULT_COMMAND_TEMPLATE),
                resume_command_template=os.getenv(
                    "INBOX_AGENT_RESUME_COMMAND",
                    DEFAULT_RESUME_COMMAND_TEMPLATE,
                ),
                default_timeout_seconds=int(
                    os.getenv("INBOX_AGENT_DEFAULT_TIMEOUT_SECONDS", "600"),
                ),
                timeout_by_intent=timeout_by_intent,
                output_dir=Path(output_dir) if output_dir else None,
            ),
            chat=ChatSettings(
                channel=os.getenv("INBOX_AGENT_CHANNEL", "inbox").strip() or "inbox",
                webhook_url=os.getenv("INBOX_AGENT_WEBHOOK_URL", "").strip() or None,
                webhook_timeout_seconds=float(
                    os.getenv("INBOX_AGENT_WEBHOOK_TIMEOUT_SECONDS", "10.0"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on values the runtime cannot work with."""

        if self.queue.max_concurrent <= 0:
            raise ValueError("INBOX_AGENT_MAX_CONCURRENT must be a positive integer.")
        if self.queue.recovery_delay_seconds < 0:
            raise ValueError("INBOX_AGENT_RECOVERY_DELAY_SECONDS must be >= 0.")
        if self.queue.idle_poll_seconds <= 0:
            raise ValueError("INBOX_AGENT_IDLE_POLL_SECONDS must be > 0.")
        if self.agent.default_timeout_seconds <= 0:
            raise ValueError("INBOX_AGENT_DEFAULT_TIMEOUT_SECONDS must be a positive integer.")
        for intent, seconds in self.agent.timeout_by_intent.items():
            if seconds <= 0:
                raise ValueError(
                    f"Per-intent timeout must be positive: {intent!r} -> {seconds}",
                )
        if "{prompt}" not in self.agent.command_template and (
            "{prompt_file}" not in self.agent.command_template
        ):
            raise ValueError("INBOX_AGENT_COMMAND must include {prompt} or {prompt_file}.")
        if self.chat.webhook_url is not None:
            _validate_webhook_url(self.chat.webhook_url)


def _collect_timeout_overrides() -> dict[str, int]:
    raw = os.getenv("INBOX_AGENT_TIMEOUT_BY_INTENT", "").strip()
    if not raw:
        return {}

    overrides: dict[str, int] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "=" not in token:
            raise ValueError(
                "Invalid INBOX_AGENT_TIMEOUT_BY_INTENT entry: "
                f"{token!r}. Expected format '<intent>=<seconds>'.",
            )
        intent, seconds_raw = token.split("=", 1)
        intent = intent.strip()
        seconds_raw = seconds_raw.strip()
        try:
            seconds = int(seconds_raw)
        except ValueError as error:
            raise ValueError(
                f"Invalid INBOX_AGENT_TIMEOUT_BY_INTENT value for {intent!r}: {seconds_raw!r}",
            ) from error
        overrides[intent] = seconds
    return overrides


def _validate_webhook_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid INBOX_AGENT_WEBHOOK_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )
