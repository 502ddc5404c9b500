"""Domain models for the inbox task queue."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class InboxTaskStatus(str, Enum):
    """Durable task lifecycle states."""

    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"

    def can_transition_to(self, target: InboxTaskStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


FINISHED_STATUSES = frozenset(
    {InboxTaskStatus.COMPLETED, InboxTaskStatus.FAILED, InboxTaskStatus.WAITING},
)
TERMINAL_STATUSES = frozenset(
    {InboxTaskStatus.COMPLETED, InboxTaskStatus.FAILED, InboxTaskStatus.REJECTED},
)
REJECTABLE_STATUSES = frozenset(
    {InboxTaskStatus.PENDING, InboxTaskStatus.QUEUED, InboxTaskStatus.WAITING},
)

# Finished tasks may be continued by a follow-up, which lands them in another
# finished state. Nothing leaves REJECTED.
ALLOWED_TRANSITIONS: dict[InboxTaskStatus, frozenset[InboxTaskStatus]] = {
    InboxTaskStatus.PENDING: frozenset({InboxTaskStatus.QUEUED, InboxTaskStatus.REJECTED}),
    InboxTaskStatus.QUEUED: frozenset({InboxTaskStatus.RUNNING, InboxTaskStatus.REJECTED}),
    InboxTaskStatus.RUNNING: frozenset(
        {
            InboxTaskStatus.COMPLETED,
            InboxTaskStatus.WAITING,
            InboxTaskStatus.FAILED,
            InboxTaskStatus.QUEUED,
        },
    ),
    InboxTaskStatus.WAITING: FINISHED_STATUSES | {InboxTaskStatus.REJECTED},
    InboxTaskStatus.COMPLETED: FINISHED_STATUSES,
    InboxTaskStatus.FAILED: FINISHED_STATUSES,
    InboxTaskStatus.REJECTED: frozenset(),
}


class InvalidTransitionError(ValueError):
    """Raised when a status change is not allowed by the lifecycle."""

    def __init__(self, status_from: InboxTaskStatus, status_to: InboxTaskStatus) -> None:
        super().__init__(
            f"Illegal task status transition: {status_from.value} -> {status_to.value}",
        )
        self.status_from = status_from
        self.status_to = status_to


class TaskNotFoundError(RuntimeError):
    """Raised when an operation targets an unknown task."""


def ensure_transition(status_from: InboxTaskStatus, status_to: InboxTaskStatus) -> None:
    if not status_from.can_transition_to(status_to):
        raise InvalidTransitionError(status_from, status_to)


def outcome_status(*, success: bool, needs_input: bool) -> InboxTaskStatus:
    """Map one agent run outcome to the status it leaves the task in."""

    if needs_input:
        return InboxTaskStatus.WAITING
    if success:
        return InboxTaskStatus.COMPLETED
    return InboxTaskStatus.FAILED


@dataclass(slots=True)
class Classification:
    """Output of the upstream classifier for one inbound message."""

    intent: str
    autonomy_level: str
    summary: str
    execution_prompt: str
    clarify_question: str | None = None


@dataclass(slots=True)
class InboundMessage:
    """Message delivered by the messaging surface."""

    channel: str
    message_ref: str
    text: str
    thread_ref: str | None = None
    attachments: tuple[str, ...] = ()
    from_bot: bool = False

    @property
    def is_thread_reply(self) -> bool:
        return self.thread_ref is not None and self.thread_ref != self.message_ref


@dataclass(slots=True)
class InboxTaskCreate:
    """Input payload for inserting an inbox task."""

    intent: str
    autonomy_level: str
    summary: str
    original_message: str
    execution_prompt: str
    channel: str
    message_ref: str
    thread_ref: str | None = None
    status: InboxTaskStatus = InboxTaskStatus.QUEUED
    task_id: str | None = None
    created_at: datetime | None = None


@dataclass(slots=True)
class InboxTaskView:
    """Readable task view for scheduler, executor and CLI."""

    task_id: str
    intent: str
    autonomy_level: str
    summary: str
    channel: str
    message_ref: str
    thread_ref: str | None
    status: InboxTaskStatus
    original_message: str
    execution_prompt: str
    session_id: str | None
    result: str | None
    cost_units: float | None
    duration_ms: int | None
    error_summary: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    updated_at: datetime

    @property
    def reply_ref(self) -> str:
        """Thread to post replies into; falls back to the inbound message."""

        return self.thread_ref or self.message_ref


@dataclass(slots=True)
class InboxTaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: InboxTaskStatus | None
    status_to: InboxTaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class InboxTaskDetails:
    """Task details with event stream."""

    task: InboxTaskView
    events: list[InboxTaskEventView]
