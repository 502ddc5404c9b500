"""Controllers for inbox CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from inbox_agent.config import Settings
from inbox_agent.inbox.conversation import FollowUpOutcome
from inbox_agent.inbox.models import Classification, InboundMessage, InboxTaskStatus
from inbox_agent.inbox.recovery import RecoveryCoordinator
from inbox_agent.inbox.repository import InboxTaskRepository
from inbox_agent.inbox.runtime import InboxRuntime
from inbox_agent.inbox.surfaces import ConsoleMessagingSurface

DEFAULT_WAIT_SECONDS = 3600.0


@dataclass(slots=True)
class SubmitCommand:
    """CLI input for registering a classified message as a task."""

    db_path: Path | None
    text: str
    intent: str
    summary: str
    execution_prompt: str | None = None
    autonomy_level: str = "auto"
    clarify_question: str | None = None
    message_ref: str | None = None
    thread_ref: str | None = None
    wait: bool = True
    timeout_seconds: float = DEFAULT_WAIT_SECONDS


@dataclass(slots=True)
class ReplyCommand:
    """CLI input for a follow-up message in a task thread."""

    db_path: Path | None
    thread_ref: str
    text: str
    wait: bool = True
    timeout_seconds: float = DEFAULT_WAIT_SECONDS


@dataclass(slots=True)
class RejectCommand:
    """CLI input for the rejection gesture."""

    db_path: Path | None
    message_ref: str


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class InspectTaskCommand:
    """CLI input for task inspection."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class RecoverCommand:
    """CLI input for crash recovery."""

    db_path: Path | None


@dataclass(slots=True)
class DrainCommand:
    """CLI input for running the queue until it is empty."""

    db_path: Path | None
    timeout_seconds: float = DEFAULT_WAIT_SECONDS


class InboxCliController:
    """Coordinates intake, queue and inspection CLI operations."""

    def submit(self, command: SubmitCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        message = InboundMessage(
            channel=settings.chat.channel,
            message_ref=command.message_ref or _new_ref(),
            text=command.text,
            thread_ref=command.thread_ref,
        )
        classification = Classification(
            intent=command.intent,
            autonomy_level=command.autonomy_level,
            summary=command.summary,
            execution_prompt=command.execution_prompt or command.text,
            clarify_question=command.clarify_question,
        )
        with _runtime(settings) as runtime:
            if command.wait:
                runtime.scheduler.start()
            task = runtime.intake.submit(message, classification)
            lines = [
                "Task registered: "
                f"task_id={task.task_id} intent={task.intent} status={task.status.value}",
                f"Message: {task.message_ref}",
            ]
            if command.wait and task.status == InboxTaskStatus.QUEUED:
                lines.extend(_wait_lines(runtime, command.timeout_seconds))
                final = runtime.repository.get(task.task_id)
                if final is not None:
                    lines.append(f"Final status: {final.status.value}")
        return lines

    def reply(self, command: ReplyCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _runtime(settings) as runtime:
            if command.wait:
                runtime.scheduler.start()
            outcome = runtime.intake.receive(
                InboundMessage(
                    channel=settings.chat.channel,
                    message_ref=_new_ref(),
                    text=command.text,
                    thread_ref=command.thread_ref,
                ),
            )
            if not isinstance(outcome, FollowUpOutcome):
                return ["Reply ignored: empty message."]
            lines = [f"Follow-up: {outcome.value}"]
            if command.wait and outcome == FollowUpOutcome.CLARIFIED:
                lines.extend(_wait_lines(runtime, command.timeout_seconds))
        return lines

    def reject(self, command: RejectCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _runtime(settings) as runtime:
            rejected = runtime.intake.reject(
                channel=settings.chat.channel,
                message_ref=command.message_ref,
            )
        if not rejected:
            return [f"No rejectable task for message: {command.message_ref}"]
        return [f"Task rejected for message: {command.message_ref}"]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            tasks = repository.list_tasks(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} intent={task.intent} status={task.status.value} "
                f"created_at={task.created_at.isoformat()} summary={task.summary}",
            )
        return lines

    def inspect_task(self, command: InspectTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_task_details(task_id=command.task_id)
        if details is None:
            return [f"Task not found: {command.task_id}"]

        task = details.task
        lines = [
            f"Task: {task.task_id}",
            f"Intent: {task.intent}",
            f"Autonomy: {task.autonomy_level}",
            f"Status: {task.status.value}",
            f"Summary: {task.summary}",
            f"Message: {task.channel}/{task.message_ref}",
            f"Session: {task.session_id or '-'}",
            f"Cost: {task.cost_units if task.cost_units is not None else '-'}",
            f"Duration ms: {task.duration_ms if task.duration_ms is not None else '-'}",
            f"Error: {task.error_summary or '-'}",
            f"Prompt: {task.execution_prompt}",
            f"Result: {task.result or '-'}",
            f"Events: {len(details.events)}",
        ]
        for event in details.events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def recover(self, command: RecoverCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            recovered = RecoveryCoordinator(repository=repository).recover()
        lines = [f"Recovered tasks: {len(recovered)}"]
        lines.extend(f"  {task_id}" for task_id in recovered)
        return lines

    def drain(self, command: DrainCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _runtime(settings) as runtime:
            recovered = runtime.start()
            runtime.scheduler.trigger()
            lines = [f"Recovered tasks: {len(recovered)}"]
            lines.extend(_wait_lines(runtime, command.timeout_seconds))
            counts = runtime.repository.count_by_status()
        lines.append(
            "Status counts: "
            + " ".join(f"{status.value}={count}" for status, count in counts.items()),
        )
        return lines


def _wait_lines(runtime: InboxRuntime, timeout_seconds: float) -> list[str]:
    if runtime.scheduler.wait_idle(timeout=timeout_seconds):
        return ["Queue idle."]
    running = ", ".join(sorted(runtime.scheduler.running_task_ids)) or "-"
    return [f"Timed out after {timeout_seconds:.0f}s, still running: {running}"]


def _new_ref() -> str:
    return f"cli-{uuid4().hex[:12]}"


def _parse_status(value: str | None) -> InboxTaskStatus | None:
    if value is None:
        return None
    return InboxTaskStatus(value.strip().lower())


@contextmanager
def _runtime(settings: Settings) -> Iterator[InboxRuntime]:
    messaging = None if settings.chat.webhook_url else ConsoleMessagingSurface()
    runtime = InboxRuntime.from_settings(settings, messaging=messaging)
    try:
        yield runtime
    finally:
        runtime.stop()


@contextmanager
def _repository(settings: Settings) -> Iterator[InboxTaskRepository]:
    repository = InboxTaskRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
