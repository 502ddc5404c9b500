"""Run one claimed task through the agent backend and publish the outcome."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from inbox_agent.inbox.backend import AgentBackend, AgentRunRequest
from inbox_agent.inbox.models import InboxTaskStatus, InboxTaskView, outcome_status
from inbox_agent.inbox.reporter import (
    EXECUTION_FAILED_TEXT,
    render_outcome,
    render_start_notice,
)
from inbox_agent.inbox.repository import InboxTaskRepository
from inbox_agent.inbox.surfaces import (
    ArtifactSurface,
    MessagingSurface,
    NullArtifactSurface,
    StatusSignal,
)
from inbox_agent.storage.common import utc_now

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 600

SIGNAL_BY_STATUS = {
    InboxTaskStatus.QUEUED: StatusSignal.ACCEPTED,
    InboxTaskStatus.RUNNING: StatusSignal.WORKING,
    InboxTaskStatus.WAITING: StatusSignal.WAITING,
    InboxTaskStatus.COMPLETED: StatusSignal.COMPLETED,
    InboxTaskStatus.FAILED: StatusSignal.FAILED,
    InboxTaskStatus.REJECTED: StatusSignal.REJECTED,
}


class TaskExecutor:
    """Owns a ``running`` task from claim until its outcome is persisted.

    :meth:`execute` never raises: an execution fault becomes ``failed`` plus a
    notice in the thread, so the scheduler loop keeps going.
    """

    def __init__(
        self,
        *,
        repository: InboxTaskRepository,
        backend: AgentBackend,
        messaging: MessagingSurface,
        artifacts: ArtifactSurface | None = None,
        timeout_for: Callable[[str], int] | None = None,
    ) -> None:
        self.repository = repository
        self.backend = backend
        self.messaging = messaging
        self.artifacts = artifacts or NullArtifactSurface()
        self.timeout_for = timeout_for or (lambda _intent: DEFAULT_TIMEOUT_SECONDS)

    def execute(self, task: InboxTaskView) -> InboxTaskStatus:
        """Run ``task`` and return the status it was left in."""

        notify = Notifier(self.messaging, task)
        notify.status(StatusSignal.WORKING)
        notify.reply(render_start_notice(task.intent))
        try:
            return self._execute(task, notify)
        except Exception as error:  # noqa: BLE001
            logger.exception("Task %s execution error", task.task_id)
            self._mark_failed(task, notify, error)
            return InboxTaskStatus.FAILED

    def _execute(self, task: InboxTaskView, notify: Notifier) -> InboxTaskStatus:
        before = self.artifacts.snapshot()
        result = self.backend.execute(
            task.execution_prompt,
            AgentRunRequest(
                task_id=task.task_id,
                intent=task.intent,
                timeout_seconds=self.timeout_for(task.intent),
            ),
        )
        status = outcome_status(success=result.success, needs_input=result.needs_input)

        fields: dict[str, object] = {
            "status": status,
            "result": result.result_text,
            "cost_units": result.cost_units,
            "duration_ms": result.duration_ms,
        }
        if status != InboxTaskStatus.WAITING:
            fields["completed_at"] = utc_now()
        if result.session_id:
            fields["session_id"] = result.session_id
        self.repository.update(task.task_id, fields, event_type=status.value)

        uploaded = self._upload_artifacts(task, before)

        notify.status(SIGNAL_BY_STATUS[status])
        for chunk in render_outcome(
            summary=task.summary or task.intent,
            status=status,
            result_text=result.result_text,
            duration_ms=result.duration_ms,
            cost_units=result.cost_units,
            artifact_count=uploaded,
        ):
            notify.reply(chunk)

        logger.info(
            "Task %s %s (%.1fs, cost %.4f)",
            task.task_id,
            status.value,
            result.duration_ms / 1000,
            result.cost_units,
        )
        return status

    def _upload_artifacts(self, task: InboxTaskView, before: frozenset[Path]) -> int:
        """Upload files the run produced; return how many went out.

        The outcome is already persisted, so errors here are only logged and
        the result text is posted instead of an artifact summary.
        """

        try:
            new_artifacts = self.artifacts.diff(before, self.artifacts.snapshot())
            if not new_artifacts:
                return 0
            logger.info(
                "Found %d new artifact(s) for task %s, uploading",
                len(new_artifacts),
                task.task_id,
            )
            return self.artifacts.upload(
                channel=task.channel,
                thread_ref=task.reply_ref,
                paths=new_artifacts,
            )
        except Exception:  # noqa: BLE001
            logger.exception("Artifact upload failed for task %s", task.task_id)
            return 0

    def _mark_failed(self, task: InboxTaskView, notify: Notifier, error: Exception) -> None:
        try:
            self.repository.update(
                task.task_id,
                {
                    "status": InboxTaskStatus.FAILED,
                    "completed_at": utc_now(),
                    "error_summary": f"{type(error).__name__}: {error}",
                },
                event_type="execution_error",
            )
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record execution error for task %s", task.task_id)
        notify.status(StatusSignal.FAILED)
        notify.reply(f"{EXECUTION_FAILED_TEXT} ({type(error).__name__})")


class Notifier:
    """Best-effort messaging bound to one task's message and thread."""

    def __init__(self, messaging: MessagingSurface, task: InboxTaskView) -> None:
        self.messaging = messaging
        self.task = task

    def status(self, signal: StatusSignal, *, message_ref: str | None = None) -> None:
        try:
            self.messaging.set_status(
                channel=self.task.channel,
                message_ref=message_ref or self.task.message_ref,
                signal=signal,
            )
        except Exception:  # noqa: BLE001
            logger.warning(
                "Failed to set status %s for task %s",
                signal.value,
                self.task.task_id,
                exc_info=True,
            )

    def reply(self, text: str) -> None:
        try:
            self.messaging.post_reply(
                channel=self.task.channel,
                thread_ref=self.task.reply_ref,
                text=text,
            )
        except Exception:  # noqa: BLE001
            logger.warning("Failed to post reply for task %s", self.task.task_id, exc_info=True)
