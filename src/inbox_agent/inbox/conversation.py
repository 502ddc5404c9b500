"""Follow-up messages in the thread of an existing task."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from inbox_agent.inbox.backend import AgentBackend, AgentRunRequest, AgentRunResult
from inbox_agent.inbox.executor import DEFAULT_TIMEOUT_SECONDS, SIGNAL_BY_STATUS, Notifier
from inbox_agent.inbox.feedback import FeedbackHandler
from inbox_agent.inbox.models import (
    FINISHED_STATUSES,
    InboxTaskStatus,
    InboxTaskView,
    outcome_status,
)
from inbox_agent.inbox.reporter import FOLLOW_UP_FAILED_TEXT, STILL_RUNNING_TEXT, split_text
from inbox_agent.inbox.repository import InboxTaskRepository
from inbox_agent.inbox.surfaces import MessagingSurface, StatusSignal
from inbox_agent.storage.common import utc_now

logger = logging.getLogger(__name__)

RESULT_EXCERPT_CHARS = 500


class FollowUpOutcome(str, Enum):
    """What a follow-up message ended up doing."""

    CLARIFIED = "clarified"
    STILL_RUNNING = "still_running"
    RESUMED = "resumed"
    EXECUTED_FRESH = "executed_fresh"
    DISCARDED = "discarded"
    FAILED = "failed"
    IGNORED = "ignored"


def build_follow_up_prompt(task: InboxTaskView, message: str) -> str:
    """Prompt for a fresh run that carries the earlier exchange as context."""

    if not task.original_message:
        return message
    parts = [
        "This continues an earlier conversation.",
        f"Original request: {task.original_message}",
    ]
    if task.result:
        parts.append(f"Previous answer: {task.result[:RESULT_EXCERPT_CHARS]}")
    parts.append(f"Follow-up message: {message}")
    return "\n\n".join(parts)


class ConversationResumer:
    """Routes a thread reply to clarification, a wait notice, or another agent run."""

    def __init__(
        self,
        *,
        repository: InboxTaskRepository,
        backend: AgentBackend,
        messaging: MessagingSurface,
        feedback: FeedbackHandler,
        timeout_for: Callable[[str], int] | None = None,
    ) -> None:
        self.repository = repository
        self.backend = backend
        self.messaging = messaging
        self.feedback = feedback
        self.timeout_for = timeout_for or (lambda _intent: DEFAULT_TIMEOUT_SECONDS)

    def handle_follow_up(self, *, channel: str, thread_ref: str, text: str) -> FollowUpOutcome:
        """Handle ``text`` posted in ``thread_ref``. Never raises."""

        try:
            return self._dispatch(channel=channel, thread_ref=thread_ref, text=text)
        except Exception:  # noqa: BLE001
            logger.exception("Follow-up in thread %s/%s failed", channel, thread_ref)
            try:
                self.messaging.post_reply(
                    channel=channel,
                    thread_ref=thread_ref,
                    text=FOLLOW_UP_FAILED_TEXT,
                )
            except Exception:  # noqa: BLE001
                logger.warning("Failed to post follow-up failure notice", exc_info=True)
            return FollowUpOutcome.FAILED

    def _dispatch(self, *, channel: str, thread_ref: str, text: str) -> FollowUpOutcome:
        running = self.repository.find_thread_task(
            channel=channel,
            ref=thread_ref,
            statuses=[InboxTaskStatus.RUNNING],
        )
        if running is not None:
            Notifier(self.messaging, running).reply(STILL_RUNNING_TEXT)
            return FollowUpOutcome.STILL_RUNNING

        pending = self.repository.find_thread_task(
            channel=channel,
            ref=thread_ref,
            statuses=[InboxTaskStatus.PENDING],
        )
        if pending is not None:
            if self.feedback.clarify(pending, text) is None:
                return FollowUpOutcome.IGNORED
            return FollowUpOutcome.CLARIFIED

        finished = self.repository.find_thread_task(
            channel=channel,
            ref=thread_ref,
            statuses=FINISHED_STATUSES,
        )
        if finished is None:
            logger.debug("No task to continue in thread %s/%s", channel, thread_ref)
            return FollowUpOutcome.IGNORED
        return self._continue(finished, text)

    def _continue(self, task: InboxTaskView, text: str) -> FollowUpOutcome:
        notify = Notifier(self.messaging, task)
        notify.status(StatusSignal.WORKING)
        request = AgentRunRequest(
            task_id=task.task_id,
            intent=task.intent,
            timeout_seconds=self.timeout_for(task.intent),
        )
        try:
            if task.session_id:
                logger.info("Resuming session %s for task %s", task.session_id, task.task_id)
                result = self.backend.resume(task.session_id, text, request)
                outcome = FollowUpOutcome.RESUMED
            else:
                logger.info("No session for task %s, running a fresh query", task.task_id)
                result = self.backend.execute(build_follow_up_prompt(task, text), request)
                outcome = FollowUpOutcome.EXECUTED_FRESH
        except Exception:  # noqa: BLE001
            logger.exception("Follow-up run failed for task %s", task.task_id)
            notify.status(StatusSignal.FAILED)
            notify.reply(FOLLOW_UP_FAILED_TEXT)
            return FollowUpOutcome.FAILED

        status = self._persist(task, result)
        if status is None:
            return FollowUpOutcome.DISCARDED

        notify.status(SIGNAL_BY_STATUS[status])
        for chunk in split_text(result.result_text):
            notify.reply(chunk)
        logger.info(
            "Follow-up for task %s done: %s (%.1fs, cost %.4f)",
            task.task_id,
            status.value,
            result.duration_ms / 1000,
            result.cost_units,
        )
        return outcome

    def _persist(self, task: InboxTaskView, result: AgentRunResult) -> InboxTaskStatus | None:
        status = outcome_status(success=result.success, needs_input=result.needs_input)
        fields: dict[str, object] = {
            "result": result.result_text,
            "cost_units": result.cost_units,
            "duration_ms": result.duration_ms,
            "completed_at": None if status == InboxTaskStatus.WAITING else utc_now(),
        }
        if result.session_id and result.session_id != task.session_id:
            fields["session_id"] = result.session_id

        written = self.repository.claim(
            task.task_id,
            expected=task.status,
            new=status,
            fields=fields,
            event_type="follow_up",
        )
        if not written:
            logger.warning(
                "Task %s changed while its follow-up was running, outcome discarded",
                task.task_id,
            )
            return None
        return status
