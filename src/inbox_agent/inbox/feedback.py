"""Clarification replies and rejection gestures."""

from __future__ import annotations

import logging
from collections.abc import Callable

from inbox_agent.inbox.executor import Notifier
from inbox_agent.inbox.models import InboxTaskView
from inbox_agent.inbox.reporter import CLARIFIED_TEXT, REJECTED_TEXT
from inbox_agent.inbox.repository import CLARIFICATION_SEPARATOR, InboxTaskRepository
from inbox_agent.inbox.surfaces import MessagingSurface, StatusSignal

logger = logging.getLogger(__name__)


class FeedbackHandler:
    """Applies user feedback that moves a task without running it."""

    def __init__(
        self,
        *,
        repository: InboxTaskRepository,
        messaging: MessagingSurface,
        trigger: Callable[[], None],
        separator: str = CLARIFICATION_SEPARATOR,
    ) -> None:
        self.repository = repository
        self.messaging = messaging
        self.trigger = trigger
        self.separator = separator

    def clarify(self, task: InboxTaskView, reply_text: str) -> InboxTaskView | None:
        """Answer a pending task's question and queue it.

        Returns None when the task was no longer pending.
        """

        updated = self.repository.append_clarification(
            task.task_id,
            reply_text,
            separator=self.separator,
        )
        if updated is None:
            logger.info("Task %s is no longer pending, clarification ignored", task.task_id)
            return None

        logger.info("Task %s clarified, queued", task.task_id)
        notify = Notifier(self.messaging, updated)
        notify.reply(CLARIFIED_TEXT)
        notify.status(StatusSignal.ACCEPTED)
        self.trigger()
        return updated

    def reject(self, task: InboxTaskView) -> bool:
        """Reject a pending, queued or waiting task. Other statuses are left alone."""

        if not self.repository.reject(task.task_id):
            logger.info("Task %s (%s) cannot be rejected", task.task_id, task.status.value)
            return False

        logger.info("Task %s rejected", task.task_id)
        notify = Notifier(self.messaging, task)
        notify.status(StatusSignal.REJECTED)
        notify.reply(REJECTED_TEXT)
        return True
