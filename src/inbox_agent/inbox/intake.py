"""Ingestion path: inbound messages become tasks or follow-ups."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

from inbox_agent.inbox.conversation import ConversationResumer, FollowUpOutcome
from inbox_agent.inbox.executor import Notifier
from inbox_agent.inbox.feedback import FeedbackHandler
from inbox_agent.inbox.models import (
    REJECTABLE_STATUSES,
    Classification,
    InboundMessage,
    InboxTaskCreate,
    InboxTaskStatus,
    InboxTaskView,
)
from inbox_agent.inbox.reporter import INTAKE_FAILED_TEXT, render_classification
from inbox_agent.inbox.repository import InboxTaskRepository
from inbox_agent.inbox.surfaces import MessagingSurface, StatusSignal

logger = logging.getLogger(__name__)


class Classifier(Protocol):
    """External text classifier."""

    def classify(self, text: str) -> Classification:
        """Classify one inbound message."""


def attachment_text(attachments: tuple[str, ...]) -> str:
    return "\n".join(f"[Attachment: {name}]" for name in attachments)


class InboxIntake:
    """Front door for the messaging surface's message and reaction events."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: InboxTaskRepository,
        messaging: MessagingSurface,
        resumer: ConversationResumer,
        feedback: FeedbackHandler,
        trigger: Callable[[], None],
        channel: str,
        classifier: Classifier | None = None,
    ) -> None:
        self.repository = repository
        self.messaging = messaging
        self.resumer = resumer
        self.feedback = feedback
        self.trigger = trigger
        self.channel = channel
        self.classifier = classifier

    def submit(self, message: InboundMessage, classification: Classification) -> InboxTaskView:
        """Create a task for a classified message.

        It starts ``pending`` with its question posted when clarification is
        needed, ``queued`` otherwise.
        """

        needs_clarification = bool(classification.clarify_question)
        task = self.repository.insert(
            InboxTaskCreate(
                intent=classification.intent,
                autonomy_level=classification.autonomy_level,
                summary=classification.summary,
                original_message=message.text,
                execution_prompt=classification.execution_prompt,
                channel=message.channel,
                message_ref=message.message_ref,
                thread_ref=message.thread_ref,
                status=(
                    InboxTaskStatus.PENDING if needs_clarification else InboxTaskStatus.QUEUED
                ),
            ),
        )
        logger.info(
            "Task %s registered as %s (%s)",
            task.task_id,
            task.status.value,
            task.intent,
        )

        notify = Notifier(self.messaging, task)
        notify.reply(
            render_classification(
                summary=classification.summary,
                intent=classification.intent,
                clarify_question=classification.clarify_question,
            ),
        )
        if needs_clarification:
            notify.status(StatusSignal.WAITING)
        else:
            notify.status(StatusSignal.ACCEPTED)
            self.trigger()
        return task

    def receive(self, message: InboundMessage) -> InboxTaskView | FollowUpOutcome | None:
        """Handle one inbound message; returns what it produced, None if ignored."""

        if message.from_bot or message.channel != self.channel:
            return None
        text = message.text.strip()
        if not text and not message.attachments:
            return None

        if message.is_thread_reply and message.thread_ref is not None:
            return self.resumer.handle_follow_up(
                channel=message.channel,
                thread_ref=message.thread_ref,
                text=text or attachment_text(message.attachments),
            )

        if self.classifier is None:
            raise RuntimeError("No classifier configured for top-level messages.")
        try:
            classification = self.classifier.classify(text)
            return self.submit(message, classification)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to register message %s", message.message_ref)
            try:
                self.messaging.post_reply(
                    channel=message.channel,
                    thread_ref=message.message_ref,
                    text=INTAKE_FAILED_TEXT,
                )
            except Exception:  # noqa: BLE001
                logger.warning("Failed to post intake failure notice", exc_info=True)
            return None

    def reject(self, *, channel: str, message_ref: str) -> bool:
        """Rejection gesture on an inbound message."""

        task = self.repository.find_by_message(
            channel=channel,
            message_ref=message_ref,
            statuses=REJECTABLE_STATUSES,
        )
        if task is None:
            logger.info("No rejectable task for message %s/%s", channel, message_ref)
            return False
        return self.feedback.reject(task)
