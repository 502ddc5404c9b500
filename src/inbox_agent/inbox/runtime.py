"""Wiring of store, backend, surfaces and workers for one process."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from inbox_agent.config import Settings
from inbox_agent.inbox.backend import AgentBackend, CliAgentBackend
from inbox_agent.inbox.conversation import ConversationResumer
from inbox_agent.inbox.executor import TaskExecutor
from inbox_agent.inbox.feedback import FeedbackHandler
from inbox_agent.inbox.intake import Classifier, InboxIntake
from inbox_agent.inbox.recovery import RecoveryCoordinator
from inbox_agent.inbox.repository import InboxTaskRepository
from inbox_agent.inbox.scheduler import QueueScheduler
from inbox_agent.inbox.surfaces import (
    ArtifactSurface,
    LoggingMessagingSurface,
    MessagingSurface,
    NullArtifactSurface,
    OutputDirArtifactSurface,
    WebhookMessagingSurface,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class InboxRuntime:
    """All collaborators of the inbox core, built once per process."""

    settings: Settings
    repository: InboxTaskRepository
    messaging: MessagingSurface
    executor: TaskExecutor
    scheduler: QueueScheduler
    recovery: RecoveryCoordinator
    feedback: FeedbackHandler
    resumer: ConversationResumer
    intake: InboxIntake

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        backend: AgentBackend | None = None,
        messaging: MessagingSurface | None = None,
        artifacts: ArtifactSurface | None = None,
        classifier: Classifier | None = None,
    ) -> InboxRuntime:
        settings.validate()
        repository = InboxTaskRepository(
            db_path=settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        repository.init_schema()

        if messaging is None:
            if settings.chat.webhook_url:
                messaging = WebhookMessagingSurface(
                    url=settings.chat.webhook_url,
                    timeout_seconds=settings.chat.webhook_timeout_seconds,
                )
            else:
                messaging = LoggingMessagingSurface()
        if artifacts is None:
            if settings.agent.output_dir is not None:
                artifacts = OutputDirArtifactSurface(
                    output_dir=settings.agent.output_dir,
                    messaging=messaging,
                )
            else:
                artifacts = NullArtifactSurface()
        if backend is None:
            backend = CliAgentBackend(
                command_template=settings.agent.command_template,
                resume_command_template=settings.agent.resume_command_template,
            )

        executor = TaskExecutor(
            repository=repository,
            backend=backend,
            messaging=messaging,
            artifacts=artifacts,
            timeout_for=settings.agent.timeout_for,
        )
        scheduler = QueueScheduler(
            repository=repository,
            executor=executor,
            max_concurrent=settings.queue.max_concurrent,
            idle_poll_seconds=settings.queue.idle_poll_seconds,
        )
        feedback = FeedbackHandler(
            repository=repository,
            messaging=messaging,
            trigger=scheduler.trigger,
        )
        resumer = ConversationResumer(
            repository=repository,
            backend=backend,
            messaging=messaging,
            feedback=feedback,
            timeout_for=settings.agent.timeout_for,
        )
        return cls(
            settings=settings,
            repository=repository,
            messaging=messaging,
            executor=executor,
            scheduler=scheduler,
            recovery=RecoveryCoordinator(
                repository=repository,
                scheduler=scheduler,
                delay_seconds=settings.queue.recovery_delay_seconds,
            ),
            feedback=feedback,
            resumer=resumer,
            intake=InboxIntake(
                repository=repository,
                messaging=messaging,
                resumer=resumer,
                feedback=feedback,
                trigger=scheduler.trigger,
                channel=settings.chat.channel,
                classifier=classifier,
            ),
        )

    def start(self) -> list[str]:
        """Recover orphaned tasks, then start the scheduler loop."""

        recovered = self.recovery.recover()
        self.scheduler.start()
        return recovered

    def stop(self, *, timeout: float = 15.0) -> None:
        self.scheduler.stop(timeout=timeout)
        close = getattr(self.messaging, "close", None)
        if callable(close):
            close()
        self.repository.close()

    def __enter__(self) -> InboxRuntime:
        return self

    def __exit__(self, *_: object) -> None:
        self.stop()
