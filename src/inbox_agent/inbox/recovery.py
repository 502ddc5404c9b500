"""Startup repair of tasks a previous process left running."""

from __future__ import annotations

import logging

from inbox_agent.inbox.models import InboxTaskStatus
from inbox_agent.inbox.repository import InboxTaskRepository
from inbox_agent.inbox.scheduler import QueueScheduler

logger = logging.getLogger(__name__)


class RecoveryCoordinator:
    """Requeues orphaned ``running`` tasks once, before the scheduler starts.

    Store errors propagate: a process that cannot read its queue should not
    start serving it.
    """

    def __init__(
        self,
        *,
        repository: InboxTaskRepository,
        scheduler: QueueScheduler | None = None,
        delay_seconds: float = 3.0,
    ) -> None:
        self.repository = repository
        self.scheduler = scheduler
        self.delay_seconds = delay_seconds

    def recover(self) -> list[str]:
        """Reset orphaned tasks to ``queued`` and return their ids."""

        orphaned = self.repository.all_by_status(InboxTaskStatus.RUNNING)
        recovered: list[str] = []
        for task in orphaned:
            self.repository.update(
                task.task_id,
                {"status": InboxTaskStatus.QUEUED, "started_at": None},
                event_type="recovered",
            )
            recovered.append(task.task_id)
        if recovered:
            logger.warning(
                "Recovered %d orphaned running task(s): %s",
                len(recovered),
                ", ".join(recovered),
            )

        if self.scheduler is not None and self.repository.oldest_by_status(
            InboxTaskStatus.QUEUED,
        ):
            logger.info("Queued work found, scheduling a pass in %.1fs", self.delay_seconds)
            self.scheduler.trigger_later(self.delay_seconds)
        return recovered
