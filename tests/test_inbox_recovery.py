from __future__ import annotations

import allure
import pytest

from inbox_agent.inbox.executor import TaskExecutor
from inbox_agent.inbox.models import InboxTaskStatus
from inbox_agent.inbox.recovery import RecoveryCoordinator
from inbox_agent.inbox.scheduler import QueueScheduler

pytestmark = [
    allure.epic("Inbox Queue"),
    allure.feature("Crash Recovery"),
]


class _RecordingScheduler:
    def __init__(self) -> None:
        self.delays: list[float] = []

    def trigger_later(self, delay_seconds: float) -> None:
        self.delays.append(delay_seconds)


def test_orphaned_running_tasks_are_requeued(repository, task_factory) -> None:
    orphan = task_factory(status=InboxTaskStatus.RUNNING)
    done = task_factory(status=InboxTaskStatus.COMPLETED)
    scheduler = _RecordingScheduler()
    coordinator = RecoveryCoordinator(
        repository=repository,
        scheduler=scheduler,
        delay_seconds=3.0,
    )

    assert coordinator.recover() == [orphan.task_id]

    recovered = repository.get(orphan.task_id)
    assert recovered.status == InboxTaskStatus.QUEUED
    assert recovered.started_at is None
    assert repository.get(done.task_id).status == InboxTaskStatus.COMPLETED
    assert scheduler.delays == [3.0]

    details = repository.get_task_details(task_id=orphan.task_id)
    assert details.events[-1].event_type == "recovered"
    assert details.events[-1].status_from == InboxTaskStatus.RUNNING
    assert details.events[-1].status_to == InboxTaskStatus.QUEUED


def test_recovery_is_idempotent(repository, task_factory) -> None:
    orphan = task_factory(status=InboxTaskStatus.RUNNING)
    coordinator = RecoveryCoordinator(repository=repository, scheduler=_RecordingScheduler())

    assert coordinator.recover() == [orphan.task_id]
    assert coordinator.recover() == []
    assert repository.get(orphan.task_id).status == InboxTaskStatus.QUEUED


def test_no_pass_is_scheduled_without_queued_work(repository, task_factory) -> None:
    task_factory(status=InboxTaskStatus.WAITING)
    scheduler = _RecordingScheduler()

    assert RecoveryCoordinator(repository=repository, scheduler=scheduler).recover() == []
    assert scheduler.delays == []


def test_queued_work_alone_schedules_a_pass(repository, task_factory) -> None:
    task_factory(status=InboxTaskStatus.QUEUED)
    scheduler = _RecordingScheduler()

    assert RecoveryCoordinator(
        repository=repository,
        scheduler=scheduler,
        delay_seconds=0.5,
    ).recover() == []
    assert scheduler.delays == [0.5]


def test_store_errors_propagate(repository, monkeypatch) -> None:
    def _broken(_status):
        raise RuntimeError("store unreachable")

    monkeypatch.setattr(repository, "all_by_status", _broken)

    with pytest.raises(RuntimeError, match="store unreachable"):
        RecoveryCoordinator(repository=repository).recover()


def test_recovered_task_is_claimed_and_executed_again(
    repository,
    messaging,
    task_factory,
    make_backend,
) -> None:
    orphan = task_factory(status=InboxTaskStatus.RUNNING, prompt="Resume me")
    backend = make_backend()
    scheduler = QueueScheduler(
        repository=repository,
        executor=TaskExecutor(repository=repository, backend=backend, messaging=messaging),
        max_concurrent=1,
        idle_poll_seconds=0.05,
    )
    coordinator = RecoveryCoordinator(
        repository=repository,
        scheduler=scheduler,
        delay_seconds=0.05,
    )

    assert coordinator.recover() == [orphan.task_id]
    scheduler.start()
    try:
        assert scheduler.wait_idle(timeout=10)
    finally:
        scheduler.stop()

    assert backend.prompts() == ["Resume me"]
    final = repository.get(orphan.task_id)
    assert final.status == InboxTaskStatus.COMPLETED
    assert final.started_at is not None
