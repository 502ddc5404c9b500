from __future__ import annotations

import threading
import time

import allure
import pytest

from inbox_agent.inbox.executor import TaskExecutor
from inbox_agent.inbox.models import InboxTaskStatus
from inbox_agent.inbox.scheduler import QueueScheduler

pytestmark = [
    allure.epic("Inbox Queue"),
    allure.feature("Queue Scheduler"),
]


def _scheduler(repository, backend, messaging, *, max_concurrent: int) -> QueueScheduler:
    return QueueScheduler(
        repository=repository,
        executor=TaskExecutor(repository=repository, backend=backend, messaging=messaging),
        max_concurrent=max_concurrent,
        idle_poll_seconds=0.05,
    )


def _wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_concurrency_bound_holds_third_task_until_a_slot_frees(
    repository,
    messaging,
    task_factory,
    make_backend,
) -> None:
    gate = threading.Event()
    backend = make_backend(gate=gate)
    first = task_factory()
    second = task_factory()
    third = task_factory()
    scheduler = _scheduler(repository, backend, messaging, max_concurrent=2)

    try:
        assert scheduler.run_pass() == 2
        assert backend.started.acquire(timeout=5)
        assert backend.started.acquire(timeout=5)

        assert scheduler.running_task_ids == {first.task_id, second.task_id}
        assert repository.get(first.task_id).status == InboxTaskStatus.RUNNING
        assert repository.get(second.task_id).status == InboxTaskStatus.RUNNING
        assert repository.get(third.task_id).status == InboxTaskStatus.QUEUED
        assert scheduler.run_pass() == 0

        scheduler.start()
        gate.set()
        assert scheduler.wait_idle(timeout=10)
    finally:
        gate.set()
        scheduler.stop()

    assert backend.max_active <= 2
    for task in (first, second, third):
        assert repository.get(task.task_id).status == InboxTaskStatus.COMPLETED
    assert scheduler.running_task_ids == frozenset()


def test_completions_refill_slots_in_fifo_order(
    repository,
    messaging,
    task_factory,
    make_backend,
) -> None:
    backend = make_backend()
    tasks = [task_factory(prompt=f"prompt {index}") for index in range(4)]
    scheduler = _scheduler(repository, backend, messaging, max_concurrent=1)

    scheduler.start()
    try:
        scheduler.trigger()
        assert scheduler.wait_idle(timeout=10)
    finally:
        scheduler.stop()

    assert backend.prompts() == [f"prompt {index}" for index in range(4)]
    assert backend.max_active == 1
    for task in tasks:
        assert repository.get(task.task_id).status == InboxTaskStatus.COMPLETED


def test_lost_claim_is_skipped_without_taking_a_slot(
    repository,
    messaging,
    task_factory,
    make_backend,
    monkeypatch,
) -> None:
    backend = make_backend()
    contested = task_factory()
    other = task_factory()
    scheduler = _scheduler(repository, backend, messaging, max_concurrent=1)
    original_claim = repository.claim

    def _claim_after_rival(task_id, **kwargs):
        if task_id == contested.task_id and kwargs["new"] == InboxTaskStatus.RUNNING:
            assert original_claim(task_id, **kwargs)
            return False
        return original_claim(task_id, **kwargs)

    monkeypatch.setattr(repository, "claim", _claim_after_rival)

    assert scheduler.run_pass() == 1
    assert _wait_until(lambda: repository.get(other.task_id).status == InboxTaskStatus.COMPLETED)
    assert [request.task_id for _, _, _, request in backend.calls] == [other.task_id]
    assert repository.get(contested.task_id).status == InboxTaskStatus.RUNNING


def test_scheduler_loop_survives_store_faults(
    repository,
    messaging,
    task_factory,
    make_backend,
    monkeypatch,
    caplog,
) -> None:
    task = task_factory()
    scheduler = _scheduler(repository, make_backend(), messaging, max_concurrent=1)
    original = repository.oldest_by_status
    calls = {"count": 0}

    def _flaky(status):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("database is locked")
        return original(status)

    monkeypatch.setattr(repository, "oldest_by_status", _flaky)

    scheduler.start()
    try:
        scheduler.trigger()
        assert _wait_until(lambda: calls["count"] >= 1)
        assert _wait_until(lambda: "Scheduler pass failed" in caplog.text)
        scheduler.trigger()
        assert scheduler.wait_idle(timeout=10)
    finally:
        scheduler.stop()

    assert repository.get(task.task_id).status == InboxTaskStatus.COMPLETED


def test_store_fault_between_claim_and_start_frees_the_slot(
    repository,
    messaging,
    task_factory,
    make_backend,
    monkeypatch,
    caplog,
) -> None:
    first = task_factory()
    second = task_factory()
    backend = make_backend()
    scheduler = _scheduler(repository, backend, messaging, max_concurrent=1)
    original = repository.get
    calls = {"count": 0}

    def _flaky(task_id):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("database is locked")
        return original(task_id)

    monkeypatch.setattr(repository, "get", _flaky)

    scheduler.start()
    try:
        scheduler.trigger()
        assert _wait_until(lambda: "Scheduler pass failed" in caplog.text)
        assert scheduler.running_task_ids == frozenset()
        assert original(first.task_id).status == InboxTaskStatus.QUEUED
        scheduler.trigger()
        assert scheduler.wait_idle(timeout=10)
    finally:
        scheduler.stop()

    assert original(first.task_id).status == InboxTaskStatus.COMPLETED
    assert original(second.task_id).status == InboxTaskStatus.COMPLETED
    assert len(backend.calls) == 2
    events = repository.get_task_details(task_id=first.task_id).events
    assert "claim_released" in [event.event_type for event in events]


def test_trigger_later_runs_a_delayed_pass(
    repository,
    messaging,
    task_factory,
    make_backend,
) -> None:
    task = task_factory()
    scheduler = _scheduler(repository, make_backend(), messaging, max_concurrent=1)

    scheduler.start()
    try:
        time.sleep(0.1)
        assert repository.get(task.task_id).status == InboxTaskStatus.QUEUED
        scheduler.trigger_later(0.05)
        assert scheduler.wait_idle(timeout=10)
    finally:
        scheduler.stop()

    assert repository.get(task.task_id).status == InboxTaskStatus.COMPLETED
    assert scheduler.is_running is False


def test_executor_faults_do_not_leak_slots(
    repository,
    messaging,
    task_factory,
    make_backend,
) -> None:
    backend = make_backend(error=RuntimeError("boom"))
    tasks = [task_factory() for _ in range(3)]
    scheduler = _scheduler(repository, backend, messaging, max_concurrent=1)

    scheduler.start()
    try:
        scheduler.trigger()
        assert scheduler.wait_idle(timeout=10)
    finally:
        scheduler.stop()

    assert scheduler.running_task_ids == frozenset()
    for task in tasks:
        assert repository.get(task.task_id).status == InboxTaskStatus.FAILED


def test_wait_idle_times_out_while_work_is_queued(
    repository,
    messaging,
    task_factory,
    make_backend,
) -> None:
    task_factory()
    scheduler = _scheduler(repository, make_backend(), messaging, max_concurrent=1)

    assert scheduler.wait_idle(timeout=0.2) is False


def test_max_concurrent_must_be_positive(repository, messaging, make_backend) -> None:
    with pytest.raises(ValueError, match="max_concurrent"):
        _scheduler(repository, make_backend(), messaging, max_concurrent=0)
