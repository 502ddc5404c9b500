"""Bounded-concurrency scheduler for queued inbox tasks."""

from __future__ import annotations

import logging
import queue
import threading
import time

from inbox_agent.inbox.executor import TaskExecutor
from inbox_agent.inbox.models import InboxTaskStatus, InboxTaskView
from inbox_agent.inbox.repository import InboxTaskRepository
from inbox_agent.storage.common import utc_now

logger = logging.getLogger(__name__)

_STOP = "stop"
_WAKE = "wake"


class QueueScheduler:
    """Claims queued tasks and runs them on daemon threads.

    Completions never call back into the scheduler directly. They post a
    wake-up signal that the single loop thread consumes, and the loop runs the
    next pass. The in-memory running set only saves store queries: the store
    claim decides who owns a task.
    """

    def __init__(
        self,
        *,
        repository: InboxTaskRepository,
        executor: TaskExecutor,
        max_concurrent: int = 3,
        idle_poll_seconds: float = 1.0,
    ) -> None:
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be a positive integer.")
        self.repository = repository
        self.executor = executor
        self.max_concurrent = max_concurrent
        self.idle_poll_seconds = idle_poll_seconds
        self._signals: queue.Queue[str] = queue.Queue()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pass_lock = threading.Lock()
        self._running: set[str] = set()
        self._passes_in_flight = 0
        self._timers: list[threading.Timer] = []
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running_task_ids(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._running)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="inbox-scheduler",
        )
        self._thread.start()
        logger.info("Queue scheduler started (max_concurrent=%d)", self.max_concurrent)

    def stop(self, timeout: float = 15.0) -> None:
        """Stop the loop thread. Executions already started keep running."""

        with self._lock:
            timers, self._timers = self._timers, []
        for timer in timers:
            timer.cancel()
        if self._thread is None:
            return
        self._stop.set()
        self._signals.put(_STOP)
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Queue scheduler stopped")

    def trigger(self) -> None:
        """Ask the loop thread for another pass."""

        self._signals.put(_WAKE)

    def trigger_later(self, delay_seconds: float) -> None:
        timer = threading.Timer(delay_seconds, self.trigger)
        timer.daemon = True
        with self._lock:
            self._timers = [item for item in self._timers if item.is_alive()]
            self._timers.append(timer)
        timer.start()

    def run_pass(self) -> int:
        """Start queued tasks until the slots are full; return how many started."""

        with self._idle:
            self._passes_in_flight += 1
        try:
            with self._pass_lock:
                return self._fill_slots()
        finally:
            with self._idle:
                self._passes_in_flight -= 1
                self._idle.notify_all()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing runs and nothing is queued; False on timeout."""

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._idle:
                busy = bool(self._running) or self._passes_in_flight > 0
                busy = busy or (self.is_running and not self._signals.empty())
                if not busy and self.repository.oldest_by_status(InboxTaskStatus.QUEUED) is None:
                    return True
                wait_for = self.idle_poll_seconds
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return False
                    wait_for = min(wait_for, remaining)
                self._idle.wait(timeout=wait_for)

    def _fill_slots(self) -> int:
        started = 0
        while True:
            with self._lock:
                if len(self._running) >= self.max_concurrent:
                    break
            task = self.repository.oldest_by_status(InboxTaskStatus.QUEUED)
            if task is None:
                break
            claimed = self.repository.claim(
                task.task_id,
                expected=InboxTaskStatus.QUEUED,
                new=InboxTaskStatus.RUNNING,
                fields={"started_at": utc_now()},
            )
            if not claimed:
                logger.warning("Task %s was claimed elsewhere, skipping", task.task_id)
                continue
            with self._lock:
                self._running.add(task.task_id)
            try:
                self._spawn(self.repository.get(task.task_id) or task)
            except Exception:
                self._release(task)
                raise
            started += 1
        return started

    def _release(self, task: InboxTaskView) -> None:
        """Undo a claim whose execution never started."""

        with self._idle:
            self._running.discard(task.task_id)
            self._idle.notify_all()
        try:
            self.repository.update(
                task.task_id,
                {"status": InboxTaskStatus.QUEUED, "started_at": None},
                event_type="claim_released",
            )
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to requeue task %s, it stays running until recovery",
                task.task_id,
            )

    def _spawn(self, task: InboxTaskView) -> None:
        logger.info("Starting task %s (%s)", task.task_id, task.intent)
        thread = threading.Thread(
            target=self._run_task,
            args=(task,),
            daemon=True,
            name=f"inbox-task-{task.task_id[:8]}",
        )
        thread.start()

    def _run_task(self, task: InboxTaskView) -> None:
        try:
            self.executor.execute(task)
        except Exception:  # noqa: BLE001
            logger.exception("Unhandled error while running task %s", task.task_id)
        finally:
            with self._idle:
                self._running.discard(task.task_id)
                self._idle.notify_all()
            self.trigger()

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                signal = self._signals.get(timeout=self.idle_poll_seconds)
            except queue.Empty:
                continue
            if signal == _STOP or self._stop.is_set():
                break
            self._drain_signals()
            try:
                self.run_pass()
            except Exception:  # noqa: BLE001
                logger.exception("Scheduler pass failed, waiting for the next signal")

    def _drain_signals(self) -> None:
        while True:
            try:
                signal = self._signals.get_nowait()
            except queue.Empty:
                return
            if signal == _STOP:
                self._signals.put(_STOP)
                return
