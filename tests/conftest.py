"""Shared test fixtures."""

from __future__ import annotations

import sys
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from inbox_agent.inbox.backend import AgentRunRequest, AgentRunResult
from inbox_agent.inbox.models import InboxTaskCreate, InboxTaskStatus, InboxTaskView
from inbox_agent.inbox.repository import InboxTaskRepository
from inbox_agent.inbox.surfaces import StatusSignal
from inbox_agent.storage.common import utc_now

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m inbox_agent.inbox.backend.echo_agent --prompt-file {{prompt_file}}"
)
ECHO_AGENT_RESUME_TEMPLATE = f"{ECHO_AGENT_COMMAND_TEMPLATE} --session-id {{session_id}}"
CREATED_BASE = datetime(2026, 10, 18, 9, 0, tzinfo=UTC)


class RecordingMessaging:
    """Messaging surface that keeps everything it was asked to send."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.replies: list[tuple[str, str, str]] = []
        self.statuses: list[tuple[str, str, StatusSignal]] = []
        self.files: list[tuple[str, str, Path]] = []
        self._lock = threading.Lock()

    def post_reply(self, *, channel: str, thread_ref: str, text: str) -> None:
        if self.fail:
            raise ConnectionError("chat surface unavailable")
        with self._lock:
            self.replies.append((channel, thread_ref, text))

    def set_status(self, *, channel: str, message_ref: str, signal: StatusSignal) -> None:
        if self.fail:
            raise ConnectionError("chat surface unavailable")
        with self._lock:
            self.statuses.append((channel, message_ref, signal))

    def upload_file(self, *, channel: str, thread_ref: str, path: Path) -> None:
        with self._lock:
            self.files.append((channel, thread_ref, path))

    def texts(self, thread_ref: str | None = None) -> list[str]:
        with self._lock:
            return [text for _, ref, text in self.replies if thread_ref in {None, ref}]

    def signals(self, message_ref: str) -> list[StatusSignal]:
        with self._lock:
            return [signal for _, ref, signal in self.statuses if ref == message_ref]


class ScriptedBackend:
    """Agent backend returning queued results, optionally held behind a gate."""

    def __init__(
        self,
        *,
        results: list[AgentRunResult] | None = None,
        gate: threading.Event | None = None,
        error: Exception | None = None,
        on_run: Callable[[AgentRunRequest], None] | None = None,
    ) -> None:
        self.results = list(results or [])
        self.gate = gate
        self.error = error
        self.on_run = on_run
        self.calls: list[tuple[str, str | None, str, AgentRunRequest]] = []
        self.started = threading.Semaphore(0)
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def execute(self, prompt: str, request: AgentRunRequest) -> AgentRunResult:
        return self._run("execute", None, prompt, request)

    def resume(self, session_id: str, prompt: str, request: AgentRunRequest) -> AgentRunResult:
        return self._run("resume", session_id, prompt, request)

    def prompts(self) -> list[str]:
        with self._lock:
            return [prompt for _, _, prompt, _ in self.calls]

    def _run(
        self,
        kind: str,
        session_id: str | None,
        prompt: str,
        request: AgentRunRequest,
    ) -> AgentRunResult:
        with self._lock:
            self.calls.append((kind, session_id, prompt, request))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.release()
        try:
            if self.gate is not None:
                self.gate.wait(timeout=10)
            if self.on_run is not None:
                self.on_run(request)
            if self.error is not None:
                raise self.error
            with self._lock:
                if self.results:
                    return self.results.pop(0)
            return AgentRunResult(
                success=True,
                needs_input=False,
                result_text=f"done: {prompt}",
                session_id=f"session-{request.task_id[:8]}",
                cost_units=0.01,
                duration_ms=1200,
            )
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture()
def repository(tmp_path: Path):
    repo = InboxTaskRepository(tmp_path / "inbox.db")
    repo.init_schema()
    yield repo
    repo.close()


@pytest.fixture()
def messaging() -> RecordingMessaging:
    return RecordingMessaging()


@pytest.fixture()
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture()
def task_factory(repository: InboxTaskRepository):
    """Insert a task and optionally drive it to a later status."""

    counter = {"value": 0}

    def _create(
        *,
        status: InboxTaskStatus = InboxTaskStatus.QUEUED,
        prompt: str = "Do X",
        message_ref: str | None = None,
        thread_ref: str | None = None,
        session_id: str | None = None,
        result: str | None = None,
        intent: str = "question",
        channel: str = "inbox",
    ) -> InboxTaskView:
        counter["value"] += 1
        initial = InboxTaskStatus.PENDING if status == InboxTaskStatus.PENDING else (
            InboxTaskStatus.QUEUED
        )
        task = repository.insert(
            InboxTaskCreate(
                intent=intent,
                autonomy_level="auto",
                summary=f"task {counter['value']}",
                original_message=f"original {counter['value']}",
                execution_prompt=prompt,
                channel=channel,
                message_ref=message_ref or f"msg-{counter['value']}",
                thread_ref=thread_ref,
                status=initial,
                created_at=CREATED_BASE + timedelta(seconds=counter["value"]),
            ),
        )
        if status in {InboxTaskStatus.PENDING, InboxTaskStatus.QUEUED}:
            return task
        if status == InboxTaskStatus.REJECTED:
            assert repository.reject(task.task_id)
            return repository.get(task.task_id)
        assert repository.claim(
            task.task_id,
            expected=InboxTaskStatus.QUEUED,
            new=InboxTaskStatus.RUNNING,
            fields={"started_at": utc_now()},
        )
        if status == InboxTaskStatus.RUNNING:
            return repository.get(task.task_id)

        fields: dict[str, object] = {"status": status, "result": result or "previous result"}
        if status != InboxTaskStatus.WAITING:
            fields["completed_at"] = utc_now()
        if session_id is not None:
            fields["session_id"] = session_id
        return repository.update(task.task_id, fields)

    return _create


@pytest.fixture()
def echo_agent(monkeypatch):
    """Point the CLI backend at the local echo agent."""

    monkeypatch.setenv("INBOX_AGENT_COMMAND", ECHO_AGENT_COMMAND_TEMPLATE)
    monkeypatch.setenv("INBOX_AGENT_RESUME_COMMAND", ECHO_AGENT_RESUME_TEMPLATE)
    monkeypatch.setenv("INBOX_AGENT_RECOVERY_DELAY_SECONDS", "0.05")
    monkeypatch.setenv("INBOX_AGENT_IDLE_POLL_SECONDS", "0.05")
    monkeypatch.delenv("INBOX_AGENT_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("INBOX_AGENT_OUTPUT_DIR", raising=False)
    monkeypatch.delenv("INBOX_AGENT_CHANNEL", raising=False)


@pytest.fixture()
def make_backend():
    return ScriptedBackend


@pytest.fixture()
def make_messaging():
    return RecordingMessaging
