"""Subprocess-based backend runner for CLI agents."""

from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
import tempfile
import time
from pathlib import Path

from inbox_agent.inbox.backend.base import AgentBackendError, AgentRunRequest, AgentRunResult
from inbox_agent.inbox.outcome import (
    detect_pending_input,
    detect_task_failure,
    extract_final_text,
)

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TEMPLATE = "claude -p --output-format json -- {prompt}"
DEFAULT_RESUME_COMMAND_TEMPLATE = (
    "claude -p --output-format json --resume {session_id} -- {prompt}"
)


class CliAgentBackend:
    """Run an agent CLI per task and parse its JSON result from stdout.

    ``command_template`` supports ``{prompt}`` and ``{prompt_file}``;
    ``resume_command_template`` additionally needs ``{session_id}``.
    """

    def __init__(
        self,
        *,
        command_template: str = DEFAULT_COMMAND_TEMPLATE,
        resume_command_template: str | None = DEFAULT_RESUME_COMMAND_TEMPLATE,
        env: dict[str, str] | None = None,
    ) -> None:
        self.command_template = command_template
        self.resume_command_template = resume_command_template
        self.env = env

    def execute(self, prompt: str, request: AgentRunRequest) -> AgentRunResult:
        return self._run(self.command_template, prompt=prompt, session_id=None, request=request)

    def resume(self, session_id: str, prompt: str, request: AgentRunRequest) -> AgentRunResult:
        """Resume a session; fall back to a fresh run if the resume process fails.

        An answer that merely reports failure is returned as is: rerunning it
        without the session context would lose the conversation.
        """

        if not self.resume_command_template:
            logger.warning("No resume command configured, starting a fresh session")
            return self.execute(prompt, request)

        result = self._run(
            self.resume_command_template,
            prompt=prompt,
            session_id=session_id,
            request=request,
        )
        if not result.process_failed:
            return result
        logger.warning(
            "Resume of session %s failed for task %s, falling back to a new session",
            session_id,
            request.task_id,
        )
        return self.execute(prompt, request)

    def _run(
        self,
        template: str,
        *,
        prompt: str,
        session_id: str | None,
        request: AgentRunRequest,
    ) -> AgentRunResult:
        env = os.environ.copy()
        if self.env:
            env.update(self.env)
        env["INBOX_AGENT_TASK_ID"] = request.task_id
        env["INBOX_AGENT_TASK_INTENT"] = request.intent

        started = time.monotonic()
        with tempfile.TemporaryDirectory(prefix="inbox-agent-") as tmp_dir:
            prompt_file = Path(tmp_dir) / "prompt.txt"
            prompt_file.write_text(prompt, "utf-8")
            run_args = build_run_args(
                command_template=template,
                prompt=prompt,
                prompt_file=prompt_file,
                session_id=session_id,
            )
            try:
                completed = subprocess.run(  # noqa: S603
                    run_args,
                    env=env,
                    capture_output=True,
                    text=True,
                    timeout=request.timeout_seconds,
                    check=False,
                )
            except FileNotFoundError as error:
                raise AgentBackendError(
                    f"Agent command not found: {run_args[0]}",
                    transient=False,
                ) from error
            except subprocess.TimeoutExpired:
                duration_ms = int((time.monotonic() - started) * 1000)
                logger.warning(
                    "Agent run for task %s timed out after %ss",
                    request.task_id,
                    request.timeout_seconds,
                )
                return AgentRunResult(
                    success=False,
                    needs_input=False,
                    result_text=f"Timed out after {request.timeout_seconds} seconds.",
                    session_id=session_id,
                    duration_ms=duration_ms,
                )
            except OSError as error:
                raise AgentBackendError(
                    f"Agent command failed to start: {error}",
                    transient=True,
                ) from error

        duration_ms = int((time.monotonic() - started) * 1000)
        return parse_agent_output(
            stdout=completed.stdout,
            stderr=completed.stderr,
            exit_code=completed.returncode,
            duration_ms=duration_ms,
            fallback_session_id=session_id,
        )


def build_run_args(
    *,
    command_template: str,
    prompt: str,
    prompt_file: Path,
    session_id: str | None,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise AgentBackendError("Agent command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise AgentBackendError(
            "Agent command template must include {prompt} or {prompt_file}.",
            transient=False,
        )
    if session_id is not None and "{session_id}" not in stripped:
        raise AgentBackendError(
            "Resume command template must include {session_id}.",
            transient=False,
        )
    try:
        rendered = stripped.format(
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            session_id=shlex.quote(session_id or ""),
        )
    except KeyError as error:
        raise AgentBackendError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise AgentBackendError("Agent command template rendered empty command.", transient=False)
    return argv


def parse_agent_output(
    *,
    stdout: str,
    stderr: str,
    exit_code: int,
    duration_ms: int,
    fallback_session_id: str | None = None,
) -> AgentRunResult:
    """Turn CLI agent output into a run result.

    stdout may be one JSON document or JSON lines (the last object wins); any
    other output is taken as plain result text.
    """

    payload = _last_json_object(stdout)
    if payload is None:
        text = stdout.strip() or stderr.strip() or "(no result text)"
        succeeded = exit_code == 0 and not detect_task_failure(text)
        return AgentRunResult(
            success=succeeded,
            needs_input=exit_code == 0 and detect_pending_input(text),
            result_text=text,
            session_id=fallback_session_id,
            duration_ms=duration_ms,
            process_failed=True,
        )

    result_text = extract_final_text(payload)
    session_id = payload.get("session_id")
    cost = payload.get("total_cost_usd", payload.get("cost_units", 0.0))
    is_error = bool(payload.get("is_error", False))
    succeeded = exit_code == 0 and not is_error and not detect_task_failure(result_text)
    return AgentRunResult(
        success=succeeded,
        needs_input=not is_error and detect_pending_input(result_text),
        result_text=result_text,
        session_id=session_id if isinstance(session_id, str) and session_id else fallback_session_id,
        cost_units=float(cost) if isinstance(cost, int | float) else 0.0,
        duration_ms=duration_ms,
        process_failed=exit_code != 0 or is_error,
    )


def _last_json_object(stdout: str) -> dict[str, object] | None:
    stripped = stdout.strip()
    if not stripped:
        return None
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed

    for line in reversed(stripped.splitlines()):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            candidate = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(candidate, dict):
            return candidate
    return None
