"""Plain-text renderings of task state for the chat surface."""

from __future__ import annotations

from inbox_agent.inbox.models import InboxTaskStatus

MAX_CHUNK_CHARS = 3_000

_HEADLINES = {
    InboxTaskStatus.COMPLETED: "Completed",
    InboxTaskStatus.WAITING: "Waiting for your answer",
    InboxTaskStatus.FAILED: "Failed",
    InboxTaskStatus.REJECTED: "Rejected",
}

STILL_RUNNING_TEXT = "This task is still running. Please try again once it has finished."
CLARIFIED_TEXT = "Got it. Starting the task now."
REJECTED_TEXT = "Rejected."
EXECUTION_FAILED_TEXT = "The task failed with an unexpected error."
FOLLOW_UP_FAILED_TEXT = "Failed to generate a reply. Please try again."
INTAKE_FAILED_TEXT = "Failed to register the task."

# Rough run-time ranges shown when a task starts; unknown intents use the default.
ESTIMATE_MINUTES_BY_INTENT = {
    "research": "10-15",
    "code_change": "5-10",
    "organize": "3-5",
    "question": "1-3",
    "reminder": "1-2",
}
DEFAULT_ESTIMATE_MINUTES = "3-5"


def render_classification(*, summary: str, intent: str, clarify_question: str | None) -> str:
    lines = [summary, f"intent: {intent}"]
    if clarify_question:
        lines.extend(
            [
                "",
                clarify_question,
                "Answer in this thread, or react with a thumbs-down to reject the task.",
            ],
        )
    return "\n".join(lines)


def render_start_notice(intent: str) -> str:
    estimate = ESTIMATE_MINUTES_BY_INTENT.get(intent, DEFAULT_ESTIMATE_MINUTES)
    return f"Working on it, about {estimate} minutes."


def render_outcome(  # noqa: PLR0913
    *,
    summary: str,
    status: InboxTaskStatus,
    result_text: str,
    duration_ms: int,
    cost_units: float,
    artifact_count: int = 0,
) -> list[str]:
    """Headline plus result body, split into chat-sized chunks.

    When artifacts were uploaded the body is replaced by a one-line count.
    """

    headline = f"{_HEADLINES.get(status, status.value)}: {summary}"
    meta = f"({duration_ms / 1000:.1f}s, cost {cost_units:.4f})"
    if artifact_count > 0:
        return [f"{headline} {meta}\n{artifact_count} artifact(s) uploaded."]
    return [f"{headline} {meta}", *split_text(result_text)]


def split_text(text: str, limit: int = MAX_CHUNK_CHARS) -> list[str]:
    """Split on line boundaries where possible so no chunk exceeds ``limit``."""

    if not text:
        return []
    chunks: list[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return [chunk.rstrip("\n") for chunk in chunks if chunk.strip()]
