"""CLI entrypoint for inbox-agent."""

import logging
import os
from pathlib import Path

import rich_click as click

from inbox_agent import __version__
from inbox_agent.inbox.controllers import (
    DEFAULT_WAIT_SECONDS,
    DrainCommand,
    InboxCliController,
    InspectTaskCommand,
    ListTasksCommand,
    RecoverCommand,
    RejectCommand,
    ReplyCommand,
    SubmitCommand,
)
from inbox_agent.inbox.models import InboxTaskStatus

click.rich_click.USE_MARKDOWN = True
INBOX_CONTROLLER = InboxCliController()

_STATUS_CHOICES = [status.value for status in InboxTaskStatus]


@click.group()
@click.version_option(version=__version__, prog_name="inbox-agent")
def inbox_agent() -> None:
    """Inbox task queue CLI."""

    logging.basicConfig(
        level=os.getenv("INBOX_AGENT_LOG_LEVEL", "INFO").strip().upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@inbox_agent.command("submit")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--text", required=True, help="Original message text.")
@click.option("--intent", required=True, help="Intent tag from the classifier.")
@click.option("--summary", required=True, help="One-line task summary.")
@click.option(
    "--execution-prompt",
    default=None,
    help="Prompt for the agent. Defaults to the message text.",
)
@click.option("--autonomy-level", default="auto", show_default=True, help="Autonomy tag.")
@click.option(
    "--clarify-question",
    default=None,
    help="Question to ask first. The task stays pending until it is answered.",
)
@click.option("--message-ref", default=None, help="Inbound message id. Generated if omitted.")
@click.option("--thread-ref", default=None, help="Thread to post replies into.")
@click.option(
    "--wait/--no-wait",
    default=True,
    show_default=True,
    help="Run the queue in this process until it is idle.",
)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=1),
    default=DEFAULT_WAIT_SECONDS,
    show_default=True,
    help="Maximum time to wait for the queue.",
)
def submit(  # noqa: PLR0913
    db_path: Path | None,
    text: str,
    intent: str,
    summary: str,
    execution_prompt: str | None,
    autonomy_level: str,
    clarify_question: str | None,
    message_ref: str | None,
    thread_ref: str | None,
    wait: bool,
    timeout_seconds: float,
) -> None:
    """Register a classified message as a task."""

    _emit_lines(
        INBOX_CONTROLLER.submit(
            SubmitCommand(
                db_path=db_path,
                text=text,
                intent=intent,
                summary=summary,
                execution_prompt=execution_prompt,
                autonomy_level=autonomy_level,
                clarify_question=clarify_question,
                message_ref=message_ref,
                thread_ref=thread_ref,
                wait=wait,
                timeout_seconds=timeout_seconds,
            ),
        ),
    )


@inbox_agent.command("reply")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--thread-ref", required=True, help="Thread or message id of the task.")
@click.option("--text", required=True, help="Follow-up message text.")
@click.option(
    "--wait/--no-wait",
    default=True,
    show_default=True,
    help="Run a clarified task in this process until the queue is idle.",
)
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=1),
    default=DEFAULT_WAIT_SECONDS,
    show_default=True,
    help="Maximum time to wait for the queue.",
)
def reply(
    db_path: Path | None,
    thread_ref: str,
    text: str,
    wait: bool,
    timeout_seconds: float,
) -> None:
    """Post a follow-up message into a task thread."""

    _emit_lines(
        INBOX_CONTROLLER.reply(
            ReplyCommand(
                db_path=db_path,
                thread_ref=thread_ref,
                text=text,
                wait=wait,
                timeout_seconds=timeout_seconds,
            ),
        ),
    )


@inbox_agent.command("reject")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--message-ref", required=True, help="Inbound message id of the task.")
def reject(db_path: Path | None, message_ref: str) -> None:
    """Reject a pending, queued or waiting task."""

    _emit_lines(
        INBOX_CONTROLLER.reject(
            RejectCommand(
                db_path=db_path,
                message_ref=message_ref,
            ),
        ),
    )


@inbox_agent.command("tasks")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(_STATUS_CHOICES, case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=50,
    show_default=True,
    help="Maximum number of rows.",
)
def tasks(db_path: Path | None, status: str | None, limit: int) -> None:
    """List recent tasks."""

    _emit_lines(
        INBOX_CONTROLLER.list_tasks(
            ListTasksCommand(
                db_path=db_path,
                status=status,
                limit=limit,
            ),
        ),
    )


@inbox_agent.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def inspect(db_path: Path | None, task_id: str) -> None:
    """Inspect one task with event history."""

    _emit_lines(
        INBOX_CONTROLLER.inspect_task(
            InspectTaskCommand(
                db_path=db_path,
                task_id=task_id,
            ),
        ),
    )


@inbox_agent.command("recover")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def recover(db_path: Path | None) -> None:
    """Requeue tasks left running by a crashed process."""

    _emit_lines(INBOX_CONTROLLER.recover(RecoverCommand(db_path=db_path)))


@inbox_agent.command("drain")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--timeout-seconds",
    type=click.FloatRange(min=1),
    default=DEFAULT_WAIT_SECONDS,
    show_default=True,
    help="Maximum time to wait for the queue.",
)
def drain(db_path: Path | None, timeout_seconds: float) -> None:
    """Recover, then run queued tasks until nothing is left."""

    _emit_lines(
        INBOX_CONTROLLER.drain(
            DrainCommand(
                db_path=db_path,
                timeout_seconds=timeout_seconds,
            ),
        ),
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    inbox_agent()
