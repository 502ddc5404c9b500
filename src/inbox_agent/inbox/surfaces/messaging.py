"""Outbound messaging surface: thread replies, status signals, file uploads."""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Protocol

import httpx
import rich_click as click

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class DeliveryError(RuntimeError):
    """A file could not be delivered to the chat surface."""


class StatusSignal(str, Enum):
    """Reaction-style task state shown on the inbound message."""

    ACCEPTED = "accepted"
    WORKING = "working"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"


class MessagingSurface(Protocol):
    """Chat surface the inbox core posts to."""

    def post_reply(self, *, channel: str, thread_ref: str, text: str) -> None:
        """Post ``text`` into a thread."""

    def set_status(self, *, channel: str, message_ref: str, signal: StatusSignal) -> None:
        """Replace the status signal shown on a message."""

    def upload_file(self, *, channel: str, thread_ref: str, path: Path) -> None:
        """Attach a file to a thread; raises :class:`DeliveryError` or ``OSError`` on failure."""


class LoggingMessagingSurface:
    """Surface that only logs; used when no chat surface is configured."""

    def post_reply(self, *, channel: str, thread_ref: str, text: str) -> None:
        logger.info("[%s/%s] %s", channel, thread_ref, text)

    def set_status(self, *, channel: str, message_ref: str, signal: StatusSignal) -> None:
        logger.info("[%s/%s] status=%s", channel, message_ref, signal.value)

    def upload_file(self, *, channel: str, thread_ref: str, path: Path) -> None:
        logger.info("[%s/%s] file=%s", channel, thread_ref, path)


class ConsoleMessagingSurface:
    """Surface that echoes everything to the terminal for CLI sessions."""

    def post_reply(self, *, channel: str, thread_ref: str, text: str) -> None:
        click.echo(f"[{channel}/{thread_ref}] {text}")

    def set_status(self, *, channel: str, message_ref: str, signal: StatusSignal) -> None:
        click.echo(f"[{channel}/{message_ref}] status: {signal.value}")

    def upload_file(self, *, channel: str, thread_ref: str, path: Path) -> None:
        click.echo(f"[{channel}/{thread_ref}] file: {path}")


class WebhookMessagingSurface:
    """POST every outbound event to one HTTP endpoint.

    Delivery is best-effort: HTTP failures are logged and never raised, so a
    flaky chat bridge cannot fail a task.
    """

    def __init__(
        self,
        *,
        url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds, connect=5.0),
            headers=headers or {},
            transport=transport,
        )

    def post_reply(self, *, channel: str, thread_ref: str, text: str) -> None:
        self._post(json={"kind": "reply", "channel": channel, "ref": thread_ref, "text": text})

    def set_status(self, *, channel: str, message_ref: str, signal: StatusSignal) -> None:
        self._post(
            json={
                "kind": "status",
                "channel": channel,
                "ref": message_ref,
                "signal": signal.value,
            },
        )

    def upload_file(self, *, channel: str, thread_ref: str, path: Path) -> None:
        """Upload one file; raises :class:`DeliveryError` when the bridge refuses it."""

        with path.open("rb") as handle:
            try:
                response = self._client.post(
                    self.url,
                    data={"kind": "file", "channel": channel, "ref": thread_ref},
                    files={"file": (path.name, handle)},
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise DeliveryError(f"Upload of {path.name} failed: {exc}") from exc

    def _post(self, **kwargs: object) -> None:
        try:
            response = self._client.post(self.url, **kwargs)  # type: ignore[arg-type]
            response.raise_for_status()
        except httpx.TimeoutException:
            logger.warning("Timeout posting to messaging webhook %s", self.url)
        except httpx.HTTPError as exc:
            logger.warning("Messaging webhook %s failed: %s", self.url, exc)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> WebhookMessagingSurface:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
