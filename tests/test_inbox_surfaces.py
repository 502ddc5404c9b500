from __future__ import annotations

import json
import logging
from pathlib import Path

import allure
import httpx
import pytest

from inbox_agent.inbox.models import InboxTaskStatus
from inbox_agent.inbox.reporter import (
    render_classification,
    render_outcome,
    render_start_notice,
    split_text,
)
from inbox_agent.inbox.surfaces import (
    ConsoleMessagingSurface,
    DeliveryError,
    OutputDirArtifactSurface,
    StatusSignal,
    WebhookMessagingSurface,
)
from inbox_agent.inbox.surfaces.artifacts import find_new_artifacts, scan_output_dir

pytestmark = [
    allure.epic("Inbox Queue"),
    allure.feature("Chat & Artifact Surfaces"),
]


def test_webhook_posts_replies_and_status_signals() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    with WebhookMessagingSurface(
        url="https://chat.example.com/hook",
        headers={"Authorization": "Bearer token"},
        transport=httpx.MockTransport(_handler),
    ) as surface:
        surface.post_reply(channel="inbox", thread_ref="t1", text="hello")
        surface.set_status(channel="inbox", message_ref="m1", signal=StatusSignal.WORKING)

    assert [json.loads(request.content) for request in seen] == [
        {"kind": "reply", "channel": "inbox", "ref": "t1", "text": "hello"},
        {"kind": "status", "channel": "inbox", "ref": "m1", "signal": "working"},
    ]
    assert seen[0].headers["Authorization"] == "Bearer token"
    assert str(seen[0].url) == "https://chat.example.com/hook"


def test_webhook_uploads_files_as_multipart(tmp_path: Path) -> None:
    artifact = tmp_path / "report.pdf"
    artifact.write_bytes(b"%PDF-1.7")
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        request.read()
        seen.append(request)
        return httpx.Response(204)

    surface = WebhookMessagingSurface(
        url="https://chat.example.com/hook",
        transport=httpx.MockTransport(_handler),
    )
    surface.upload_file(channel="inbox", thread_ref="t1", path=artifact)
    surface.close()

    assert seen[0].headers["Content-Type"].startswith("multipart/form-data")
    body = seen[0].content
    assert b'name="kind"' in body
    assert b'filename="report.pdf"' in body
    assert b"%PDF-1.7" in body


def test_webhook_errors_are_logged_not_raised(caplog) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        if b"timeout" in request.content:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(503)

    surface = WebhookMessagingSurface(
        url="https://chat.example.com/hook",
        transport=httpx.MockTransport(_handler),
    )
    with caplog.at_level(logging.WARNING):
        surface.post_reply(channel="inbox", thread_ref="t1", text="hello")
        surface.post_reply(channel="inbox", thread_ref="t1", text="timeout")
    surface.close()

    assert "Messaging webhook https://chat.example.com/hook failed" in caplog.text
    assert "Timeout posting to messaging webhook" in caplog.text


def test_find_new_artifacts_filters_extensions_and_scratch_dirs(tmp_path: Path) -> None:
    root = tmp_path / "out"
    for relative in ("old.png", "logs/.keep"):
        (root / relative).parent.mkdir(parents=True, exist_ok=True)
        (root / relative).write_text("x", "utf-8")
    before = scan_output_dir(root)

    for relative in (
        "video.MP4",
        "site/index.html",
        "notes.txt",
        "work/draft.md",
        "parts/chunk.mp3",
        "logs/run.md",
        "deep/logs/trace.wav",
    ):
        (root / relative).parent.mkdir(parents=True, exist_ok=True)
        (root / relative).write_text("x", "utf-8")
    after = scan_output_dir(root)

    assert [path.relative_to(root).as_posix() for path in find_new_artifacts(
        before,
        after,
        root=root,
    )] == ["site/index.html", "video.MP4"]
    assert scan_output_dir(tmp_path / "missing") == frozenset()


def test_output_dir_upload_counts_successful_uploads(tmp_path: Path) -> None:
    class _FlakyUploads:
        def __init__(self) -> None:
            self.uploaded: list[str] = []

        def upload_file(self, *, channel: str, thread_ref: str, path: Path) -> None:
            if path.name == "broken.png":
                raise OSError("read error")
            self.uploaded.append(path.name)

    messaging = _FlakyUploads()
    surface = OutputDirArtifactSurface(output_dir=tmp_path, messaging=messaging)

    count = surface.upload(
        channel="inbox",
        thread_ref="t1",
        paths=[tmp_path / "a.png", tmp_path / "broken.png", tmp_path / "b.pdf"],
    )

    assert count == 2
    assert messaging.uploaded == ["a.png", "b.pdf"]


def test_render_outcome_headlines() -> None:
    assert render_outcome(
        summary="Weekly report",
        status=InboxTaskStatus.FAILED,
        result_text="Could not reach the server.",
        duration_ms=61_500,
        cost_units=0.5,
    ) == ["Failed: Weekly report (61.5s, cost 0.5000)", "Could not reach the server."]
    assert render_outcome(
        summary="Weekly report",
        status=InboxTaskStatus.COMPLETED,
        result_text="",
        duration_ms=0,
        cost_units=0.0,
    ) == ["Completed: Weekly report (0.0s, cost 0.0000)"]


def test_start_notice_estimates_by_intent() -> None:
    assert render_start_notice("research") == "Working on it, about 10-15 minutes."
    assert render_start_notice("reminder") == "Working on it, about 1-2 minutes."
    assert render_start_notice("shopping") == "Working on it, about 3-5 minutes."

def test_render_classification_includes_question() -> None:
    plain = render_classification(summary="Book a room", intent="organize", clarify_question=None)
    asking = render_classification(
        summary="Book a room",
        intent="organize",
        clarify_question="For how many people?",
    )

    assert plain == "Book a room\nintent: organize"
    assert asking.startswith("Book a room\nintent: organize\n\nFor how many people?\n")


def test_split_text_respects_limit() -> None:
    text = "\n".join(["short line"] * 5 + ["y" * 25])

    chunks = split_text(text, limit=24)

    assert all(len(chunk) <= 24 for chunk in chunks)
    assert "".join(chunks).replace("\n", "") == text.replace("\n", "")
    assert split_text("") == []


def test_console_surface_echoes_events(capsys, tmp_path: Path) -> None:
    surface = ConsoleMessagingSurface()

    surface.post_reply(channel="inbox", thread_ref="t1", text="hello")
    surface.set_status(channel="inbox", message_ref="m1", signal=StatusSignal.COMPLETED)
    surface.upload_file(channel="inbox", thread_ref="t1", path=tmp_path / "a.png")

    assert capsys.readouterr().out.splitlines() == [
        "[inbox/t1] hello",
        "[inbox/m1] status: completed",
        f"[inbox/t1] file: {tmp_path / 'a.png'}",
    ]


def test_webhook_upload_failure_raises_delivery_error(tmp_path: Path) -> None:
    artifact = tmp_path / "report.pdf"
    artifact.write_bytes(b"%PDF-1.7")
    surface = WebhookMessagingSurface(
        url="https://chat.example.com/hook",
        transport=httpx.MockTransport(lambda _request: httpx.Response(500)),
    )

    with pytest.raises(DeliveryError, match="Upload of report.pdf failed"):
        surface.upload_file(channel="inbox", thread_ref="t1", path=artifact)
    surface.close()
