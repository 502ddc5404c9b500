"""Artifact detection by output-directory snapshots, and upload."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

from inbox_agent.inbox.surfaces.messaging import DeliveryError, MessagingSurface

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({".mp4", ".pdf", ".mp3", ".html", ".md", ".wav", ".webp", ".png"})
EXCLUDED_DIR_NAMES = frozenset({"work", "parts", "logs"})


class ArtifactSurface(Protocol):
    def snapshot(self) -> frozenset[Path]:
        """Return every file currently present."""

    def diff(self, before: frozenset[Path], after: frozenset[Path]) -> list[Path]:
        """Return new files that count as deliverable artifacts."""

    def upload(self, *, channel: str, thread_ref: str, paths: list[Path]) -> int:
        """Upload artifacts, returning how many went out."""


class NullArtifactSurface:
    """No output directory configured: nothing is ever detected."""

    def snapshot(self) -> frozenset[Path]:
        return frozenset()

    def diff(self, before: frozenset[Path], after: frozenset[Path]) -> list[Path]:
        return []

    def upload(self, *, channel: str, thread_ref: str, paths: list[Path]) -> int:
        return 0


class OutputDirArtifactSurface:
    """Watch one agent output directory and hand new files to the chat surface."""

    def __init__(self, *, output_dir: Path, messaging: MessagingSurface) -> None:
        self.output_dir = output_dir
        self.messaging = messaging

    def snapshot(self) -> frozenset[Path]:
        return scan_output_dir(self.output_dir)

    def diff(self, before: frozenset[Path], after: frozenset[Path]) -> list[Path]:
        return find_new_artifacts(before, after, root=self.output_dir)

    def upload(self, *, channel: str, thread_ref: str, paths: list[Path]) -> int:
        uploaded = 0
        for path in paths:
            try:
                self.messaging.upload_file(channel=channel, thread_ref=thread_ref, path=path)
            except (OSError, DeliveryError) as exc:
                logger.warning("Failed to upload artifact %s: %s", path, exc)
                continue
            uploaded += 1
        return uploaded


def scan_output_dir(directory: Path) -> frozenset[Path]:
    """Recursively list files; a missing directory yields an empty snapshot."""

    if not directory.is_dir():
        return frozenset()
    return frozenset(path for path in directory.rglob("*") if path.is_file())


def find_new_artifacts(
    before: frozenset[Path],
    after: frozenset[Path],
    *,
    root: Path | None = None,
) -> list[Path]:
    """Files present only in ``after`` with an allowed extension, outside scratch dirs."""

    artifacts: list[Path] = []
    for path in sorted(after - before):
        if path.suffix.lower() not in ALLOWED_EXTENSIONS:
            continue
        parts = path.relative_to(root).parts[:-1] if root is not None else path.parts[:-1]
        if EXCLUDED_DIR_NAMES.intersection(parts):
            continue
        artifacts.append(path)
    return artifacts
