"""Apply the inbox schema migrations programmatically."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from alembic import command
from alembic.config import Config

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[3]
_UPGRADE_LOCK = threading.Lock()


def upgrade_head(db_path: Path) -> None:
    """Bring the inbox task store at ``db_path`` up to the latest revision.

    Runtimes built in the same process share the lock, so two of them never
    race on the ``alembic_version`` row.
    """

    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    with _UPGRADE_LOCK:
        command.upgrade(config, "head")
    logger.debug("Inbox schema at head for %s", db_path)
