"""Persistent task store for the inbox queue."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from sqlalchemy import func, or_
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from inbox_agent.inbox.models import (
    REJECTABLE_STATUSES,
    InboxTaskCreate,
    InboxTaskDetails,
    InboxTaskEventView,
    InboxTaskStatus,
    InboxTaskView,
    TaskNotFoundError,
    ensure_transition,
)
from inbox_agent.storage.alembic_runner import upgrade_head
from inbox_agent.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from inbox_agent.storage.sqlmodel_models import InboxTaskEventRow, InboxTaskRow

logger = logging.getLogger(__name__)

CLARIFICATION_SEPARATOR = "\n\nClarification: "

_MUTABLE_FIELDS = frozenset(
    {
        "status",
        "execution_prompt",
        "session_id",
        "result",
        "cost_units",
        "duration_ms",
        "error_summary",
        "started_at",
        "completed_at",
    },
)


class InboxTaskRepository:
    """Task store facade backed by SQLModel + SQLite.

    The conditional ``UPDATE ... WHERE status = :expected`` in :meth:`claim` is
    the only exclusivity primitive: whichever caller sees ``rowcount == 1`` owns
    the transition.
    """

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(
            db_path=db_path,
            busy_timeout_ms=sqlite_busy_timeout_ms,
        )

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations up to head."""

        upgrade_head(self.db_path)

    def insert(self, payload: InboxTaskCreate) -> InboxTaskView:
        """Create a task in its initial status (pending or queued)."""

        if payload.status not in {InboxTaskStatus.PENDING, InboxTaskStatus.QUEUED}:
            raise ValueError(f"Tasks must start pending or queued, got {payload.status.value}")

        now = utc_now()
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = InboxTaskRow(
                task_id=task_id,
                intent=payload.intent,
                autonomy_level=payload.autonomy_level,
                summary=payload.summary,
                channel=payload.channel,
                message_ref=payload.message_ref,
                thread_ref=payload.thread_ref,
                status=payload.status.value,
                original_message=payload.original_message,
                execution_prompt=payload.execution_prompt,
                created_at=to_db_datetime(payload.created_at or now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            # events reference the task row, which must be written first
            session.flush()
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="created",
                status_from=None,
                status_to=payload.status,
                details={"intent": payload.intent, "autonomy_level": payload.autonomy_level},
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def get(self, task_id: str) -> InboxTaskView | None:
        with Session(self.engine) as session:
            row = session.get(InboxTaskRow, task_id)
            return _to_task_view(row) if row is not None else None

    def oldest_by_status(self, status: InboxTaskStatus) -> InboxTaskView | None:
        """Return the oldest task in ``status`` (FIFO by creation time)."""

        with Session(self.engine) as session:
            row = session.exec(
                select(InboxTaskRow)
                .where(InboxTaskRow.status == status.value)
                .order_by(col(InboxTaskRow.created_at).asc(), col(InboxTaskRow.task_id).asc())
                .limit(1),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def all_by_status(self, status: InboxTaskStatus) -> list[InboxTaskView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(InboxTaskRow)
                .where(InboxTaskRow.status == status.value)
                .order_by(col(InboxTaskRow.created_at).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def claim(
        self,
        task_id: str,
        *,
        expected: InboxTaskStatus,
        new: InboxTaskStatus,
        fields: Mapping[str, object] | None = None,
        event_type: str = "claimed",
    ) -> bool:
        """Atomically move a task from ``expected`` to ``new``.

        Returns False when the row no longer has ``expected`` status.
        """

        ensure_transition(expected, new)
        values = _db_values(fields or {})
        values["status"] = new.value
        values["updated_at"] = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(InboxTaskRow)
                .where(
                    col(InboxTaskRow.task_id) == task_id,
                    col(InboxTaskRow.status) == expected.value,
                )
                .values(**values),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=event_type,
                status_from=expected,
                status_to=new,
                details=_event_details(fields or {}),
            )
            session.commit()
            return True

    def update(
        self,
        task_id: str,
        fields: Mapping[str, object],
        *,
        event_type: str = "updated",
    ) -> InboxTaskView:
        """Unconditional field update for the sole owner of a task.

        A status change is still checked against the lifecycle.
        """

        values = _db_values(fields)
        with Session(self.engine) as session:
            row = session.get(InboxTaskRow, task_id)
            if row is None:
                raise TaskNotFoundError(f"Task not found: {task_id}")
            previous = InboxTaskStatus(row.status)
            target = InboxTaskStatus(values["status"]) if "status" in values else previous
            if target != previous:
                ensure_transition(previous, target)
            for name, value in values.items():
                setattr(row, name, value)
            row.updated_at = to_db_datetime(utc_now())
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=event_type,
                status_from=previous,
                status_to=target,
                details=_event_details(fields),
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def append_clarification(
        self,
        task_id: str,
        reply_text: str,
        *,
        separator: str = CLARIFICATION_SEPARATOR,
    ) -> InboxTaskView | None:
        """Append a clarification answer and move ``pending -> queued``.

        Returns None when the task is no longer pending, so a second reply does
        not append twice.
        """

        with Session(self.engine) as session:
            row = session.exec(
                select(InboxTaskRow).where(
                    InboxTaskRow.task_id == task_id,
                    InboxTaskRow.status == InboxTaskStatus.PENDING.value,
                ),
            ).one_or_none()
            if row is None:
                return None
            updated_prompt = f"{row.execution_prompt}{separator}{reply_text}"
            result = session.exec(
                sa_update(InboxTaskRow)
                .where(
                    col(InboxTaskRow.task_id) == task_id,
                    col(InboxTaskRow.status) == InboxTaskStatus.PENDING.value,
                    col(InboxTaskRow.execution_prompt) == row.execution_prompt,
                )
                .values(
                    status=InboxTaskStatus.QUEUED.value,
                    execution_prompt=updated_prompt,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="clarified",
                status_from=InboxTaskStatus.PENDING,
                status_to=InboxTaskStatus.QUEUED,
                details={"reply_chars": len(reply_text)},
            )
            session.commit()
            refreshed = session.get(InboxTaskRow, task_id, populate_existing=True)
            if refreshed is None:
                raise TaskNotFoundError(f"Task not found: {task_id}")
            return _to_task_view(refreshed)

    def reject(self, task_id: str) -> bool:
        """Move a pending/queued/waiting task to ``rejected``; no-op otherwise."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            row = session.get(InboxTaskRow, task_id)
            if row is None:
                return False
            previous = InboxTaskStatus(row.status)
            if previous not in REJECTABLE_STATUSES:
                return False
            result = session.exec(
                sa_update(InboxTaskRow)
                .where(
                    col(InboxTaskRow.task_id) == task_id,
                    col(InboxTaskRow.status) == previous.value,
                )
                .values(
                    status=InboxTaskStatus.REJECTED.value,
                    completed_at=now,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="rejected",
                status_from=previous,
                status_to=InboxTaskStatus.REJECTED,
                details={},
            )
            session.commit()
            return True

    def find_thread_task(
        self,
        *,
        channel: str,
        ref: str,
        statuses: Iterable[InboxTaskStatus],
    ) -> InboxTaskView | None:
        """Newest task in ``statuses`` whose thread or inbound message is ``ref``."""

        with Session(self.engine) as session:
            row = session.exec(
                select(InboxTaskRow)
                .where(
                    InboxTaskRow.channel == channel,
                    or_(
                        col(InboxTaskRow.thread_ref) == ref,
                        col(InboxTaskRow.message_ref) == ref,
                    ),
                    col(InboxTaskRow.status).in_([status.value for status in statuses]),
                )
                .order_by(col(InboxTaskRow.created_at).desc())
                .limit(1),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def find_by_message(
        self,
        *,
        channel: str,
        message_ref: str,
        statuses: Iterable[InboxTaskStatus],
    ) -> InboxTaskView | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(InboxTaskRow)
                .where(
                    InboxTaskRow.channel == channel,
                    InboxTaskRow.message_ref == message_ref,
                    col(InboxTaskRow.status).in_([status.value for status in statuses]),
                )
                .order_by(col(InboxTaskRow.created_at).desc())
                .limit(1),
            ).one_or_none()
            return _to_task_view(row) if row is not None else None

    def list_tasks(
        self,
        *,
        status: InboxTaskStatus | None = None,
        limit: int = 50,
    ) -> list[InboxTaskView]:
        """List recent tasks, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = (
                select(InboxTaskRow).order_by(col(InboxTaskRow.created_at).desc()).limit(limit)
            )
            if status is not None:
                statement = statement.where(InboxTaskRow.status == status.value)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def count_by_status(self) -> dict[InboxTaskStatus, int]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(InboxTaskRow.status, func.count()).group_by(InboxTaskRow.status),
            ).all()
        counts = dict.fromkeys(InboxTaskStatus, 0)
        for status, count in rows:
            counts[InboxTaskStatus(status)] = int(count)
        return counts

    def get_task_details(self, *, task_id: str) -> InboxTaskDetails | None:
        """Return task details with event stream."""

        with Session(self.engine) as session:
            task = session.get(InboxTaskRow, task_id)
            if task is None:
                return None
            event_rows = session.exec(
                select(InboxTaskEventRow)
                .where(InboxTaskEventRow.task_id == task_id)
                .order_by(col(InboxTaskEventRow.created_at).asc(), col(InboxTaskEventRow.id).asc()),
            ).all()
            view = _to_task_view(task)

        events: list[InboxTaskEventView] = []
        for row in event_rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                InboxTaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=(
                        InboxTaskStatus(row.status_from) if row.status_from is not None else None
                    ),
                    status_to=InboxTaskStatus(row.status_to) if row.status_to is not None else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return InboxTaskDetails(task=view, events=events)

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: InboxTaskStatus | None,
        status_to: InboxTaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            InboxTaskEventRow(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def _db_values(fields: Mapping[str, object]) -> dict[str, object]:
    unknown = set(fields) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported task fields: {', '.join(sorted(unknown))}")
    if "session_id" in fields and fields["session_id"] is None:
        raise ValueError("session_id cannot be cleared once set.")

    values: dict[str, object] = {}
    for name, value in fields.items():
        if isinstance(value, InboxTaskStatus):
            values[name] = value.value
        elif isinstance(value, datetime):
            values[name] = to_db_datetime(value)
        else:
            values[name] = value
    return values


def _event_details(fields: Mapping[str, object]) -> dict[str, object]:
    details: dict[str, object] = {}
    for name, value in fields.items():
        if name in {"result", "execution_prompt", "status"}:
            continue
        if isinstance(value, datetime):
            details[name] = to_utc_aware_datetime(value).isoformat()
        else:
            details[name] = value
    return details


def _to_task_view(row: InboxTaskRow) -> InboxTaskView:
    return InboxTaskView(
        task_id=row.task_id,
        intent=row.intent,
        autonomy_level=row.autonomy_level,
        summary=row.summary,
        channel=row.channel,
        message_ref=row.message_ref,
        thread_ref=row.thread_ref,
        status=InboxTaskStatus(row.status),
        original_message=row.original_message,
        execution_prompt=row.execution_prompt,
        session_id=row.session_id,
        result=row.result,
        cost_units=row.cost_units,
        duration_ms=row.duration_ms,
        error_summary=row.error_summary,
        created_at=to_utc_aware_datetime(row.created_at),
        started_at=to_utc_aware_datetime(row.started_at) if row.started_at is not None else None,
        completed_at=(
            to_utc_aware_datetime(row.completed_at) if row.completed_at is not None else None
        ),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
