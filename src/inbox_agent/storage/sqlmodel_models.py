"""SQLModel ORM tables for the inbox task store."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class InboxTaskRow(SQLModel, table=True):
    __tablename__ = "inbox_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_inbox_tasks_queue", "status", "created_at"),
        Index("idx_inbox_tasks_thread", "channel", "thread_ref"),
        Index("idx_inbox_tasks_message", "channel", "message_ref"),
    )

    task_id: str = Field(primary_key=True)
    intent: str
    autonomy_level: str
    summary: str = Field(sa_column=Column(Text, nullable=False))
    channel: str
    message_ref: str
    thread_ref: str | None = None
    status: str = Field(index=True)
    original_message: str = Field(sa_column=Column(Text, nullable=False))
    execution_prompt: str = Field(sa_column=Column(Text, nullable=False))
    session_id: str | None = None
    result: str | None = Field(default=None, sa_column=Column(Text))
    cost_units: float | None = None
    duration_ms: int | None = None
    error_summary: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class InboxTaskEventRow(SQLModel, table=True):
    __tablename__ = "inbox_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_inbox_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("inbox_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
