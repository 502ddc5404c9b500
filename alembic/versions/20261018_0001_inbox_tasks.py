"""Create inbox task queue and task event tables."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "inbox_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("intent", sa.String(), nullable=False),
        sa.Column("autonomy_level", sa.String(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("channel", sa.String(), nullable=False),
        sa.Column("message_ref", sa.String(), nullable=False),
        sa.Column("thread_ref", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("original_message", sa.Text(), nullable=False),
        sa.Column("execution_prompt", sa.Text(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("result", sa.Text(), nullable=True),
        sa.Column("cost_units", sa.Float(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("error_summary", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_inbox_tasks_status", "inbox_tasks", ["status"], unique=False)
    op.create_index(
        "idx_inbox_tasks_queue",
        "inbox_tasks",
        ["status", "created_at"],
        unique=False,
    )
    op.create_index(
        "idx_inbox_tasks_thread",
        "inbox_tasks",
        ["channel", "thread_ref"],
        unique=False,
    )
    op.create_index(
        "idx_inbox_tasks_message",
        "inbox_tasks",
        ["channel", "message_ref"],
        unique=False,
    )

    op.create_table(
        "inbox_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["inbox_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_inbox_task_events_task_time",
        "inbox_task_events",
        ["task_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_inbox_task_events_task_time", table_name="inbox_task_events")
    op.drop_table("inbox_task_events")
    op.drop_index("idx_inbox_tasks_message", table_name="inbox_tasks")
    op.drop_index("idx_inbox_tasks_thread", table_name="inbox_tasks")
    op.drop_index("idx_inbox_tasks_queue", table_name="inbox_tasks")
    op.drop_index("ix_inbox_tasks_status", table_name="inbox_tasks")
    op.drop_table("inbox_tasks")
