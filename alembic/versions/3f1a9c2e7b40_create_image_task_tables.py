"""create_image_task_tables

Revision ID: 3f1a9c2e7b40
Revises:
Create Date: 2026-10-18 10:12:41.318204

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f1a9c2e7b40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

task_status = sa.Enum("PENDING", "PROCESSING", "COMPLETED", "FAILED", name="taskstatus")
attempt_status = sa.Enum("RUNNING", "SUCCEEDED", "FAILED", name="attemptstatus")


def upgrade() -> None:
    """Create image task, input, output and generation attempt tables."""
    op.create_table(
        "image_tasks",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.String(length=255), nullable=True),
        sa.Column("prompt", sa.String(length=2000), nullable=False),
        sa.Column("model", sa.String(length=50), nullable=False),
        sa.Column("aspect_ratio", sa.String(length=10), nullable=False),
        sa.Column("num_outputs", sa.Integer(), nullable=False),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("model_id", sa.String(length=255), nullable=False),
        sa.Column("status", task_status, nullable=False),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("processing_time_ms", sa.Integer(), nullable=True),
        sa.Column("credits_used", sa.Float(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_image_tasks_user_id", "image_tasks", ["user_id"])
    op.create_index("ix_image_tasks_status", "image_tasks", ["status"])
    op.create_index("ix_image_tasks_created_at", "image_tasks", ["created_at"])

    op.create_table(
        "image_task_inputs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("storage_key", sa.String(length=512), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("file_type", sa.String(length=100), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["image_tasks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", "sort_order"),
    )
    op.create_index("ix_image_task_inputs_task_id", "image_task_inputs", ["task_id"])

    op.create_table(
        "image_task_outputs",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("storage_key", sa.String(length=512), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["image_tasks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", "sort_order"),
    )
    op.create_index("ix_image_task_outputs_task_id", "image_task_outputs", ["task_id"])

    op.create_table(
        "generation_attempts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("task_id", sa.Uuid(), nullable=False),
        sa.Column("attempt_index", sa.Integer(), nullable=False),
        sa.Column("service", sa.String(length=50), nullable=False),
        sa.Column("status", attempt_status, nullable=False),
        sa.Column("external_job_id", sa.String(length=255), nullable=True),
        sa.Column("predict_time", sa.Float(), nullable=True),
        sa.Column("error_data", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["task_id"], ["image_tasks.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("task_id", "attempt_index"),
    )
    op.create_index("ix_generation_attempts_task_id", "generation_attempts", ["task_id"])


def downgrade() -> None:
    """Drop image task tables and their enum types."""
    op.drop_index("ix_generation_attempts_task_id", table_name="generation_attempts")
    op.drop_table("generation_attempts")
    op.drop_index("ix_image_task_outputs_task_id", table_name="image_task_outputs")
    op.drop_table("image_task_outputs")
    op.drop_index("ix_image_task_inputs_task_id", table_name="image_task_inputs")
    op.drop_table("image_task_inputs")
    op.drop_index("ix_image_tasks_created_at", table_name="image_tasks")
    op.drop_index("ix_image_tasks_status", table_name="image_tasks")
    op.drop_index("ix_image_tasks_user_id", table_name="image_tasks")
    op.drop_table("image_tasks")

    bind = op.get_bind()
    attempt_status.drop(bind, checkfirst=True)
    task_status.drop(bind, checkfirst=True)
