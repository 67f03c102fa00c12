"""create jobs and queue_entries tables

Revision ID: 3b7e1c9a2f04
Revises:
Create Date: 2026-10-17 09:12:31.408215

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e1c9a2f04"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Job records (record store)
    op.create_table(
        "jobs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "name", sa.Text, nullable=False, comment="Processor name handling the job"
        ),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            comment="Job-specific parameters",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="active",
            comment="Job status: active|completed|failed",
        ),
        sa.Column(
            "result",
            sa.Text,
            nullable=True,
            comment="Success summary or failure message",
        ),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("failed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('active', 'completed', 'failed')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint(
            "completed_at IS NULL OR failed_at IS NULL",
            name="jobs_single_terminal_timestamp_check",
        ),
    )
    op.create_index("ix_jobs_created_at", "jobs", ["created_at"])
    op.create_index("ix_jobs_status_created_at", "jobs", ["status", "created_at"])

    # Work queue entries keyed by job id
    op.create_table(
        "queue_entries",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True, comment="Job id"),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("payload", sa.JSON, nullable=False),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="queued",
            comment="Entry status: queued|running|done|dead",
        ),
        sa.Column(
            "attempts",
            sa.SmallInteger,
            nullable=False,
            server_default="0",
            comment="Deliveries made",
        ),
        sa.Column("max_attempts", sa.SmallInteger, nullable=False, server_default="3"),
        sa.Column("backoff_base_ms", sa.Integer, nullable=False, server_default="1000"),
        sa.Column("max_backoff_s", sa.Integer, nullable=False, server_default="300"),
        sa.Column(
            "run_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time to deliver",
        ),
        # Lease fields
        sa.Column("locked_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("locked_by", sa.Text, nullable=True),
        sa.Column("heartbeat_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("progress", sa.JSON, nullable=True, comment="Last reported progress"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "status IN ('queued', 'running', 'done', 'dead')",
            name="queue_entries_status_check",
        ),
    )
    # Claim query: due entries in run_at order
    op.create_index(
        "ix_queue_entries_status_run_at", "queue_entries", ["status", "run_at"]
    )
    # Stalled lease recovery
    op.create_index("ix_queue_entries_heartbeat_at", "queue_entries", ["heartbeat_at"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_queue_entries_heartbeat_at", table_name="queue_entries")
    op.drop_index("ix_queue_entries_status_run_at", table_name="queue_entries")
    op.drop_table("queue_entries")

    op.drop_index("ix_jobs_status_created_at", table_name="jobs")
    op.drop_index("ix_jobs_created_at", table_name="jobs")
    op.drop_table("jobs")
