"""
Job lifecycle models: the job record and the work queue entry.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, TIMESTAMP, CheckConstraint, Index, SmallInteger, Text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import Mapped, mapped_column

from api.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# Statuses a job may be in for each worker-written outcome. A completed job is
# never rewritten; a failed job may be overwritten by a queue redelivery.
TERMINAL_WRITE_SOURCES: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.COMPLETED: frozenset({JobStatus.ACTIVE, JobStatus.FAILED}),
    JobStatus.FAILED: frozenset({JobStatus.ACTIVE, JobStatus.FAILED}),
}

# Only an explicit retry re-enters active, and only from failed.
REACTIVATE_SOURCES: frozenset[JobStatus] = frozenset({JobStatus.FAILED})


def utcnow() -> datetime:
    return datetime.now(UTC)


class Job(Base):
    """
    Durable record of a unit of asynchronous work.

    The coordinator creates and deletes rows; the worker pool writes the
    outcome fields (status, result, completed_at / failed_at).
    """

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Processor name handling the job"
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
        comment="Job-specific parameters",
    )
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.ACTIVE.value,
        comment="Job status: active|completed|failed",
    )
    result: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Success summary or failure message"
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    failed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'completed', 'failed')",
            name="jobs_status_check",
        ),
        CheckConstraint(
            "completed_at IS NULL OR failed_at IS NULL",
            name="jobs_single_terminal_timestamp_check",
        ),
        Index("ix_jobs_created_at", "created_at"),
        Index("ix_jobs_status_created_at", "status", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Job {self.id} {self.name} {self.status}>"


class QueueEntryStatus(str, Enum):
    """Delivery state of a queue entry."""

    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    DEAD = "dead"


class QueueEntry(Base):
    """
    Work queue entry keyed by the id of the job it dispatches.

    Owned by the Postgres queue adapter: leasing, heartbeats, redelivery
    backoff and dead-lettering all happen on this table.
    """

    __tablename__ = "queue_entries"

    id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), primary_key=True, comment="Job id"
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=QueueEntryStatus.QUEUED.value,
        comment="Entry status: queued|running|done|dead",
    )
    attempts: Mapped[int] = mapped_column(
        SmallInteger, nullable=False, default=0, comment="Deliveries made"
    )
    max_attempts: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=3)
    backoff_base_ms: Mapped[int] = mapped_column(nullable=False, default=1000)
    max_backoff_s: Mapped[int] = mapped_column(nullable=False, default=300)
    run_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        comment="Earliest time to deliver",
    )

    # Lease
    locked_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    locked_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    heartbeat_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    progress: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Last reported progress"
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'running', 'done', 'dead')",
            name="queue_entries_status_check",
        ),
        Index("ix_queue_entries_status_run_at", "status", "run_at"),
        Index("ix_queue_entries_heartbeat_at", "heartbeat_at"),
    )
