"""
Record store for job metadata and status.

Every status transition is a single conditional UPDATE so concurrent
coordinators and workers cannot interleave a read-modify-write.
"""

from typing import Any, Protocol
from uuid import UUID, uuid4

from sqlalchemy import (
    ColumnElement,
    case,
    delete,
    desc,
    func,
    or_,
    select,
    text,
    update,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.config.logging import get_logger
from api.v1.jobs.models import (
    REACTIVATE_SOURCES,
    TERMINAL_WRITE_SOURCES,
    Job,
    JobStatus,
    utcnow,
)

logger = get_logger(__name__)


class JobStore(Protocol):
    """Create/read/update/delete of job records keyed by id."""

    async def create(self, name: str, payload: dict[str, Any]) -> Job: ...

    async def get(self, job_id: UUID) -> Job | None: ...

    async def list(
        self, status: JobStatus | None = None, limit: int = 50
    ) -> list[Job]: ...

    async def delete(self, job_id: UUID) -> Job | None: ...

    async def mark_completed(self, job_id: UUID, result: str) -> Job | None: ...

    async def mark_failed(self, job_id: UUID, error: str) -> Job | None: ...

    async def reactivate(self, job_id: UUID) -> Job | None: ...

    async def ping(self) -> None: ...


class SqlJobStore:
    """JobStore backed by the ``jobs`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, name: str, payload: dict[str, Any]) -> Job:
        job = Job(
            id=uuid4(),
            name=name,
            payload=payload,
            status=JobStatus.ACTIVE.value,
            created_at=utcnow(),
        )
        async with self.session_factory() as session:
            session.add(job)
            await session.commit()
        return job

    async def get(self, job_id: UUID) -> Job | None:
        async with self.session_factory() as session:
            return await session.get(Job, job_id)

    async def list(self, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        query = select(Job)
        if status is not None:
            query = query.where(Job.status == JobStatus(status).value)
        # Order by creation time (newest first)
        query = query.order_by(desc(Job.created_at), desc(Job.id)).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def delete(self, job_id: UUID) -> Job | None:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(Job)
                .where(Job.id == job_id)
                .returning(Job)
                .execution_options(synchronize_session=False)
            )
            job = result.scalar_one_or_none()
            await session.commit()
            return job

    async def mark_completed(self, job_id: UUID, result: str) -> Job | None:
        """Record a successful outcome.

        Repeating the same outcome is a no-op that keeps ``completed_at``;
        a completed job never takes a different outcome. Returns None when
        the write did not apply.
        """
        now = utcnow()
        return await self._transition(
            job_id,
            or_(
                Job.status.in_(_values(TERMINAL_WRITE_SOURCES[JobStatus.COMPLETED])),
                (Job.status == JobStatus.COMPLETED.value) & (Job.result == result),
            ),
            status=JobStatus.COMPLETED.value,
            result=result,
            completed_at=case(
                (Job.status == JobStatus.COMPLETED.value, Job.completed_at),
                else_=now,
            ),
            failed_at=None,
        )

    async def mark_failed(self, job_id: UUID, error: str) -> Job | None:
        """Record a failed outcome; ``failed_at`` is kept while the job stays failed."""
        now = utcnow()
        return await self._transition(
            job_id,
            Job.status.in_(_values(TERMINAL_WRITE_SOURCES[JobStatus.FAILED])),
            status=JobStatus.FAILED.value,
            result=error,
            failed_at=case(
                (Job.status == JobStatus.FAILED.value, func.coalesce(Job.failed_at, now)),
                else_=now,
            ),
            completed_at=None,
        )

    async def reactivate(self, job_id: UUID) -> Job | None:
        """Move a failed job back to active, clearing its outcome."""
        return await self._transition(
            job_id,
            Job.status.in_(_values(REACTIVATE_SOURCES)),
            status=JobStatus.ACTIVE.value,
            result=None,
            failed_at=None,
            completed_at=None,
        )

    async def ping(self) -> None:
        async with self.session_factory() as session:
            await session.execute(text("SELECT 1"))

    async def _transition(
        self, job_id: UUID, condition: ColumnElement[bool], **values: Any
    ) -> Job | None:
        statement = (
            update(Job)
            .where(Job.id == job_id, condition)
            .values(**values)
            .returning(Job)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session:
            result = await session.execute(statement)
            job = result.scalar_one_or_none()
            await session.commit()

        if job is None:
            logger.debug(
                "Job transition not applied",
                job_id=str(job_id),
                target_status=values["status"],
            )
        return job


def _values(statuses: frozenset[JobStatus]) -> list[str]:
    return sorted(s.value for s in statuses)
