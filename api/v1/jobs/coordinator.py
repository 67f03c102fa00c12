"""
Job lifecycle coordinator.

Creates, retries and deletes jobs across the record store and the work queue.
The two have no shared transaction, so a create whose enqueue is not accepted
within the policy deadline is compensated by deleting the job record again.
"""

import asyncio
from typing import Any
from uuid import UUID

from api.config.logging import get_logger
from api.v1.core.exceptions import (
    JobNotFoundError,
    QueueUnavailableError,
    StateConflictError,
)
from api.v1.jobs.models import Job, JobStatus
from api.v1.jobs.policies import EnqueuePolicy
from api.v1.jobs.queue import EnqueueOptions, WorkQueue
from api.v1.jobs.store import JobStore

logger = get_logger(__name__)


class JobCoordinator:
    """Orchestrates job lifecycle operations over explicit store and queue handles."""

    def __init__(
        self,
        store: JobStore,
        queue: WorkQueue,
        policy: EnqueuePolicy | None = None,
        options: EnqueueOptions | None = None,
    ):
        self.store = store
        self.queue = queue
        self.policy = policy or EnqueuePolicy()
        self.options = options or EnqueueOptions()

    async def create(
        self, name: str, payload: dict[str, Any], deadline_s: float | None = None
    ) -> Job:
        """
        Record a new active job and enqueue it.

        Args:
            name: Registered processor name (validated by the caller)
            payload: Job parameters (validated by the caller)
            deadline_s: Overrides the policy deadline for the enqueue step

        Returns:
            The created job

        Raises:
            QueueUnavailableError: The queue did not accept the entry; the job
                record has been removed again
        """
        job = await self.store.create(name, payload)
        logger.info("Job record created", job_id=str(job.id), job_name=name)

        try:
            await self._dispatch(job, deadline_s)
        except QueueUnavailableError as exc:
            exc.details["compensated"] = await self._compensate(job)
            raise
        except asyncio.CancelledError:
            # The caller went away mid-enqueue; the record must not outlive it
            await asyncio.shield(self._compensate(job))
            raise

        logger.info("Job created", job_id=str(job.id), job_name=name)
        return job

    async def retry(self, job_id: UUID, deadline_s: float | None = None) -> Job:
        """
        Re-enqueue a failed job and move it back to active.

        If the new delivery completes the job before the status transition
        lands, the completed job is returned.
        """
        job = await self.get(job_id)
        if job.status != JobStatus.FAILED.value:
            raise StateConflictError(job_id, job.status, JobStatus.FAILED.value)

        await self._dispatch(job, deadline_s)

        reactivated = await self.store.reactivate(job_id)
        if reactivated is None:
            current = await self.get(job_id)
            if current.status == JobStatus.COMPLETED.value:
                # Only this retry's own delivery can complete a failed job
                logger.info(
                    "Job retried and already completed",
                    job_id=str(job_id),
                    job_name=current.name,
                )
                return current
            raise StateConflictError(job_id, current.status, JobStatus.FAILED.value)

        logger.info(
            "Job retried",
            job_id=str(job_id),
            job_name=reactivated.name,
            previous_result=job.result,
        )
        return reactivated

    async def delete(self, job_id: UUID) -> Job:
        """Remove a job and its pending queue entry; returns the removed job."""
        job = await self.get(job_id)

        try:
            removed = await self.queue.remove(job_id)
            if not removed:
                logger.debug("No pending queue entry to remove", job_id=str(job_id))
        except Exception as exc:
            logger.warning(
                "Queue entry removal failed, deleting job record anyway",
                job_id=str(job_id),
                error=str(exc),
            )

        deleted = await self.store.delete(job_id)
        if deleted is None:
            raise JobNotFoundError(job_id)

        logger.info("Job deleted", job_id=str(job_id), job_name=deleted.name)
        return deleted

    async def get(self, job_id: UUID) -> Job:
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def list(self, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        return await self.store.list(status=status, limit=limit)

    async def _dispatch(self, job: Job, deadline_s: float | None) -> None:
        """Enqueue ``job`` under the policy deadline, or raise QueueUnavailableError."""
        timeout_s = deadline_s if deadline_s is not None else self.policy.timeout_s
        try:
            async with asyncio.timeout(timeout_s):
                await self._enqueue_with_retries(job)
        except TimeoutError as exc:
            logger.error(
                "Enqueue deadline exceeded",
                job_id=str(job.id),
                timeout_s=timeout_s,
            )
            raise QueueUnavailableError(
                "Work queue did not accept the job before the deadline",
                details={"job_id": str(job.id), "timeout_s": timeout_s},
            ) from exc

    async def _enqueue_with_retries(self, job: Job) -> None:
        last_error: Exception | None = None

        for attempt in range(1, self.policy.attempts + 1):
            try:
                await self.queue.enqueue(job.id, job.name, dict(job.payload), self.options)
                return
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "Enqueue attempt failed",
                    job_id=str(job.id),
                    attempt=attempt,
                    max_attempts=self.policy.attempts,
                    error=str(exc),
                )
                if attempt < self.policy.attempts:
                    await asyncio.sleep(self.policy.backoff(attempt))

        raise QueueUnavailableError(
            details={
                "job_id": str(job.id),
                "attempts": self.policy.attempts,
                "error": str(last_error),
            }
        ) from last_error

    async def _compensate(self, job: Job) -> bool:
        """Undo a create whose enqueue failed. Returns True if the record is gone."""
        try:
            # An enqueue cut off by the deadline may still have been accepted
            await self.queue.remove(job.id)
        except Exception as exc:
            logger.warning(
                "Queue entry removal failed during compensation",
                job_id=str(job.id),
                error=str(exc),
            )

        try:
            await self.store.delete(job.id)
        except Exception:
            logger.exception(
                "Compensating delete failed, job record may be orphaned",
                job_id=str(job.id),
            )
            return False

        logger.warning("Job creation compensated", job_id=str(job.id), job_name=job.name)
        return True
