"""In-memory store and queue used by the coordinator, worker and HTTP tests.

Both follow the same transition rules as the SQL adapters and accept
injected failures per method.
"""

import asyncio
from collections import defaultdict
from datetime import timedelta
from typing import Any
from uuid import UUID, uuid4

from api.v1.jobs.models import (
    REACTIVATE_SOURCES,
    TERMINAL_WRITE_SOURCES,
    Job,
    JobStatus,
    QueueEntryStatus,
    utcnow,
)
from api.v1.jobs.queue import Delivery, EnqueueOptions


class FailureInjector:
    """Queue up exceptions to raise from the next calls of a method."""

    def __init__(self):
        self.failures: dict[str, list[BaseException]] = defaultdict(list)
        self.calls: dict[str, int] = defaultdict(int)

    def fail_next(self, method: str, error: BaseException, times: int = 1) -> None:
        self.failures[method].extend([error] * times)

    def _check(self, method: str) -> None:
        self.calls[method] += 1
        if self.failures[method]:
            raise self.failures[method].pop(0)


def copy_job(job: Job) -> Job:
    return Job(
        id=job.id,
        name=job.name,
        payload=dict(job.payload),
        status=job.status,
        result=job.result,
        created_at=job.created_at,
        completed_at=job.completed_at,
        failed_at=job.failed_at,
    )


class InMemoryJobStore(FailureInjector):
    def __init__(self):
        super().__init__()
        self.jobs: dict[UUID, Job] = {}
        self._tick = 0

    async def create(self, name: str, payload: dict[str, Any]) -> Job:
        self._check("create")
        # Strictly increasing timestamps keep newest-first ordering stable
        self._tick += 1
        job = Job(
            id=uuid4(),
            name=name,
            payload=dict(payload),
            status=JobStatus.ACTIVE.value,
            result=None,
            created_at=utcnow() + timedelta(microseconds=self._tick),
            completed_at=None,
            failed_at=None,
        )
        self.jobs[job.id] = job
        return copy_job(job)

    async def get(self, job_id: UUID) -> Job | None:
        self._check("get")
        job = self.jobs.get(job_id)
        return copy_job(job) if job else None

    async def list(self, status: JobStatus | None = None, limit: int = 50) -> list[Job]:
        self._check("list")
        jobs = [
            job
            for job in self.jobs.values()
            if status is None or job.status == JobStatus(status).value
        ]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return [copy_job(job) for job in jobs[:limit]]

    async def delete(self, job_id: UUID) -> Job | None:
        self._check("delete")
        job = self.jobs.pop(job_id, None)
        return copy_job(job) if job else None

    async def mark_completed(self, job_id: UUID, result: str) -> Job | None:
        self._check("mark_completed")
        job = self.jobs.get(job_id)
        if job is None:
            return None
        status = JobStatus(job.status)
        if status == JobStatus.COMPLETED and job.result == result:
            return copy_job(job)
        if status not in TERMINAL_WRITE_SOURCES[JobStatus.COMPLETED]:
            return None
        job.status = JobStatus.COMPLETED.value
        job.result = result
        job.completed_at = utcnow()
        job.failed_at = None
        return copy_job(job)

    async def mark_failed(self, job_id: UUID, error: str) -> Job | None:
        self._check("mark_failed")
        job = self.jobs.get(job_id)
        if job is None or JobStatus(job.status) not in TERMINAL_WRITE_SOURCES[JobStatus.FAILED]:
            return None
        if job.status != JobStatus.FAILED.value or job.failed_at is None:
            job.failed_at = utcnow()
        job.status = JobStatus.FAILED.value
        job.result = error
        job.completed_at = None
        return copy_job(job)

    async def reactivate(self, job_id: UUID) -> Job | None:
        self._check("reactivate")
        job = self.jobs.get(job_id)
        if job is None or JobStatus(job.status) not in REACTIVATE_SOURCES:
            return None
        job.status = JobStatus.ACTIVE.value
        job.result = None
        job.failed_at = None
        job.completed_at = None
        return copy_job(job)

    async def ping(self) -> None:
        self._check("ping")


class InMemoryWorkQueue(FailureInjector):
    def __init__(self):
        super().__init__()
        self.entries: dict[UUID, dict[str, Any]] = {}
        self.enqueue_delay_s = 0.0
        self.removed: list[UUID] = []
        self.progress: dict[UUID, list[dict[str, Any]]] = defaultdict(list)
        self.consuming = False

    async def enqueue(
        self,
        job_id: UUID,
        name: str,
        payload: dict[str, Any],
        options: EnqueueOptions,
    ) -> None:
        self._check("enqueue")
        if self.enqueue_delay_s:
            await asyncio.sleep(self.enqueue_delay_s)

        existing = self.entries.get(job_id)
        if existing and existing["status"] in (
            QueueEntryStatus.QUEUED.value,
            QueueEntryStatus.RUNNING.value,
        ):
            return
        self.entries[job_id] = {
            "name": name,
            "payload": dict(payload),
            "status": QueueEntryStatus.QUEUED.value,
            "attempts": 0,
            "max_attempts": options.max_attempts,
            "last_error": None,
        }

    async def remove(self, job_id: UUID) -> bool:
        self._check("remove")
        entry = self.entries.get(job_id)
        if entry is None or entry["status"] == QueueEntryStatus.RUNNING.value:
            return False
        del self.entries[job_id]
        self.removed.append(job_id)
        return True

    async def claim(self, consumer_id: str) -> Delivery | None:
        self._check("claim")
        for job_id, entry in self.entries.items():
            if entry["status"] != QueueEntryStatus.QUEUED.value:
                continue
            entry["status"] = QueueEntryStatus.RUNNING.value
            entry["attempts"] += 1
            entry["locked_by"] = consumer_id
            return Delivery(
                job_id=job_id,
                name=entry["name"],
                payload=dict(entry["payload"]),
                attempt=entry["attempts"],
                max_attempts=entry["max_attempts"],
                consumer_id=consumer_id,
            )
        return None

    async def ack(self, delivery: Delivery, result: str | None = None) -> None:
        self._check("ack")
        self._settle(delivery, QueueEntryStatus.DONE.value)

    async def fail(self, delivery: Delivery, error: str, retryable: bool = True) -> bool:
        self._check("fail")
        redeliver = retryable and not delivery.is_last_attempt
        status = QueueEntryStatus.QUEUED if redeliver else QueueEntryStatus.DEAD
        entry = self._settle(delivery, status.value)
        if entry is not None:
            entry["last_error"] = error
        return redeliver and entry is not None

    async def release(self, delivery: Delivery) -> None:
        self._check("release")
        entry = self._settle(delivery, QueueEntryStatus.QUEUED.value)
        if entry is not None:
            entry["attempts"] -= 1

    async def report_progress(self, delivery: Delivery, progress: dict[str, Any]) -> None:
        self._check("report_progress")
        self.progress[delivery.job_id].append(progress)

    async def depth(self) -> int:
        self._check("depth")
        return sum(
            1
            for entry in self.entries.values()
            if entry["status"]
            in (QueueEntryStatus.QUEUED.value, QueueEntryStatus.RUNNING.value)
        )

    async def start_consuming(self) -> None:
        self.consuming = True

    async def stop_consuming(self) -> None:
        self.consuming = False

    def status_of(self, job_id: UUID) -> str | None:
        entry = self.entries.get(job_id)
        return entry["status"] if entry else None

    def _settle(self, delivery: Delivery, status: str) -> dict[str, Any] | None:
        entry = self.entries.get(delivery.job_id)
        if (
            entry is None
            or entry["status"] != QueueEntryStatus.RUNNING.value
            or entry.get("locked_by") != delivery.consumer_id
        ):
            return None
        entry["status"] = status
        entry["locked_by"] = None
        return entry


class RecordingProcessor:
    """Processor that records its calls and returns or raises as configured."""

    payload_model = None

    def __init__(self, result: str = "done", error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[tuple[dict[str, Any], int]] = []

    async def process(self, payload: dict[str, Any], ctx: Any) -> str:
        self.calls.append((payload, ctx.attempt))
        await ctx.report_progress({"stage": "running"})
        if self.error is not None:
            raise self.error
        return self.result
