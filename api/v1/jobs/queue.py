"""
Work queue contract and the Postgres-backed queue adapter.

The queue owns delivery: leasing entries to one consumer at a time,
redelivering failed entries with exponential backoff, dead-lettering after
``max_attempts`` and recovering leases whose consumer stopped heartbeating.
"""

import asyncio
import os
import random
import socket
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol
from uuid import UUID

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.config.logging import get_logger
from api.config.settings import Settings
from api.v1.jobs.models import QueueEntry, QueueEntryStatus, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class EnqueueOptions:
    """Delivery policy stored with each queue entry."""

    max_attempts: int = 3
    backoff_base_ms: int = 1000
    max_backoff_s: int = 300

    @classmethod
    def from_settings(cls, settings: Settings) -> "EnqueueOptions":
        return cls(
            max_attempts=settings.job_max_attempts,
            backoff_base_ms=settings.job_backoff_base_ms,
            max_backoff_s=settings.job_max_backoff_s,
        )


@dataclass(frozen=True)
class Delivery:
    """A leased queue entry handed to one consumer."""

    job_id: UUID
    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    attempt: int = 1
    max_attempts: int = 1
    consumer_id: str = ""

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts


class WorkQueue(Protocol):
    """Client contract for the durable, at-least-once work queue."""

    async def enqueue(
        self,
        job_id: UUID,
        name: str,
        payload: dict[str, Any],
        options: EnqueueOptions,
    ) -> None:
        """Accept an entry keyed by ``job_id``; raises if it was not accepted."""
        ...

    async def remove(self, job_id: UUID) -> bool:
        """Remove a pending entry. Returns False when nothing was removed."""
        ...

    async def claim(self, consumer_id: str) -> Delivery | None: ...

    async def ack(self, delivery: Delivery, result: str | None = None) -> None: ...

    async def fail(
        self, delivery: Delivery, error: str, retryable: bool = True
    ) -> bool:
        """Fail a delivery. Returns True when the entry will be redelivered."""
        ...

    async def release(self, delivery: Delivery) -> None:
        """Return a delivery unprocessed, without consuming an attempt."""
        ...

    async def report_progress(
        self, delivery: Delivery, progress: dict[str, Any]
    ) -> None: ...

    async def depth(self) -> int: ...

    async def start_consuming(self) -> None: ...

    async def stop_consuming(self) -> None: ...


def compute_backoff(
    attempt: int, base_ms: int, max_backoff_s: int, jitter: float = 0.25
) -> float:
    """Exponential backoff in seconds with +/- ``jitter`` random variation."""
    base_delay = base_ms / 1000
    delay = min(max_backoff_s, base_delay * (2 ** max(0, attempt - 1)))
    spread = delay * jitter * (2 * random.random() - 1)
    return max(0.0, delay + spread)


def default_consumer_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class PostgresWorkQueue:
    """
    WorkQueue backed by the ``queue_entries`` table.

    Features:
    - SELECT FOR UPDATE SKIP LOCKED for exclusive leasing
    - Heartbeats and visibility timeout for stalled lease recovery
    - Exponential backoff with jitter for redelivery
    - Dead-lettering after max attempts and pruning of finished entries
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.leased: set[UUID] = set()
        self._maintenance: list[asyncio.Task] = []

    async def enqueue(
        self,
        job_id: UUID,
        name: str,
        payload: dict[str, Any],
        options: EnqueueOptions,
    ) -> None:
        now = utcnow()
        values = {
            "id": job_id,
            "name": name,
            "payload": payload,
            "status": QueueEntryStatus.QUEUED.value,
            "attempts": 0,
            "max_attempts": options.max_attempts,
            "backoff_base_ms": options.backoff_base_ms,
            "max_backoff_s": options.max_backoff_s,
            "run_at": now,
            "locked_at": None,
            "locked_by": None,
            "heartbeat_at": None,
            "progress": None,
            "last_error": None,
            "created_at": now,
            "updated_at": now,
        }
        statement = insert(QueueEntry).values(**values)
        # A finished entry for the same id is reset; a pending or running one
        # is left alone, it already satisfies the enqueue.
        statement = statement.on_conflict_do_update(
            index_elements=[QueueEntry.id],
            set_={k: statement.excluded[k] for k in values if k not in ("id", "created_at")},
            where=QueueEntry.status.in_(
                [QueueEntryStatus.DONE.value, QueueEntryStatus.DEAD.value]
            ),
        )

        async with self.session_factory() as session:
            await session.execute(statement)
            await session.commit()

        logger.info("Queue entry accepted", job_id=str(job_id), job_name=name)

    async def remove(self, job_id: UUID) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                delete(QueueEntry).where(
                    QueueEntry.id == job_id,
                    QueueEntry.status != QueueEntryStatus.RUNNING.value,
                )
            )
            await session.commit()
        return result.rowcount > 0

    async def claim(self, consumer_id: str) -> Delivery | None:
        """Lease the next due entry, or return None if nothing is due."""
        now = utcnow()

        async with self.session_factory() as session:
            result = await session.execute(
                select(QueueEntry)
                .where(
                    and_(
                        QueueEntry.status == QueueEntryStatus.QUEUED.value,
                        QueueEntry.run_at <= now,
                    )
                )
                .order_by(QueueEntry.run_at)
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            entry = result.scalar_one_or_none()
            if entry is None:
                return None

            entry.status = QueueEntryStatus.RUNNING.value
            entry.attempts = entry.attempts + 1
            entry.locked_at = now
            entry.locked_by = consumer_id
            entry.heartbeat_at = now
            entry.updated_at = now
            delivery = Delivery(
                job_id=entry.id,
                name=entry.name,
                payload=dict(entry.payload or {}),
                attempt=entry.attempts,
                max_attempts=entry.max_attempts,
                consumer_id=consumer_id,
            )
            await session.commit()

        self.leased.add(delivery.job_id)
        return delivery

    async def ack(self, delivery: Delivery, result: str | None = None) -> None:
        await self._finish(delivery, status=QueueEntryStatus.DONE.value)

    async def fail(self, delivery: Delivery, error: str, retryable: bool = True) -> bool:
        if not retryable or delivery.is_last_attempt:
            await self._finish(
                delivery, status=QueueEntryStatus.DEAD.value, last_error=error
            )
            logger.warning(
                "Queue entry dead-lettered",
                job_id=str(delivery.job_id),
                attempt=delivery.attempt,
                retryable=retryable,
            )
            return False

        async with self.session_factory() as session:
            entry = await session.get(QueueEntry, delivery.job_id)
            base_ms = entry.backoff_base_ms if entry else self.settings.job_backoff_base_ms
            max_backoff_s = entry.max_backoff_s if entry else self.settings.job_max_backoff_s

        delay = compute_backoff(delivery.attempt, base_ms, max_backoff_s)
        run_at = utcnow() + timedelta(seconds=delay)
        updated = await self._finish(
            delivery,
            status=QueueEntryStatus.QUEUED.value,
            last_error=error,
            run_at=run_at,
        )
        if updated:
            logger.info(
                "Queue entry scheduled for redelivery",
                job_id=str(delivery.job_id),
                attempt=delivery.attempt,
                next_run_at=run_at.isoformat(),
            )
        return updated

    async def release(self, delivery: Delivery) -> None:
        await self._finish(
            delivery,
            status=QueueEntryStatus.QUEUED.value,
            attempts=QueueEntry.attempts - 1,
            run_at=utcnow(),
        )

    async def report_progress(self, delivery: Delivery, progress: dict[str, Any]) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(QueueEntry)
                .where(
                    QueueEntry.id == delivery.job_id,
                    QueueEntry.locked_by == delivery.consumer_id,
                )
                .values(progress=progress, heartbeat_at=utcnow())
            )
            await session.commit()

    async def depth(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(QueueEntry.id)).where(
                    QueueEntry.status.in_(
                        [QueueEntryStatus.QUEUED.value, QueueEntryStatus.RUNNING.value]
                    )
                )
            )
            return result.scalar() or 0

    async def start_consuming(self) -> None:
        """Start lease maintenance loops for this process."""
        if self._maintenance:
            return
        self._maintenance = [
            asyncio.create_task(self._heartbeat_loop(), name="queue-heartbeat"),
            asyncio.create_task(self._recovery_loop(), name="queue-recovery"),
        ]

    async def stop_consuming(self) -> None:
        for task in self._maintenance:
            task.cancel()
        await asyncio.gather(*self._maintenance, return_exceptions=True)
        self._maintenance = []

    async def _finish(self, delivery: Delivery, status: str, **values: Any) -> bool:
        """Settle a lease held by ``delivery.consumer_id``."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(QueueEntry)
                .where(
                    QueueEntry.id == delivery.job_id,
                    QueueEntry.status == QueueEntryStatus.RUNNING.value,
                    QueueEntry.locked_by == delivery.consumer_id,
                )
                .values(
                    status=status,
                    locked_at=None,
                    locked_by=None,
                    heartbeat_at=None,
                    updated_at=utcnow(),
                    **values,
                )
            )
            await session.commit()

        self.leased.discard(delivery.job_id)
        if result.rowcount == 0:
            logger.warning(
                "Lease no longer held, settlement skipped",
                job_id=str(delivery.job_id),
                consumer_id=delivery.consumer_id,
                status=status,
            )
            return False
        return True

    async def _heartbeat_loop(self) -> None:
        """Refresh heartbeats for entries leased by this process."""
        interval = self.settings.job_heartbeat_interval_s
        while True:
            try:
                if self.leased:
                    async with self.session_factory() as session:
                        await session.execute(
                            update(QueueEntry)
                            .where(
                                QueueEntry.id.in_(list(self.leased)),
                                QueueEntry.status == QueueEntryStatus.RUNNING.value,
                            )
                            .values(heartbeat_at=utcnow())
                        )
                        await session.commit()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error updating heartbeats")
                await asyncio.sleep(interval * 2)  # Back off on errors

    async def _recovery_loop(self) -> None:
        """Redeliver stalled leases and prune finished entries."""
        interval = max(1, self.settings.job_visibility_timeout_s // 2)
        while True:
            try:
                await self.recover_stalled()
                await self.prune_finished()
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in stalled lease recovery")
                await asyncio.sleep(interval)

    async def recover_stalled(self, now: datetime | None = None) -> int:
        """Return stalled leases to the queue, or dead-letter them when out of attempts."""
        now = now or utcnow()
        timeout_seconds = self.settings.job_visibility_timeout_s
        cutoff = now - timedelta(seconds=timeout_seconds)
        stalled = and_(
            QueueEntry.status == QueueEntryStatus.RUNNING.value,
            QueueEntry.heartbeat_at < cutoff,
        )
        error = f"Lease expired after {timeout_seconds}s without heartbeat"

        async with self.session_factory() as session:
            requeued = await session.execute(
                update(QueueEntry)
                .where(stalled, QueueEntry.attempts < QueueEntry.max_attempts)
                .values(
                    status=QueueEntryStatus.QUEUED.value,
                    run_at=now,
                    locked_at=None,
                    locked_by=None,
                    heartbeat_at=None,
                    last_error=error,
                    updated_at=now,
                )
            )
            dead = await session.execute(
                update(QueueEntry)
                .where(stalled, QueueEntry.attempts >= QueueEntry.max_attempts)
                .values(
                    status=QueueEntryStatus.DEAD.value,
                    locked_at=None,
                    locked_by=None,
                    heartbeat_at=None,
                    last_error=error,
                    updated_at=now,
                )
            )
            await session.commit()

        recovered = requeued.rowcount + dead.rowcount
        if recovered:
            logger.warning(
                "Recovered stalled queue entries",
                requeued=requeued.rowcount,
                dead_lettered=dead.rowcount,
                timeout_seconds=timeout_seconds,
            )
        return recovered

    async def prune_finished(self, now: datetime | None = None) -> int:
        """Delete done and dead entries older than the retention window."""
        now = now or utcnow()
        cutoff = now - timedelta(hours=self.settings.queue_retention_hours)

        async with self.session_factory() as session:
            result = await session.execute(
                delete(QueueEntry).where(
                    QueueEntry.status.in_(
                        [QueueEntryStatus.DONE.value, QueueEntryStatus.DEAD.value]
                    ),
                    QueueEntry.updated_at < cutoff,
                )
            )
            await session.commit()

        if result.rowcount:
            logger.info(
                "Pruned finished queue entries",
                deleted_count=result.rowcount,
                retention_hours=self.settings.queue_retention_hours,
            )
        return result.rowcount
