from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update

from api.v1.jobs.models import QueueEntry, QueueEntryStatus, utcnow
from api.v1.jobs.queue import EnqueueOptions, PostgresWorkQueue

pytestmark = pytest.mark.postgres


@pytest.fixture
def pg_queue(database, settings) -> PostgresWorkQueue:
    return PostgresWorkQueue(database.SessionLocal, settings)


async def entry_of(database, job_id) -> QueueEntry | None:
    async with database.SessionLocal() as session:
        return await session.get(QueueEntry, job_id)


class TestPostgresWorkQueue:
    @pytest.mark.asyncio
    async def test_enqueue_claim_ack(self, database, pg_queue):
        job_id = uuid4()
        await pg_queue.enqueue(job_id, "sendEmail", {"k": "v"}, EnqueueOptions())

        delivery = await pg_queue.claim("c1")

        assert delivery.job_id == job_id
        assert delivery.payload == {"k": "v"}
        assert delivery.attempt == 1
        assert await pg_queue.claim("c2") is None

        await pg_queue.ack(delivery)
        assert (await entry_of(database, job_id)).status == QueueEntryStatus.DONE.value
        assert pg_queue.leased == set()

    @pytest.mark.asyncio
    async def test_enqueue_is_idempotent_while_pending(self, database, pg_queue):
        job_id = uuid4()
        await pg_queue.enqueue(job_id, "sendEmail", {}, EnqueueOptions())
        delivery = await pg_queue.claim("c1")

        await pg_queue.enqueue(job_id, "sendEmail", {}, EnqueueOptions())

        entry = await entry_of(database, job_id)
        assert entry.status == QueueEntryStatus.RUNNING.value
        assert entry.attempts == 1
        await pg_queue.ack(delivery)

    @pytest.mark.asyncio
    async def test_enqueue_resets_dead_entry(self, database, pg_queue):
        job_id = uuid4()
        await pg_queue.enqueue(job_id, "sendEmail", {}, EnqueueOptions(max_attempts=1))
        delivery = await pg_queue.claim("c1")
        assert await pg_queue.fail(delivery, "boom") is False

        await pg_queue.enqueue(job_id, "sendEmail", {}, EnqueueOptions())

        entry = await entry_of(database, job_id)
        assert entry.status == QueueEntryStatus.QUEUED.value
        assert entry.attempts == 0
        assert entry.last_error is None

    @pytest.mark.asyncio
    async def test_fail_schedules_backoff(self, database, pg_queue):
        job_id = uuid4()
        await pg_queue.enqueue(job_id, "sendEmail", {}, EnqueueOptions())
        delivery = await pg_queue.claim("c1")

        assert await pg_queue.fail(delivery, "boom") is True

        entry = await entry_of(database, job_id)
        assert entry.status == QueueEntryStatus.QUEUED.value
        assert entry.last_error == "boom"
        assert entry.run_at > utcnow()
        # Not due yet
        assert await pg_queue.claim("c1") is None

    @pytest.mark.asyncio
    async def test_non_retryable_failure_dead_letters(self, database, pg_queue):
        job_id = uuid4()
        await pg_queue.enqueue(job_id, "sendEmail", {}, EnqueueOptions())
        delivery = await pg_queue.claim("c1")

        assert await pg_queue.fail(delivery, "unknown", retryable=False) is False
        assert (await entry_of(database, job_id)).status == QueueEntryStatus.DEAD.value

    @pytest.mark.asyncio
    async def test_release_returns_attempt(self, database, pg_queue):
        job_id = uuid4()
        await pg_queue.enqueue(job_id, "sendEmail", {}, EnqueueOptions())
        delivery = await pg_queue.claim("c1")

        await pg_queue.release(delivery)

        entry = await entry_of(database, job_id)
        assert entry.status == QueueEntryStatus.QUEUED.value
        assert entry.attempts == 0

    @pytest.mark.asyncio
    async def test_settlement_requires_lease(self, database, pg_queue):
        job_id = uuid4()
        await pg_queue.enqueue(job_id, "sendEmail", {}, EnqueueOptions())
        delivery = await pg_queue.claim("c1")
        async with database.SessionLocal() as session:
            await session.execute(
                update(QueueEntry).where(QueueEntry.id == job_id).values(locked_by="other")
            )
            await session.commit()

        await pg_queue.ack(delivery)

        assert (await entry_of(database, job_id)).status == QueueEntryStatus.RUNNING.value

    @pytest.mark.asyncio
    async def test_remove_skips_running_entries(self, pg_queue):
        queued, running = uuid4(), uuid4()
        await pg_queue.enqueue(running, "sendEmail", {}, EnqueueOptions())
        await pg_queue.claim("c1")
        await pg_queue.enqueue(queued, "sendEmail", {}, EnqueueOptions())

        assert await pg_queue.remove(queued) is True
        assert await pg_queue.remove(running) is False
        assert await pg_queue.remove(uuid4()) is False

    @pytest.mark.asyncio
    async def test_depth_counts_pending_work(self, pg_queue):
        for _ in range(2):
            await pg_queue.enqueue(uuid4(), "sendEmail", {}, EnqueueOptions())
        await pg_queue.claim("c1")

        assert await pg_queue.depth() == 2

    @pytest.mark.asyncio
    async def test_recover_stalled_leases(self, database, pg_queue, settings):
        retryable, exhausted = uuid4(), uuid4()
        await pg_queue.enqueue(retryable, "sendEmail", {}, EnqueueOptions())
        await pg_queue.enqueue(exhausted, "sendEmail", {}, EnqueueOptions(max_attempts=1))
        await pg_queue.claim("c1")
        await pg_queue.claim("c1")

        later = utcnow() + timedelta(seconds=settings.job_visibility_timeout_s + 1)
        recovered = await pg_queue.recover_stalled(now=later)

        assert recovered == 2
        assert (await entry_of(database, retryable)).status == QueueEntryStatus.QUEUED.value
        assert (await entry_of(database, exhausted)).status == QueueEntryStatus.DEAD.value

    @pytest.mark.asyncio
    async def test_prune_finished_after_retention(self, database, pg_queue, settings):
        job_id = uuid4()
        await pg_queue.enqueue(job_id, "sendEmail", {}, EnqueueOptions())
        await pg_queue.ack(await pg_queue.claim("c1"))

        assert await pg_queue.prune_finished() == 0
        later = utcnow() + timedelta(hours=settings.queue_retention_hours, seconds=1)
        assert await pg_queue.prune_finished(now=later) == 1
        assert await entry_of(database, job_id) is None
