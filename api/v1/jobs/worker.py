"""
Worker pool that drains the work queue.

Each consumer claims a delivery, runs the registered processor and writes
the outcome to the record store before settling the delivery with the queue.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from api.config.logging import bind_job_context, get_logger
from api.config.settings import Settings
from api.v1.core.exceptions import ProcessorFailure, UnknownJobTypeError
from api.v1.core.registries import ProcessorRegistry
from api.v1.jobs.queue import Delivery, WorkQueue, default_consumer_id
from api.v1.jobs.store import JobStore

logger = get_logger(__name__)


@dataclass
class ProcessorContext:
    """Per-delivery context handed to a processor."""

    job_id: UUID
    name: str
    attempt: int
    report_progress: Callable[[dict[str, Any]], Awaitable[None]]


class WorkerPool:
    """
    Fixed-size pool of asyncio consumers.

    Features:
    - Registry lookup per delivery; unknown names fail without redelivery
    - Processor failures mark the job failed and are redelivered by the queue
    - Store or queue errors are logged and never stop a consumer
    - Graceful shutdown releasing deliveries that did not finish in time
    """

    def __init__(
        self,
        store: JobStore,
        queue: WorkQueue,
        registry: ProcessorRegistry,
        settings: Settings,
        worker_id: str | None = None,
    ):
        self.store = store
        self.queue = queue
        self.registry = registry
        self.settings = settings
        self.concurrency = settings.job_concurrency
        self.poll_interval_s = settings.job_poll_interval_ms / 1000
        self.worker_id = worker_id or default_consumer_id()
        self.running = False
        self.in_flight: set[UUID] = set()
        self._consumers: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start the queue maintenance loops and the consumers."""
        if self.running:
            raise RuntimeError("Worker pool is already running")

        self.running = True
        await self.queue.start_consuming()
        self._consumers = [
            asyncio.create_task(
                self._consume(f"{self.worker_id}-{index}"), name=f"job-consumer-{index}"
            )
            for index in range(self.concurrency)
        ]

        logger.info(
            "Worker pool started",
            worker_id=self.worker_id,
            concurrency=self.concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            processors=self.registry.list(),
        )

    async def stop(self) -> None:
        """Stop claiming, give in-flight jobs a grace period, then cancel."""
        if not self._consumers:
            self.running = False
            return

        logger.info(
            "Stopping worker pool",
            worker_id=self.worker_id,
            in_flight=len(self.in_flight),
        )
        self.running = False

        _, pending = await asyncio.wait(
            self._consumers, timeout=self.settings.job_shutdown_timeout_s
        )
        if pending:
            logger.warning(
                "Worker pool stopped with active jobs",
                worker_id=self.worker_id,
                active_jobs=len(self.in_flight),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        self._consumers = []
        await self.queue.stop_consuming()
        logger.info("Worker pool stopped", worker_id=self.worker_id)

    def status(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "running": self.running,
            "concurrency": self.concurrency,
            "in_flight": len(self.in_flight),
        }

    async def drain(self, consumer_id: str | None = None) -> int:
        """Process deliveries until none is due. Returns how many were handled."""
        consumer_id = consumer_id or f"{self.worker_id}-drain"
        handled = 0
        while True:
            delivery = await self.queue.claim(consumer_id)
            if delivery is None:
                return handled
            await self.process_delivery(delivery)
            handled += 1

    async def _consume(self, consumer_id: str) -> None:
        """Consumer loop that claims and processes deliveries."""
        while self.running:
            try:
                delivery = await self.queue.claim(consumer_id)
                if delivery is None:
                    await asyncio.sleep(self.poll_interval_s)
                    continue

                await self.process_delivery(delivery)

            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Error in consumer loop", consumer_id=consumer_id)
                await asyncio.sleep(self.poll_interval_s * 5)  # Back off on errors

    async def process_delivery(self, delivery: Delivery) -> None:
        """Run one delivery to an outcome in the record store and the queue."""
        # Processor and adapter log lines inherit the job keys
        with bind_job_context(delivery.job_id, delivery.name, delivery.attempt):
            await self._run_delivery(delivery)

    async def _run_delivery(self, delivery: Delivery) -> None:
        processor = self.registry.find(delivery.name)
        if processor is None:
            error = UnknownJobTypeError(delivery.name)
            logger.error("No processor registered for job")
            await self._record_failure(delivery, error.message)
            await self._fail_delivery(delivery, error.message, retryable=False)
            return

        async def report_progress(progress: dict[str, Any]) -> None:
            logger.info("Job progress", progress=progress)
            try:
                await self.queue.report_progress(delivery, progress)
            except Exception as exc:
                logger.warning("Progress report failed", error=str(exc))

        ctx = ProcessorContext(
            job_id=delivery.job_id,
            name=delivery.name,
            attempt=delivery.attempt,
            report_progress=report_progress,
        )

        self.in_flight.add(delivery.job_id)
        try:
            logger.info("Processing job started")
            result = await processor.process(dict(delivery.payload), ctx)

        except asyncio.CancelledError:
            logger.info("Job processing cancelled, releasing delivery")
            try:
                await self.queue.release(delivery)
            except Exception as exc:
                logger.warning("Release failed, queue will recover the lease", error=str(exc))
            raise

        except Exception as exc:
            failure = ProcessorFailure(delivery.name, exc)
            logger.warning(
                "Processing job failed",
                error=failure.message,
                exception=exc.__class__.__name__,
            )
            await self._record_failure(delivery, failure.message)
            await self._fail_delivery(delivery, failure.message, retryable=True)
            return

        finally:
            self.in_flight.discard(delivery.job_id)

        summary = str(result)
        try:
            job = await self.store.mark_completed(delivery.job_id, summary)
        except Exception as exc:
            logger.exception("Recording job completion failed")
            await self._fail_delivery(
                delivery, f"Recording completion failed: {exc}", retryable=True
            )
            return

        if job is None:
            logger.warning("Completion not recorded, job was deleted or already completed")

        try:
            await self.queue.ack(delivery, summary)
        except Exception:
            logger.exception("Acknowledging delivery failed")
            return

        logger.info("Processing job completed successfully")

    async def _record_failure(self, delivery: Delivery, error: str) -> None:
        try:
            job = await self.store.mark_failed(delivery.job_id, error)
        except Exception:
            logger.exception("Recording job failure failed", job_id=str(delivery.job_id))
            return
        if job is None:
            logger.warning(
                "Failure not recorded, job was deleted or already completed",
                job_id=str(delivery.job_id),
            )

    async def _fail_delivery(self, delivery: Delivery, error: str, retryable: bool) -> None:
        try:
            redelivered = await self.queue.fail(delivery, error, retryable=retryable)
        except Exception:
            logger.exception("Failing delivery failed", job_id=str(delivery.job_id))
            return
        logger.info(
            "Delivery failed",
            job_id=str(delivery.job_id),
            will_redeliver=redelivered,
        )
