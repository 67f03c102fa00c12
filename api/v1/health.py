from datetime import UTC, datetime

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.config.logging import get_logger
from api.config.settings import Settings, SettingsDep
from api.v1.core.exceptions import create_success_response
from api.v1.jobs.dependencies import WorkerPoolDep
from api.v1.jobs.queue import WorkQueue
from api.v1.jobs.store import JobStore
from api.v1.jobs.worker import WorkerPool

logger = get_logger(__name__)
router = APIRouter()


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Work queue health status."""

    reachable: bool
    depth: int | None = None
    error: str | None = None


class WorkerHealth(BaseModel):
    """Embedded worker pool status."""

    worker_id: str
    running: bool
    concurrency: int
    in_flight: int


@router.get("/health", response_model=dict)
async def health_check(
    request: Request,
    settings: Settings = SettingsDep,
    pool: WorkerPool | None = WorkerPoolDep,
):
    """Liveness and capacity signal: database, queue depth and embedded workers."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(request.app.state.store)
    queue_health = await _check_queue_health(request.app.state.queue)

    worker_health = WorkerHealth(**pool.status()) if pool else None

    health_data = {
        "ok": db_health.connected and queue_health.reachable,
        "version": settings.version,
        "environment": settings.environment,
        "timestamp": timestamp,
        "database": db_health.model_dump(),
        "queue": queue_health.model_dump(),
        "worker": worker_health.model_dump() if worker_health else None,
    }

    return create_success_response(data=health_data)


async def _check_database_health(store: JobStore) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await store.ping()

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        logger.warning("Database health check failed", error=str(e))
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(queue: WorkQueue) -> QueueHealth:
    try:
        return QueueHealth(reachable=True, depth=await queue.depth())
    except Exception as e:
        logger.warning("Queue health check failed", error=str(e))
        return QueueHealth(reachable=False, error=str(e))
