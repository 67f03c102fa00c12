"""
Standalone worker process entry point.
"""

import asyncio
import signal

from api.config.logging import get_logger, setup_logging
from api.config.settings import Settings
from api.infra.database import Database
from api.v1.jobs.queue import PostgresWorkQueue
from api.v1.jobs.registry_init import build_processor_registry
from api.v1.jobs.store import SqlJobStore
from api.v1.jobs.worker import WorkerPool

logger = get_logger(__name__)


def build_worker_pool(settings: Settings, database: Database) -> WorkerPool:
    """Wire a worker pool over the SQL store and the Postgres queue."""
    return WorkerPool(
        SqlJobStore(database.SessionLocal),
        PostgresWorkQueue(database.SessionLocal, settings),
        build_processor_registry(settings),
        settings,
    )


async def run_worker(settings: Settings, once: bool = False) -> int:
    """
    Run a worker pool until SIGINT or SIGTERM.

    With ``once`` the due deliveries are processed and the call returns.
    Returns the number of deliveries handled in ``once`` mode, else 0.
    """
    setup_logging(settings)
    database = Database(settings)
    pool = build_worker_pool(settings, database)

    try:
        if once:
            handled = await pool.drain()
            logger.info("Drained work queue", handled=handled)
            return handled

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        await pool.start()
        await stop_event.wait()
        await pool.stop()
        return 0
    finally:
        await database.close()
