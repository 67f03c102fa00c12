from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from api.config.logging import get_logger, setup_logging
from api.config.settings import Settings, get_settings, settings as default_settings
from api.infra.database import Database
from api.v1.core.exceptions import (
    JobRelayException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    job_relay_exception_handler,
    request_validation_exception_handler,
)
from api.v1.core.registries import ProcessorRegistry
from api.v1.health import router as health_router
from api.v1.jobs.coordinator import JobCoordinator
from api.v1.jobs.policies import EnqueuePolicy
from api.v1.jobs.queue import EnqueueOptions, PostgresWorkQueue, WorkQueue
from api.v1.jobs.registry_init import build_processor_registry
from api.v1.jobs.routes import router as jobs_router
from api.v1.jobs.store import JobStore, SqlJobStore
from api.v1.jobs.worker import WorkerPool

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Run the embedded worker pool, if enabled, and release connections on exit."""
    settings: Settings = app.state.settings

    if settings.run_embedded_worker:
        pool = WorkerPool(
            app.state.store, app.state.queue, app.state.registry, settings
        )
        await pool.start()
        app.state.worker_pool = pool

    try:
        yield
    finally:
        if app.state.worker_pool is not None:
            await app.state.worker_pool.stop()
            app.state.worker_pool = None
        if app.state.database is not None:
            await app.state.database.close()
        logger.info("Application shutdown complete")


def create_app(
    settings: Settings | None = None,
    *,
    store: JobStore | None = None,
    queue: WorkQueue | None = None,
    registry: ProcessorRegistry | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Store, queue and registry default to the SQL adapters and the built-in
    processors; tests pass their own.
    """
    settings = settings or default_settings

    # Initialize structured logging
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Job lifecycle coordinator over a record store and a work queue",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        openapi_url="/openapi.json" if settings.debug else None,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Wire the lifecycle components explicitly
    database = Database(settings) if store is None or queue is None else None
    if store is None:
        store = SqlJobStore(database.SessionLocal)
    if queue is None:
        queue = PostgresWorkQueue(database.SessionLocal, settings)
    if registry is None:
        registry = build_processor_registry(settings)

    app.state.settings = settings
    app.state.database = database
    app.state.store = store
    app.state.queue = queue
    app.state.registry = registry
    app.state.worker_pool = None
    app.state.coordinator = JobCoordinator(
        store,
        queue,
        policy=EnqueuePolicy.from_settings(settings),
        options=EnqueueOptions.from_settings(settings),
    )
    app.dependency_overrides[get_settings] = lambda: settings

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(JobRelayException, job_relay_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health_router, tags=["health"])
    app.include_router(jobs_router)

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        workers=1 if default_settings.debug else default_settings.workers,
    )
