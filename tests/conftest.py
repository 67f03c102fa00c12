import os
from collections.abc import AsyncGenerator
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text

from api.config.settings import AuthMode, Settings
from api.infra.database import Base, Database
from api.main import create_app
from api.v1.core.registries import ProcessorRegistry
from api.v1.jobs import models  # noqa: F401
from api.v1.jobs.coordinator import JobCoordinator
from api.v1.jobs.policies import EnqueuePolicy
from api.v1.jobs.processors import SendEmailProcessor
from api.v1.jobs.queue import EnqueueOptions
from api.v1.jobs.worker import WorkerPool
from tests.fakes import InMemoryJobStore, InMemoryWorkQueue, RecordingProcessor


@pytest.fixture
def settings() -> Settings:
    """Settings tuned for fast, isolated tests."""
    return Settings(
        _env_file=None,
        environment="development",
        debug=False,
        auth_mode=AuthMode.NONE,
        api_token=None,
        enqueue_timeout_ms=500,
        enqueue_retry_attempts=3,
        enqueue_retry_delay_ms=0,
        job_max_attempts=3,
        job_concurrency=2,
        job_poll_interval_ms=10,
        job_shutdown_timeout_s=1,
        email_send_delay_ms=0,
        run_embedded_worker=False,
    )


@pytest.fixture
def store() -> InMemoryJobStore:
    return InMemoryJobStore()


@pytest.fixture
def queue() -> InMemoryWorkQueue:
    return InMemoryWorkQueue()


@pytest.fixture
def failing_processor() -> RecordingProcessor:
    return RecordingProcessor(error=RuntimeError("SMTP connection refused"))


@pytest.fixture
def registry(settings, failing_processor) -> ProcessorRegistry:
    registry = ProcessorRegistry()
    registry.register("sendEmail", SendEmailProcessor(settings))
    registry.register("alwaysFails", failing_processor)
    return registry


@pytest.fixture
def coordinator(store, queue, settings) -> JobCoordinator:
    return JobCoordinator(
        store,
        queue,
        policy=EnqueuePolicy.from_settings(settings),
        options=EnqueueOptions.from_settings(settings),
    )


@pytest.fixture
def worker_pool(store, queue, registry, settings) -> WorkerPool:
    return WorkerPool(store, queue, registry, settings, worker_id="test-worker")


@pytest.fixture
def app(settings, store, queue, registry):
    """Application wired to the in-memory store and queue."""
    app = create_app(settings, store=store, queue=queue, registry=registry)
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def email_request() -> dict[str, Any]:
    return {
        "name": "sendEmail",
        "data": {"recipient": "a@b.com", "subject": "Hi"},
    }


@pytest.fixture
async def database(settings) -> AsyncGenerator[Database, None]:
    """Real Postgres database; set DATABASE_URL to a postgresql URL to enable."""
    url = os.environ.get("DATABASE_URL", "")
    if not url.startswith("postgresql"):
        pytest.skip("DATABASE_URL does not point at PostgreSQL")

    db = Database(settings.model_copy(update={"database_url": url}))
    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(text("DELETE FROM queue_entries"))
        await conn.execute(text("DELETE FROM jobs"))
    try:
        yield db
    finally:
        await db.close()
