from fastapi import Depends, Request

from api.v1.core.registries import ProcessorRegistry
from api.v1.jobs.coordinator import JobCoordinator
from api.v1.jobs.worker import WorkerPool


def get_coordinator(request: Request) -> JobCoordinator:
    """Coordinator wired onto the application by ``create_app``."""
    return request.app.state.coordinator


def get_processor_registry(request: Request) -> ProcessorRegistry:
    return request.app.state.registry


def get_worker_pool(request: Request) -> WorkerPool | None:
    """Embedded worker pool, or None when workers run in separate processes."""
    return getattr(request.app.state, "worker_pool", None)


# Convenience type aliases for dependency injection
CoordinatorDep = Depends(get_coordinator)
RegistryDep = Depends(get_processor_registry)
WorkerPoolDep = Depends(get_worker_pool)
