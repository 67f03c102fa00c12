"""
Job lifecycle API endpoints.

Job bodies are returned bare in camelCase; errors use the standard envelope.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Query, status

from api.config.logging import get_logger
from api.config.settings import Settings, SettingsDep
from api.v1.core.exceptions import ValidationFailure
from api.v1.core.registries import ProcessorRegistry
from api.v1.core.security import Principal, PrincipalDep
from api.v1.jobs.coordinator import JobCoordinator
from api.v1.jobs.dependencies import CoordinatorDep, RegistryDep
from api.v1.jobs.models import Job, JobStatus
from api.v1.jobs.schemas import JobCreateRequest, JobResponse
from api.v1.jobs.validation import validate_job_request

logger = get_logger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


def serialize_job(job: Job) -> dict[str, Any]:
    return JobResponse.model_validate(job).model_dump(mode="json", by_alias=True)


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_job(
    job_request: JobCreateRequest,
    principal: Principal = PrincipalDep,
    coordinator: JobCoordinator = CoordinatorDep,
    registry: ProcessorRegistry = RegistryDep,
) -> dict[str, Any]:
    """Create a job and enqueue it for processing."""
    payload = validate_job_request(job_request, registry)

    job = await coordinator.create(job_request.name, payload)

    logger.info(
        "Job created via API",
        job_id=str(job.id),
        job_name=job.name,
        user_id=principal.user_id,
    )
    return serialize_job(job)


@router.get("", response_model=list[dict])
async def list_jobs(
    status: str | None = Query(
        default=None, description="Filter by status: active|completed|failed"
    ),
    limit: int | None = Query(default=None, ge=1, description="Maximum results"),
    principal: Principal = PrincipalDep,
    coordinator: JobCoordinator = CoordinatorDep,
    settings: Settings = SettingsDep,
) -> list[dict[str, Any]]:
    """List jobs, newest first."""
    status_filter = None
    if status:
        try:
            status_filter = JobStatus(status)
        except ValueError:
            raise ValidationFailure(
                f"Invalid status: {status}",
                details={"allowed": [s.value for s in JobStatus]},
            )

    limit = min(limit or settings.job_list_default_limit, settings.job_list_max_limit)
    jobs = await coordinator.list(status=status_filter, limit=limit)
    return [serialize_job(job) for job in jobs]


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    principal: Principal = PrincipalDep,
    coordinator: JobCoordinator = CoordinatorDep,
) -> dict[str, Any]:
    """Get a specific job by ID."""
    job = await coordinator.get(job_id)
    return serialize_job(job)


@router.delete("/{job_id}", response_model=dict)
async def delete_job(
    job_id: UUID,
    principal: Principal = PrincipalDep,
    coordinator: JobCoordinator = CoordinatorDep,
) -> dict[str, Any]:
    """Delete a job and its pending queue entry; returns the deleted job."""
    job = await coordinator.delete(job_id)

    logger.info(
        "Job deleted via API",
        job_id=str(job_id),
        user_id=principal.user_id,
    )
    return serialize_job(job)


@router.post("/{job_id}/retry", response_model=dict)
async def retry_job(
    job_id: UUID,
    principal: Principal = PrincipalDep,
    coordinator: JobCoordinator = CoordinatorDep,
) -> dict[str, Any]:
    """Retry a failed job."""
    job = await coordinator.retry(job_id)

    logger.info(
        "Job retried via API",
        job_id=str(job_id),
        user_id=principal.user_id,
    )
    return serialize_job(job)
