import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from api.config.logging import get_logger

logger = get_logger(__name__)


class JobRelayException(Exception):
    """Base exception for Job Relay application."""

    code = "internal_error"

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationFailure(JobRelayException):
    """Raised when a job request is rejected before reaching the coordinator."""

    code = "validation_failure"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_400_BAD_REQUEST, details)


class JobNotFoundError(JobRelayException):
    """Raised when the referenced job id has no record."""

    code = "not_found"

    def __init__(self, job_id: Any):
        self.job_id = job_id
        super().__init__(
            "Job not found", status.HTTP_404_NOT_FOUND, {"job_id": str(job_id)}
        )


class StateConflictError(JobRelayException):
    """Raised when an operation is not allowed from the job's current status."""

    code = "state_conflict"

    def __init__(self, job_id: Any, current_status: str, expected_status: str):
        self.job_id = job_id
        self.current_status = current_status
        self.expected_status = expected_status
        super().__init__(
            f"Job is {current_status}, expected {expected_status}",
            status.HTTP_400_BAD_REQUEST,
            {
                "job_id": str(job_id),
                "status": current_status,
                "expected_status": expected_status,
            },
        )


class QueueUnavailableError(JobRelayException):
    """Raised when the work queue did not accept an entry within the deadline."""

    code = "queue_unavailable"

    def __init__(
        self,
        message: str = "Work queue unavailable",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, details)


class ProcessorFailure(JobRelayException):
    """A registered processor raised while handling a job."""

    code = "processor_failure"

    def __init__(self, job_name: str, cause: BaseException):
        self.job_name = job_name
        self.cause = cause
        message = str(cause) or cause.__class__.__name__
        super().__init__(message, details={"job_name": job_name})


class UnknownJobTypeError(JobRelayException):
    """No processor is registered for the job's name."""

    code = "unknown_job_type"

    def __init__(self, job_name: str):
        self.job_name = job_name
        super().__init__(
            f"Unknown job type: {job_name}", details={"job_name": job_name}
        )


class DuplicateRegistrationError(JobRelayException):
    """A second implementation was registered under an existing name."""

    code = "duplicate_registration"

    def __init__(self, registry: str, name: str):
        super().__init__(
            f"{registry} implementation already registered with name: {name}",
            details={"registry": registry, "name": name},
        )


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
    code: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": code or status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def job_relay_exception_handler(
    request: Request, exc: JobRelayException
) -> JSONResponse:
    """Handle Job Relay specific exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Application exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=exc.message,
            details=exc.details,
            request_id=request_id,
            code=exc.code,
        ),
    )


async def request_validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report malformed request bodies and parameters as validation failures."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    errors = jsonable_encoder(exc.errors())

    logger.warning(
        "Request validation failed",
        errors=errors,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=create_error_response(
            status_code=status.HTTP_400_BAD_REQUEST,
            message="Request validation failed",
            details={"errors": errors},
            request_id=request_id,
            code=ValidationFailure.code,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=str(exc.detail),
            request_id=request_id,
        ),
        headers=getattr(exc, "headers", None),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        request_id=request_id,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
            request_id=request_id,
        ),
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context and correlation IDs."""

    async def dispatch(self, request: Request, call_next):
        # Generate correlation ID for request tracking
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        # Add to log context
        from api.config.logging import add_request_context

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)

        # Add request ID to response headers
        response.headers["X-Request-ID"] = request_id

        return response
