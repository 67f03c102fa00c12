from typing import Any

from pydantic import ValidationError

from api.v1.core.exceptions import ValidationFailure
from api.v1.core.registries import ProcessorRegistry
from api.v1.jobs.schemas import JobCreateRequest


def validate_job_request(
    request: JobCreateRequest, registry: ProcessorRegistry
) -> dict[str, Any]:
    """
    Check a create request against the registered processors.

    Returns the payload to store. When the processor declares a
    ``payload_model`` the payload is validated against it; unknown keys are
    kept as sent.

    Raises:
        ValidationFailure: Unknown job name or a payload the processor rejects
    """
    processor = registry.find(request.name)
    if processor is None:
        raise ValidationFailure(
            f"Unknown job type: {request.name}",
            details={"name": request.name, "registered": sorted(registry.list())},
        )

    payload_model = getattr(processor, "payload_model", None)
    if payload_model is None:
        return request.data

    try:
        payload_model.model_validate(request.data)
    except ValidationError as exc:
        raise ValidationFailure(
            "Invalid job data",
            details={
                "name": request.name,
                "errors": [
                    {
                        "field": ".".join(str(part) for part in error["loc"]),
                        "message": error["msg"],
                    }
                    for error in exc.errors()
                ],
            },
        ) from exc

    return request.data
