"""
Job API Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, AliasGenerator, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from api.v1.jobs.models import JobStatus


class JobCreateRequest(BaseModel):
    """Schema for creating a new job."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        pattern=r"^[A-Za-z0-9_.\-]+$",
        description="Job type identifier",
    )
    data: dict[str, Any] = Field(..., description="Job parameters")


class JobResponse(BaseModel):
    """Schema for job API responses (camelCase on the wire)."""

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=AliasGenerator(serialization_alias=to_camel),
    )

    id: UUID
    name: str
    data: dict[str, Any] = Field(validation_alias=AliasChoices("payload", "data"))
    status: JobStatus
    result: str | None = None
    created_at: datetime
    completed_at: datetime | None = None
    failed_at: datetime | None = None


class SendEmailPayload(BaseModel):
    """Payload accepted by the sendEmail processor."""

    recipient: str = Field(
        ...,
        max_length=320,
        pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
        description="Destination email address",
    )
    subject: str = Field(..., min_length=1, max_length=998)
    body: str | None = Field(default=None, max_length=100_000)
