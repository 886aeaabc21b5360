"""Pydantic models for jobs, claims and the public status view."""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

_REFERENCE_PATTERN = re.compile(r"^[A-Za-z0-9._:/-]{1,256}$")


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobSubmission(BaseModel):
    """Ordered set of file references supplied by a client."""

    file_ids: list[str] = Field(..., min_length=1, description="Opaque file references")

    @field_validator("file_ids")
    @classmethod
    def validate_references(cls, value: list[str]) -> list[str]:
        seen: set[str] = set()
        for reference in value:
            if not _REFERENCE_PATTERN.fullmatch(reference):
                raise ValueError(f"malformed file reference: {reference!r}")
            if reference.startswith("/") or ".." in reference.split("/"):
                raise ValueError(f"file reference must be relative: {reference!r}")
            if reference in seen:
                raise ValueError(f"duplicate file reference: {reference!r}")
            seen.add(reference)
        return value

    model_config = {"extra": "forbid"}


class Progress(BaseModel):
    """Worker-supplied progress hint; the engine does not interpret it."""

    percent: float | None = Field(default=None, ge=0, le=100)
    eta_seconds: float | None = Field(default=None, ge=0)


class ArtifactDescriptor(BaseModel):
    key: str
    size: int = Field(..., ge=0)


class Job(BaseModel):
    id: str
    status: JobStatus = JobStatus.QUEUED
    file_ids: list[str]
    progress: float | None = None
    eta_seconds: float | None = None
    attempt_count: int = 0
    max_attempts: int
    artifact_key: str | None = None
    artifact_size: int | None = None
    error_message: str | None = None
    error_retryable: bool | None = None
    dead_lettered: bool = False
    lease_expires_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class ClaimResult(BaseModel):
    """Outcome of a claim.

    ``attempt_token`` is only set when this caller now owns the job. A claim on
    a terminal job sets ``already_terminal`` and leaves the record untouched.
    A duplicate claim on a job whose lease is still live carries the seconds
    left on that lease in ``retry_after``.
    """

    job: Job
    attempt_token: int | None = None
    already_terminal: bool = False
    retry_after: float | None = None

    @property
    def acquired(self) -> bool:
        return self.attempt_token is not None


class JobView(BaseModel):
    """Read-only projection returned to polling clients."""

    id: str
    status: JobStatus
    created_at: datetime | None = None
    completed_at: datetime | None = None
    progress: float | None = None
    estimated_time_left: float | None = None
    download_url: str | None = None
    size: int | None = None
    error_message: str | None = None

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobCreateResponse(BaseModel):
    id: str
    status: JobStatus = JobStatus.QUEUED


class DeadLetterEntry(BaseModel):
    job_id: str
    reason: str
    recorded_at: datetime
