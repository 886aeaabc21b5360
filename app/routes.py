"""API route definitions."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field

from jobs.engine import LifecycleEngine
from jobs.schemas import DeadLetterEntry, JobCreateResponse
from jobs.status import to_payload

from .config import Settings, get_settings
from .dependencies import get_engine

router = APIRouter()


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str


class JobSubmitRequest(BaseModel):
    """Body of a submission; references are validated by the engine."""

    file_ids: list[str] = Field(
        ...,
        validation_alias=AliasChoices("file_ids", "fileIds"),
        description="Ordered file references to bundle",
    )


@router.get("/healthz", response_model=HealthResponse, tags=["system"])
def healthz(settings: Annotated[Settings, Depends(get_settings)]) -> HealthResponse:
    """Simple health-check endpoint."""

    return HealthResponse(service=settings.service_name)


@router.post("/jobs", response_model=JobCreateResponse, status_code=202, tags=["jobs"])
def submit_job(
    request: JobSubmitRequest,
    engine: Annotated[LifecycleEngine, Depends(get_engine)],
) -> JobCreateResponse:
    """Queue a download-preparation job and return its id immediately."""

    job_id = engine.submit(request.file_ids)
    return JobCreateResponse(id=job_id)


@router.get("/jobs/{job_id}", tags=["jobs"])
def job_status(
    job_id: str,
    engine: Annotated[LifecycleEngine, Depends(get_engine)],
) -> JSONResponse:
    view = engine.status(job_id)
    return JSONResponse(to_payload(view), headers={"Cache-Control": "no-store"})


@router.get("/admin/dead-letters", response_model=list[DeadLetterEntry], tags=["admin"])
def dead_letters(
    engine: Annotated[LifecycleEngine, Depends(get_engine)],
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> list[DeadLetterEntry]:
    return engine.dead_letters(limit)
