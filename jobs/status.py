"""Projection of job records into the client-facing status view."""

from __future__ import annotations

from collections.abc import Callable

from .schemas import Job, JobStatus, JobView


def project(job: Job, url_for: Callable[[str], str]) -> JobView:
    """Build the view polled by clients.

    Completed jobs expose a freshly signed download URL and the size, failed
    jobs the error message, and nothing else leaks across states.
    """

    if job.status is JobStatus.COMPLETED:
        if job.artifact_key is None or job.artifact_size is None:
            raise ValueError(f"completed job {job.id} has no artifact")
        return JobView(
            id=job.id,
            status=job.status,
            completed_at=job.completed_at,
            download_url=url_for(job.artifact_key),
            size=job.artifact_size,
        )
    if job.status is JobStatus.FAILED:
        return JobView(
            id=job.id,
            status=job.status,
            error_message=job.error_message or "job failed",
        )
    if job.status is JobStatus.PROCESSING:
        return JobView(
            id=job.id,
            status=job.status,
            created_at=job.created_at,
            progress=job.progress,
            estimated_time_left=job.eta_seconds,
        )
    return JobView(
        id=job.id,
        status=job.status,
        created_at=job.created_at,
        progress=job.progress,
    )


def to_payload(view: JobView) -> dict:
    return view.model_dump(mode="json", by_alias=True, exclude_none=True)
