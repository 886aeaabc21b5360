from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from fastapi.testclient import TestClient

from app.main import create_app
from jobs.engine import LifecycleEngine


@contextmanager
def patched_app(engine: LifecycleEngine) -> Iterator[TestClient]:
    app = create_app()
    app.state.engine = engine
    with TestClient(app) as client:
        yield client


def test_submit_and_poll_job(engine: LifecycleEngine) -> None:
    with patched_app(engine) as client:
        response = client.post(
            "/v1/jobs", json={"file_ids": ["a.pdf", "b.pdf", "c.pdf"]}
        )
        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "queued"
        job_id = body["id"]

        status = client.get(f"/v1/jobs/{job_id}")
        assert status.status_code == 200
        assert status.headers["cache-control"] == "no-store"
        assert status.json()["status"] == "queued"

        claim = engine.claim(job_id)
        engine.report_progress(job_id, claim.attempt_token, 50, eta_seconds=30)
        processing = client.get(f"/v1/jobs/{job_id}").json()
        assert processing["status"] == "processing"
        assert processing["estimatedTimeLeft"] == 30
        assert "createdAt" in processing

        engine.complete(job_id, claim.attempt_token, "jobs/abc.zip", 2048000)
        completed = client.get(f"/v1/jobs/{job_id}").json()
        assert completed["status"] == "completed"
        assert completed["size"] == 2048000
        assert "jobs/abc.zip" in completed["downloadUrl"]


def test_camel_case_submission_is_accepted(engine: LifecycleEngine) -> None:
    with patched_app(engine) as client:
        response = client.post("/v1/jobs", json={"fileIds": ["a.pdf"]})

    assert response.status_code == 202


def test_invalid_references_are_rejected(engine: LifecycleEngine) -> None:
    with patched_app(engine) as client:
        response = client.post("/v1/jobs", json={"file_ids": ["../etc/passwd"]})

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"


def test_unknown_job_is_not_found(engine: LifecycleEngine) -> None:
    with patched_app(engine) as client:
        response = client.get("/v1/jobs/does-not-exist")

    assert response.status_code == 404
    assert response.json() == {
        "error": "NotFound",
        "detail": "job not found",
        "code": "NOT_FOUND",
        "status_code": 404,
    }


def test_failed_job_and_dead_letter_channel(engine: LifecycleEngine) -> None:
    with patched_app(engine) as client:
        job_id = client.post("/v1/jobs", json={"file_ids": ["missing.pdf"]}).json()["id"]
        claim = engine.claim(job_id)
        engine.fail(job_id, claim.attempt_token, "file not found", retryable=False)

        failed = client.get(f"/v1/jobs/{job_id}").json()
        dead = client.get("/v1/admin/dead-letters").json()

    assert failed == {"id": job_id, "status": "failed", "errorMessage": "file not found"}
    assert [entry["job_id"] for entry in dead] == [job_id]


def test_healthz(engine: LifecycleEngine) -> None:
    with patched_app(engine) as client:
        response = client.get("/v1/healthz")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
