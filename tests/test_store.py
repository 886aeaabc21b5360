from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from jobs.schemas import Job, JobStatus
from jobs.store import JobStore


def make_job(job_id: str = "job-1") -> Job:
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return Job(
        id=job_id,
        file_ids=["b.txt", "a.txt", "c/d.txt"],
        max_attempts=4,
        created_at=now,
        updated_at=now,
    )


def test_create_and_get_roundtrip(store: JobStore) -> None:
    job = make_job()
    store.create(job)

    loaded = store.get("job-1")

    assert loaded == job
    assert loaded.file_ids == ["b.txt", "a.txt", "c/d.txt"]
    assert store.get("missing") is None


def test_duplicate_id_is_rejected(store: JobStore) -> None:
    store.create(make_job())

    with pytest.raises(sqlite3.IntegrityError):
        store.create(make_job())


def test_delete_unclaimed_only_removes_untouched_jobs(store: JobStore) -> None:
    store.create(make_job("job-1"))
    store.create(make_job("job-2"))
    store.compare_and_set(
        "job-2", JobStatus.QUEUED, 0, status=JobStatus.PROCESSING, attempt_count=1
    )

    assert store.delete_unclaimed("job-1")
    assert not store.delete_unclaimed("job-2")
    assert not store.delete_unclaimed("job-1")
    assert store.get("job-1") is None
    assert store.get("job-2").status is JobStatus.PROCESSING


def test_compare_and_set_requires_matching_status_and_attempt(store: JobStore) -> None:
    store.create(make_job())
    lease = datetime(2024, 5, 1, 12, 3, tzinfo=timezone.utc)

    assert store.compare_and_set(
        "job-1",
        JobStatus.QUEUED,
        0,
        status=JobStatus.PROCESSING,
        attempt_count=1,
        lease_expires_at=lease,
    )
    assert not store.compare_and_set(
        "job-1", JobStatus.QUEUED, 0, status=JobStatus.PROCESSING, attempt_count=1
    )
    assert not store.compare_and_set(
        "job-1", JobStatus.PROCESSING, 0, status=JobStatus.COMPLETED
    )

    loaded = store.get("job-1")
    assert loaded.status is JobStatus.PROCESSING
    assert loaded.attempt_count == 1
    assert loaded.lease_expires_at == lease


def test_compare_and_set_rejects_immutable_columns(store: JobStore) -> None:
    store.create(make_job())

    with pytest.raises(ValueError):
        store.compare_and_set("job-1", JobStatus.QUEUED, 0, file_ids=["x"])
    with pytest.raises(ValueError):
        store.compare_and_set("job-1", JobStatus.QUEUED, 0)


def test_status_outside_enum_is_rejected_by_storage(store: JobStore) -> None:
    store.create(make_job())
    conn = store.connect()
    try:
        with pytest.raises(sqlite3.IntegrityError):
            with conn:
                conn.execute("UPDATE jobs SET status='cancelled' WHERE id='job-1'")
    finally:
        conn.close()


def test_status_outside_enum_is_rejected_on_read(store: JobStore) -> None:
    store.create(make_job())
    conn = store.connect()
    try:
        conn.execute("PRAGMA ignore_check_constraints=ON")
        with conn:
            conn.execute("UPDATE jobs SET status='paused' WHERE id='job-1'")
    finally:
        conn.close()

    with pytest.raises(ValueError):
        store.get("job-1")


def test_terminal_fields_roundtrip(store: JobStore) -> None:
    store.create(make_job())
    done = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc) + timedelta(minutes=2)

    store.compare_and_set(
        "job-1",
        JobStatus.QUEUED,
        0,
        status=JobStatus.FAILED,
        error_message="file not found",
        error_retryable=False,
        dead_lettered=True,
        completed_at=done,
    )

    loaded = store.get("job-1")
    assert loaded.error_message == "file not found"
    assert loaded.error_retryable is False
    assert loaded.dead_lettered is True
    assert loaded.completed_at == done


def test_unsupported_database_url(tmp_path) -> None:
    with pytest.raises(ValueError):
        JobStore(f"postgresql://localhost/{tmp_path.name}")
