from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from .schemas import Job, JobStatus

_STATUS_VALUES = ", ".join(f"'{status.value}'" for status in JobStatus)

SCHEMA = [
    f"""
    CREATE TABLE IF NOT EXISTS jobs (
        id TEXT PRIMARY KEY,
        status TEXT NOT NULL CHECK(status IN ({_STATUS_VALUES})),
        file_ids TEXT NOT NULL,
        progress REAL,
        eta_seconds REAL,
        attempt_count INTEGER NOT NULL DEFAULT 0,
        max_attempts INTEGER NOT NULL,
        artifact_key TEXT,
        artifact_size INTEGER,
        error_message TEXT,
        error_retryable INTEGER,
        dead_lettered INTEGER NOT NULL DEFAULT 0,
        lease_expires_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        completed_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS jobs_status_idx ON jobs(status)",
]

_COLUMNS = (
    "id",
    "status",
    "file_ids",
    "progress",
    "eta_seconds",
    "attempt_count",
    "max_attempts",
    "artifact_key",
    "artifact_size",
    "error_message",
    "error_retryable",
    "dead_lettered",
    "lease_expires_at",
    "created_at",
    "updated_at",
    "completed_at",
)
_MUTABLE = frozenset(_COLUMNS) - {"id", "file_ids", "max_attempts", "created_at"}
_DATETIME_COLUMNS = ("lease_expires_at", "created_at", "updated_at", "completed_at")


def _to_column(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name == "status":
        return JobStatus(value).value
    if name == "file_ids":
        return json.dumps(list(value))
    if name in _DATETIME_COLUMNS:
        return value.isoformat()
    if name in ("error_retryable", "dead_lettered"):
        return int(bool(value))
    return value


def _row_to_job(row: sqlite3.Row) -> Job:
    data = dict(row)
    # Rejects anything outside the enum even if the CHECK was bypassed.
    data["status"] = JobStatus(data["status"])
    data["file_ids"] = json.loads(data["file_ids"])
    for name in _DATETIME_COLUMNS:
        if data[name] is not None:
            data[name] = datetime.fromisoformat(data[name])
    if data["error_retryable"] is not None:
        data["error_retryable"] = bool(data["error_retryable"])
    data["dead_lettered"] = bool(data["dead_lettered"])
    return Job(**data)


class JobStore:
    """SQLite-backed job records; every mutation is a compare-and-set."""

    def __init__(self, db_url: str) -> None:
        if db_url.startswith("sqlite:///"):
            self.path = Path(db_url.replace("sqlite:///", ""))
        else:
            raise ValueError("Unsupported database URL")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute("PRAGMA journal_mode=WAL;")
            for statement in SCHEMA:
                conn.execute(statement)
            conn.commit()

    def create(self, job: Job) -> None:
        values = [_to_column(name, getattr(job, name)) for name in _COLUMNS]
        placeholders = ", ".join("?" for _ in _COLUMNS)
        conn = self.connect()
        try:
            with conn:
                conn.execute(
                    f"INSERT INTO jobs ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                    values,
                )
        finally:
            conn.close()

    def get(self, job_id: str) -> Job | None:
        conn = self.connect()
        try:
            row = conn.execute("SELECT * FROM jobs WHERE id=?", (job_id,)).fetchone()
        finally:
            conn.close()
        return _row_to_job(row) if row else None

    def delete_unclaimed(self, job_id: str) -> bool:
        """Remove a job that no worker has touched yet."""

        conn = self.connect()
        try:
            with conn:
                deleted = conn.execute(
                    "DELETE FROM jobs WHERE id=? AND status=? AND attempt_count=0",
                    (job_id, JobStatus.QUEUED.value),
                ).rowcount
        finally:
            conn.close()
        return deleted == 1

    def compare_and_set(
        self,
        job_id: str,
        expected_status: JobStatus,
        expected_attempt: int,
        **changes: Any,
    ) -> bool:
        """Apply ``changes`` only if status and attempt count still match.

        Returns ``False`` when another writer got there first.
        """

        unknown = set(changes) - _MUTABLE
        if unknown:
            raise ValueError(f"cannot update columns: {sorted(unknown)}")
        if not changes:
            raise ValueError("no changes supplied")
        assignments = ", ".join(f"{name}=?" for name in changes)
        values = [_to_column(name, value) for name, value in changes.items()]
        conn = self.connect()
        try:
            with conn:
                updated = conn.execute(
                    f"UPDATE jobs SET {assignments} "
                    "WHERE id=? AND status=? AND attempt_count=?",
                    (*values, job_id, expected_status.value, expected_attempt),
                ).rowcount
        finally:
            conn.close()
        return updated == 1


__all__ = ["JobStore"]
