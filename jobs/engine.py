"""Job lifecycle engine: the only writer of job records."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError

from app.logging import log_event

from .errors import InvalidInput, InvalidTransition, NotFound, Superseded
from .queue import WorkQueue
from .retry import RequeueForRetry, RetryDecision, RetryPolicy
from .schemas import (
    ClaimResult,
    DeadLetterEntry,
    Job,
    JobStatus,
    JobSubmission,
    JobView,
    Progress,
)
from .status import project
from .store import JobStore
from .transitions import Transition, next_status

LOGGER = logging.getLogger("downloads.engine")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleEngine:
    """Applies state transitions to job records.

    All writes go through :meth:`JobStore.compare_and_set` keyed on
    ``(status, attempt_count)``; the attempt count doubles as the attempt
    token handed to the worker that claimed the job.
    """

    def __init__(
        self,
        store: JobStore,
        queue: WorkQueue,
        url_for: Callable[[str], str],
        *,
        retry_policy: RetryPolicy | None = None,
        lease_seconds: float = 180.0,
        max_files_per_job: int = 100,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._queue = queue
        self._url_for = url_for
        self._policy = retry_policy or RetryPolicy()
        self._lease = timedelta(seconds=lease_seconds)
        self._max_files = max_files_per_job
        self._clock = clock

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._policy

    def _load(self, job_id: str) -> Job:
        job = self._store.get(job_id)
        if job is None:
            raise NotFound(f"job {job_id} not found")
        return job

    def _log_transition(
        self, job: Job, new_status: JobStatus, transition: Transition, **extra: Any
    ) -> None:
        log_event(
            LOGGER,
            "job.transition",
            job_id=job.id,
            transition=transition.value,
            from_status=job.status.value,
            to_status=new_status.value,
            attempt=job.attempt_count,
            **extra,
        )

    def submit(self, file_ids: Sequence[str]) -> str:
        try:
            submission = JobSubmission(file_ids=file_ids)
        except ValidationError as exc:
            raise InvalidInput(str(exc)) from exc
        if len(submission.file_ids) > self._max_files:
            raise InvalidInput(
                f"at most {self._max_files} file references are allowed per job"
            )

        now = self._clock()
        job = Job(
            id=str(uuid.uuid4()),
            file_ids=submission.file_ids,
            max_attempts=self._policy.max_attempts,
            created_at=now,
            updated_at=now,
        )
        self._store.create(job)
        try:
            self._queue.enqueue(job.id)
        except Exception:
            # No queue entry means no worker would ever pick the row up.
            self._store.delete_unclaimed(job.id)
            LOGGER.exception("enqueue failed, submission rolled back", extra={"job_id": job.id})
            raise
        log_event(LOGGER, "job.submitted", job_id=job.id, files=len(job.file_ids))
        return job.id

    def claim(self, job_id: str) -> ClaimResult:
        while True:
            job = self._load(job_id)
            if job.status.is_terminal:
                LOGGER.info(
                    "claim on terminal job ignored",
                    extra={"job_id": job_id, "status": job.status.value},
                )
                return ClaimResult(job=job, already_terminal=True)

            now = self._clock()
            if (
                job.status is JobStatus.PROCESSING
                and job.lease_expires_at is not None
                and job.lease_expires_at > now
            ):
                LOGGER.info(
                    "duplicate delivery for a job still being processed",
                    extra={"job_id": job_id, "attempt": job.attempt_count},
                )
                return ClaimResult(
                    job=job,
                    retry_after=(job.lease_expires_at - now).total_seconds(),
                )

            if job.attempt_count >= job.max_attempts:
                exhausted = self._fail_terminal(
                    job,
                    Transition.FAIL
                    if job.status is JobStatus.PROCESSING
                    else Transition.FORCE_FAIL,
                    job.error_message or "processing was abandoned too many times",
                    retryable=True,
                    reason=f"retry budget exhausted after {job.attempt_count} attempts",
                )
                if exhausted is None:
                    continue
                return ClaimResult(job=exhausted, already_terminal=True)

            new_status = next_status(job.status, Transition.CLAIM)
            attempt = job.attempt_count + 1
            lease_expires_at = now + self._lease
            if not self._store.compare_and_set(
                job_id,
                job.status,
                job.attempt_count,
                status=new_status,
                attempt_count=attempt,
                lease_expires_at=lease_expires_at,
                updated_at=now,
            ):
                continue
            self._log_transition(job, new_status, Transition.CLAIM, new_attempt=attempt)
            claimed = job.model_copy(
                update={
                    "status": new_status,
                    "attempt_count": attempt,
                    "lease_expires_at": lease_expires_at,
                    "updated_at": now,
                }
            )
            return ClaimResult(job=claimed, attempt_token=attempt)

    def _owned(self, job: Job, attempt_token: int | None) -> bool:
        return attempt_token is not None and job.attempt_count == attempt_token

    def report_progress(
        self,
        job_id: str,
        attempt_token: int | None,
        percent: float | None = None,
        eta_seconds: float | None = None,
    ) -> bool:
        """Record a progress hint.

        Returns ``False`` (the superseded signal) when the caller no longer owns
        the job; nothing is written in that case.
        """

        try:
            hint = Progress(percent=percent, eta_seconds=eta_seconds)
        except ValidationError as exc:
            raise InvalidInput(str(exc)) from exc

        while True:
            job = self._load(job_id)
            if not self._owned(job, attempt_token) or job.status is not JobStatus.PROCESSING:
                LOGGER.warning(
                    "progress from superseded attempt ignored",
                    extra={"job_id": job_id, "attempt_token": attempt_token},
                )
                return False

            progress = job.progress
            if hint.percent is not None:
                progress = hint.percent if progress is None else max(progress, hint.percent)
            now = self._clock()
            if self._store.compare_and_set(
                job_id,
                JobStatus.PROCESSING,
                job.attempt_count,
                progress=progress,
                eta_seconds=hint.eta_seconds,
                updated_at=now,
                lease_expires_at=now + self._lease,
            ):
                return True

    def extend_claim(self, job_id: str, attempt_token: int | None) -> bool:
        job = self._load(job_id)
        if not self._owned(job, attempt_token) or job.status is not JobStatus.PROCESSING:
            return False
        return self._store.compare_and_set(
            job_id,
            JobStatus.PROCESSING,
            job.attempt_count,
            lease_expires_at=self._clock() + self._lease,
        )

    def _load_owned(self, job_id: str, attempt_token: int | None) -> Job:
        job = self._load(job_id)
        if not self._owned(job, attempt_token):
            LOGGER.warning(
                "write from superseded attempt rejected",
                extra={
                    "job_id": job_id,
                    "attempt_token": attempt_token,
                    "current_attempt": job.attempt_count,
                },
            )
            raise Superseded(
                f"attempt {attempt_token} of job {job_id} was superseded "
                f"by attempt {job.attempt_count}"
            )
        return job

    def complete(
        self, job_id: str, attempt_token: int | None, artifact_key: str, size: int
    ) -> Job:
        if not artifact_key:
            raise InvalidInput("artifact key must not be empty")
        if size < 0:
            raise InvalidInput("artifact size must not be negative")

        while True:
            job = self._load_owned(job_id, attempt_token)
            new_status = next_status(job.status, Transition.COMPLETE)
            now = self._clock()
            changes = {
                "status": new_status,
                "artifact_key": artifact_key,
                "artifact_size": size,
                "completed_at": now,
                "updated_at": now,
                "lease_expires_at": None,
            }
            if self._store.compare_and_set(job_id, job.status, job.attempt_count, **changes):
                self._log_transition(job, new_status, Transition.COMPLETE, size=size)
                return job.model_copy(update=changes)

    def fail(
        self, job_id: str, attempt_token: int | None, error: str, retryable: bool
    ) -> RetryDecision:
        while True:
            job = self._load_owned(job_id, attempt_token)
            if job.status is not JobStatus.PROCESSING:
                raise InvalidTransition(f"cannot fail a {job.status.value} job")

            decision = self._policy.decide(job.attempt_count, retryable, job.max_attempts)
            if isinstance(decision, RequeueForRetry):
                new_status = next_status(job.status, Transition.REQUEUE_FOR_RETRY)
                if not self._store.compare_and_set(
                    job_id,
                    job.status,
                    job.attempt_count,
                    status=new_status,
                    updated_at=self._clock(),
                    lease_expires_at=None,
                ):
                    continue
                self._queue.enqueue(job_id, delay=decision.delay_seconds)
                self._log_transition(
                    job,
                    new_status,
                    Transition.REQUEUE_FOR_RETRY,
                    delay_seconds=decision.delay_seconds,
                    error=error,
                )
                return decision

            if self._fail_terminal(
                job, Transition.FAIL, error, retryable=retryable, reason=decision.reason
            ) is None:
                continue
            return decision

    def force_fail(self, job_id: str, reason: str) -> Job:
        while True:
            job = self._load(job_id)
            failed = self._fail_terminal(
                job,
                Transition.FORCE_FAIL,
                reason,
                retryable=False,
                reason=f"force-failed: {reason}",
            )
            if failed is not None:
                return failed

    def _fail_terminal(
        self,
        job: Job,
        transition: Transition,
        message: str,
        *,
        retryable: bool,
        reason: str,
    ) -> Job | None:
        """Move ``job`` to Failed and dead-letter it; ``None`` if the CAS lost."""

        new_status = next_status(job.status, transition)
        now = self._clock()
        changes = {
            "status": new_status,
            "error_message": message,
            "error_retryable": retryable,
            "dead_lettered": True,
            "completed_at": now,
            "updated_at": now,
            "lease_expires_at": None,
        }
        if not self._store.compare_and_set(job.id, job.status, job.attempt_count, **changes):
            return None
        self._log_transition(job, new_status, transition, error=message)
        if self._queue.dead_letter(job.id, reason):
            LOGGER.warning("job dead-lettered", extra={"job_id": job.id, "reason": reason})
        return job.model_copy(update=changes)

    def status(self, job_id: str) -> JobView:
        return project(self._load(job_id), self._url_for)

    def dead_letters(self, limit: int = 100) -> list[DeadLetterEntry]:
        return self._queue.dead_letters(limit)


__all__ = ["LifecycleEngine"]
