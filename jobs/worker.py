"""Worker runtime loop."""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor, wait
from contextlib import contextmanager

import redis

from app.config import Settings, get_settings

from .engine import LifecycleEngine
from .errors import InvalidTransition, NotFound, ProcessingFailure, Superseded
from .processing import ProcessingRequest, Processor
from .queue import Delivery, WorkQueue
from .schemas import ClaimResult

LOGGER = logging.getLogger("downloads.worker")

UNEXPECTED_ERROR_MESSAGE = "unexpected error while preparing the download"


class Worker:
    """Pulls job ids off the queue and drives each claim to one outcome."""

    def __init__(
        self,
        engine: LifecycleEngine,
        queue: WorkQueue,
        processor: Processor,
        settings: Settings | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._engine = engine
        self._queue = queue
        self._processor = processor
        self._settings = settings or get_settings()
        self._stop = stop_event or threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def run_forever(self) -> None:
        slots = max(1, self._settings.worker_concurrency)
        LOGGER.info(
            "worker started",
            extra={"service": self._settings.service_name, "slots": slots},
        )
        with ThreadPoolExecutor(max_workers=slots, thread_name_prefix="job-slot") as pool:
            futures = [pool.submit(self._slot_loop, slot) for slot in range(slots)]
            wait(futures)
        LOGGER.info("worker stopped", extra={"service": self._settings.service_name})

    def _slot_loop(self, slot: int) -> None:
        backoff = 1
        while not self._stop.is_set():
            try:
                self.run_once()
                backoff = 1
            except redis.RedisError as exc:  # pragma: no cover - network failure path
                LOGGER.exception("redis error", extra={"slot": slot, "error": str(exc)})
                self._stop.wait(backoff)
                backoff = min(backoff * 2, self._settings.max_backoff_seconds)
            except Exception:  # pragma: no cover - the delivery is redelivered later
                LOGGER.exception("unhandled error in job slot", extra={"slot": slot})

    def run_once(self, timeout: int | None = None) -> bool:
        """Handle at most one delivery; returns whether one was received."""

        delivery = self._queue.dequeue(
            self._settings.poll_timeout if timeout is None else timeout
        )
        if delivery is None:
            return False
        self._handle(delivery)
        return True

    def _handle(self, delivery: Delivery) -> None:
        try:
            claim = self._engine.claim(delivery.job_id)
        except NotFound:
            LOGGER.warning("dropping delivery for unknown job", extra={"job_id": delivery.job_id})
            self._queue.ack(delivery.ack_token)
            return
        except sqlite3.Error as exc:
            LOGGER.exception("claim failed", extra={"job_id": delivery.job_id, "error": str(exc)})
            self._queue.nack(
                delivery.ack_token, self._engine.retry_policy.delay_for(1)
            )
            return

        if claim.already_terminal:
            self._queue.ack(delivery.ack_token)
            return
        if not claim.acquired:
            self._queue.nack(delivery.ack_token, self._recheck_delay(claim))
            return

        with self._heartbeat(delivery, claim):
            self._execute(claim)
        self._queue.ack(delivery.ack_token)

    def _recheck_delay(self, claim: ClaimResult) -> float:
        # Look again once the current owner's lease would have run out.
        if claim.retry_after is None:
            return 0
        return max(1.0, claim.retry_after + 1.0)

    def _execute(self, claim: ClaimResult) -> None:
        job = claim.job
        token = claim.attempt_token
        request = ProcessingRequest(
            job_id=job.id, file_ids=list(job.file_ids), attempt=job.attempt_count
        )

        def report(percent: float | None, eta_seconds: float | None) -> None:
            self._engine.report_progress(job.id, token, percent, eta_seconds)

        LOGGER.info("processing job", extra={"job_id": job.id, "attempt": job.attempt_count})
        try:
            artifact = self._processor(request, report)
        except ProcessingFailure as exc:
            LOGGER.warning(
                "job attempt failed",
                extra={"job_id": job.id, "error": str(exc), "retryable": exc.retryable},
            )
            self._report_failure(job.id, token, str(exc), exc.retryable)
            return
        except Exception as exc:
            LOGGER.exception("job attempt crashed", extra={"job_id": job.id, "error": str(exc)})
            self._report_failure(job.id, token, UNEXPECTED_ERROR_MESSAGE, True)
            return

        try:
            self._engine.complete(job.id, token, artifact.key, artifact.size)
        except (Superseded, InvalidTransition) as exc:
            LOGGER.warning("completion rejected", extra={"job_id": job.id, "error": str(exc)})
            return
        LOGGER.info(
            "job completed",
            extra={"job_id": job.id, "artifact": artifact.key, "size": artifact.size},
        )

    def _report_failure(
        self, job_id: str, token: int | None, message: str, retryable: bool
    ) -> None:
        try:
            decision = self._engine.fail(job_id, token, message, retryable)
        except (Superseded, InvalidTransition) as exc:
            LOGGER.warning("failure report rejected", extra={"job_id": job_id, "error": str(exc)})
            return
        LOGGER.info("failure recorded", extra={"job_id": job_id, "decision": repr(decision)})

    @contextmanager
    def _heartbeat(self, delivery: Delivery, claim: ClaimResult) -> Iterator[None]:
        done = threading.Event()
        interval = self._settings.heartbeat_interval

        def beat() -> None:
            while not done.wait(interval):
                try:
                    self._queue.extend(delivery.ack_token, self._settings.visibility_timeout)
                    self._engine.extend_claim(delivery.job_id, claim.attempt_token)
                except Exception:  # pragma: no cover - next beat tries again
                    LOGGER.exception("heartbeat failed", extra={"job_id": delivery.job_id})

        thread = threading.Thread(target=beat, name=f"heartbeat-{delivery.job_id}", daemon=True)
        thread.start()
        try:
            yield
        finally:
            done.set()
            thread.join()


__all__ = ["Worker"]
