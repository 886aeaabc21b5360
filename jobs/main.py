"""Module entrypoint for running a worker process."""

from __future__ import annotations

import logging
import signal
from types import FrameType

import redis

from app.config import Settings, get_settings
from app.logging import configure_logging

from .artifacts import S3ArtifactStore
from .engine import LifecycleEngine
from .processing import ZipArchiveProcessor
from .queue import RedisWorkQueue
from .retry import RetryPolicy
from .store import JobStore
from .worker import Worker

LOGGER = logging.getLogger("downloads.worker")


def build_engine(
    settings: Settings, client: redis.Redis, artifacts: S3ArtifactStore
) -> tuple[LifecycleEngine, RedisWorkQueue]:
    queue = RedisWorkQueue(
        client,
        prefix=settings.redis_queue_name,
        visibility_timeout=settings.visibility_timeout,
    )
    engine = LifecycleEngine(
        JobStore(settings.database_url),
        queue,
        artifacts.presigned_url,
        retry_policy=RetryPolicy(
            base_delay=settings.retry_base_seconds,
            max_delay=settings.retry_max_seconds,
            max_attempts=settings.max_attempts,
        ),
        lease_seconds=settings.visibility_timeout,
        max_files_per_job=settings.max_files_per_job,
    )
    return engine, queue


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    client = redis.from_url(settings.redis_url, decode_responses=False)
    artifacts = S3ArtifactStore.from_settings(settings)
    engine, queue = build_engine(settings, client, artifacts)
    processor = ZipArchiveProcessor(settings.source_root, artifacts)
    worker = Worker(engine, queue, processor, settings)

    def _shutdown(signum: int, _frame: FrameType | None) -> None:
        LOGGER.info("stopping worker", extra={"signal": signum})
        worker.stop()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)
    try:
        worker.run_forever()
    finally:
        client.close()


if __name__ == "__main__":
    main()
