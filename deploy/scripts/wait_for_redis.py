#!/usr/bin/env python3
"""Block until the job queue's Redis answers, so dependents start in order."""

from __future__ import annotations

import logging
import os
import sys

import redis
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from app.config import get_settings
from app.logging import configure_logging

LOGGER = logging.getLogger("downloads.wait_for_redis")


def wait_for_redis(client: redis.Redis, timeout: float, interval: float = 1.0) -> bool:
    retrying = Retrying(
        retry=retry_if_exception_type(redis.RedisError),
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        before_sleep=before_sleep_log(LOGGER, logging.INFO),
        reraise=True,
    )
    try:
        retrying(client.ping)
    except redis.RedisError as exc:
        LOGGER.error("redis unavailable", extra={"error": str(exc)})
        return False
    return True


def main() -> int:
    settings = get_settings()
    configure_logging(settings)
    timeout = float(os.environ.get("WAIT_FOR_REDIS_TIMEOUT", "30"))
    client = redis.from_url(settings.redis_url)
    try:
        ready = wait_for_redis(client, timeout)
    finally:
        client.close()
    if not ready:
        print(f"Timed out waiting for redis at {settings.redis_url}", file=sys.stderr)
        return 1
    LOGGER.info("redis is reachable", extra={"queue": settings.redis_queue_name})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
