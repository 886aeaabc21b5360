#!/usr/bin/env python3
"""Create the artifact bucket if it does not exist yet."""

from __future__ import annotations

import logging
import os
import sys

from botocore.exceptions import BotoCoreError, ClientError

from app.config import get_settings
from app.logging import configure_logging
from jobs.artifacts import S3ArtifactStore

LOGGER = logging.getLogger("downloads.init_bucket")


def main() -> int:
    settings = get_settings()
    configure_logging(settings)
    max_retries = int(os.environ.get("INIT_BUCKET_MAX_RETRIES", "30"))
    retry_delay = float(os.environ.get("INIT_BUCKET_RETRY_DELAY", "2"))
    LOGGER.info(
        "initializing artifact storage",
        extra={"endpoint": settings.s3_endpoint, "bucket": settings.s3_bucket_name},
    )
    store = S3ArtifactStore.from_settings(settings)
    try:
        store.ensure_bucket(max_retries=max_retries, retry_delay=retry_delay)
    except (BotoCoreError, ClientError) as exc:
        print(f"Max retries reached, bucket unavailable: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
