"""Object storage sink for finished archives."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from app.config import Settings

LOGGER = logging.getLogger("downloads.artifacts")


def _is_not_found(exc: ClientError) -> bool:
    error = exc.response.get("Error", {})
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return error.get("Code") in ("404", "NoSuchBucket", "NotFound") or status == 404


class S3ArtifactStore:
    """Uploads archives and signs time-limited download URLs."""

    def __init__(self, client: Any, bucket: str, url_ttl_seconds: int = 3600) -> None:
        self._client = client
        self._bucket = bucket
        self._url_ttl_seconds = url_ttl_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3ArtifactStore":
        client = boto3.client(
            "s3",
            endpoint_url=settings.s3_endpoint,
            region_name=settings.s3_region,
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            config=Config(
                s3={"addressing_style": "path" if settings.s3_force_path_style else "auto"}
            ),
        )
        return cls(client, settings.s3_bucket_name, settings.download_url_ttl_seconds)

    @property
    def bucket(self) -> str:
        return self._bucket

    def upload(self, path: Path, key: str) -> int:
        size = path.stat().st_size
        self._client.upload_file(str(path), self._bucket, key)
        LOGGER.info("artifact uploaded", extra={"key": key, "size": size})
        return size

    def presigned_url(self, key: str) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self._bucket, "Key": key},
            ExpiresIn=self._url_ttl_seconds,
        )

    def _head_or_create(self) -> bool:
        try:
            self._client.head_bucket(Bucket=self._bucket)
            LOGGER.info("bucket already exists", extra={"bucket": self._bucket})
            return False
        except ClientError as exc:
            if not _is_not_found(exc):
                raise
        self._client.create_bucket(Bucket=self._bucket)
        LOGGER.info("bucket created", extra={"bucket": self._bucket})
        return True

    def ensure_bucket(self, max_retries: int = 30, retry_delay: float = 2.0) -> bool:
        """Create the bucket if it is missing.

        Returns ``True`` when the bucket was created, ``False`` when it already
        existed. Errors other than not-found (the endpoint may still be
        starting) are retried until ``max_retries`` is used up.
        """

        retrying = Retrying(
            retry=retry_if_exception_type((BotoCoreError, ClientError)),
            stop=stop_after_attempt(max_retries),
            wait=wait_fixed(retry_delay),
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
            reraise=True,
        )
        LOGGER.info(
            "checking bucket",
            extra={"bucket": self._bucket, "max_retries": max_retries},
        )
        return retrying(self._head_or_create)


__all__ = ["S3ArtifactStore"]
