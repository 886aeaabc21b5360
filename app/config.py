"""Environment-driven configuration shared by the API and worker processes."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    redis_url: str = Field(default="redis://queue:6379/0", alias="REDIS_URL")
    redis_queue_name: str = Field(default="downloads:jobs", alias="REDIS_QUEUE_NAME")
    database_url: str = Field(
        default="sqlite:///data/jobs.db", alias="DATABASE_URL"
    )

    s3_endpoint: str = Field(default="http://localhost:9000", alias="S3_ENDPOINT")
    s3_region: str = Field(default="us-east-1", alias="S3_REGION")
    s3_access_key_id: str = Field(default="admin", alias="S3_ACCESS_KEY_ID")
    s3_secret_access_key: str = Field(default="password", alias="S3_SECRET_ACCESS_KEY")
    s3_bucket_name: str = Field(default="downloads", alias="S3_BUCKET_NAME")
    s3_force_path_style: bool = Field(default=True, alias="S3_FORCE_PATH_STYLE")
    download_url_ttl_seconds: int = Field(
        default=3600, ge=1, alias="DOWNLOAD_URL_TTL_SECONDS"
    )
    source_root: Path = Field(default=Path("/app/files"), alias="SOURCE_ROOT")

    max_attempts: int = Field(default=4, ge=1, alias="MAX_ATTEMPTS")
    retry_base_seconds: float = Field(default=2.0, ge=0, alias="RETRY_BASE_SECONDS")
    retry_max_seconds: float = Field(default=300.0, ge=0, alias="RETRY_MAX_SECONDS")
    visibility_timeout: float = Field(default=180.0, gt=0, alias="VISIBILITY_TIMEOUT")
    heartbeat_interval: float = Field(default=30.0, gt=0, alias="HEARTBEAT_INTERVAL")
    poll_timeout: int = Field(default=5, ge=1, alias="POLL_TIMEOUT")
    max_backoff_seconds: int = Field(default=30, alias="MAX_BACKOFF_SECONDS")
    worker_concurrency: int = Field(default=2, ge=1, alias="WORKER_CONCURRENCY")
    max_files_per_job: int = Field(default=100, ge=1, alias="MAX_FILES_PER_JOB")

    service_name: str = Field(default="download-jobs", alias="SERVICE_NAME")
    api_prefix: str = Field(default="/v1", alias="API_PREFIX")
    allowed_origins: list[str] = Field(default_factory=list, alias="ALLOWED_ORIGINS")
    log_json: bool = Field(default=False, alias="LOG_JSON")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
        "populate_by_name": True,
    }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
