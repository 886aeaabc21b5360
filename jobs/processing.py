"""Processing capability invoked by workers, plus the zip archive strategy."""

from __future__ import annotations

import logging
import tempfile
import zipfile
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from botocore.exceptions import BotoCoreError, ClientError

from .artifacts import S3ArtifactStore
from .errors import PermanentFailure, TransientFailure
from .schemas import ArtifactDescriptor

LOGGER = logging.getLogger("downloads.processing")

ProgressCallback = Callable[[float | None, float | None], None]


@dataclass(frozen=True)
class ProcessingRequest:
    job_id: str
    file_ids: list[str]
    attempt: int


class Processor(Protocol):
    """Turns a job's file references into an uploaded artifact.

    Implementations raise :class:`TransientFailure` or
    :class:`PermanentFailure`; anything else is treated as transient.
    The callback takes ``(percent, eta_seconds)``.
    """

    def __call__(
        self, request: ProcessingRequest, report: ProgressCallback
    ) -> ArtifactDescriptor: ...


class ZipArchiveProcessor:
    """Bundles the referenced files into one zip archive in object storage."""

    def __init__(
        self,
        source_root: Path,
        store: S3ArtifactStore,
        key_prefix: str = "jobs",
    ) -> None:
        self._source_root = source_root
        self._store = store
        self._key_prefix = key_prefix.strip("/")

    def artifact_key(self, job_id: str) -> str:
        return f"{self._key_prefix}/{job_id}.zip"

    def _resolve(self, file_id: str) -> Path:
        root = self._source_root.resolve()
        path = (root / file_id).resolve()
        if root not in path.parents or not path.is_file():
            raise PermanentFailure(f"file not found: {file_id}")
        return path

    def __call__(
        self, request: ProcessingRequest, report: ProgressCallback
    ) -> ArtifactDescriptor:
        sources = [(file_id, self._resolve(file_id)) for file_id in request.file_ids]
        key = self.artifact_key(request.job_id)
        total = len(sources)

        with tempfile.TemporaryDirectory(prefix="download-") as workdir:
            archive_path = Path(workdir) / "archive.zip"
            try:
                with zipfile.ZipFile(archive_path, "w", zipfile.ZIP_DEFLATED) as archive:
                    for index, (file_id, path) in enumerate(sources, start=1):
                        archive.write(path, arcname=file_id)
                        # Uploading is the last step, keep a slice of the bar for it.
                        report(round(90.0 * index / total, 2), None)
            except FileNotFoundError as exc:
                raise PermanentFailure(f"file not found: {exc.filename}") from exc
            except OSError as exc:
                raise TransientFailure(f"could not build archive: {exc}") from exc

            try:
                size = self._store.upload(archive_path, key)
            except (BotoCoreError, ClientError) as exc:
                LOGGER.warning(
                    "artifact upload failed",
                    extra={"job_id": request.job_id, "error": str(exc)},
                )
                raise TransientFailure(f"artifact upload failed: {exc}") from exc

        report(100.0, 0.0)
        return ArtifactDescriptor(key=key, size=size)


__all__ = ["ProcessingRequest", "Processor", "ProgressCallback", "ZipArchiveProcessor"]
