from __future__ import annotations

import json
import logging
from typing import Any, Dict

from app.config import Settings


def configure_logging(settings: Settings) -> None:
    log_format = (
        "%(message)s"
        if settings.log_json
        else "%(asctime)s %(levelname)s %(name)s %(message)s"
    )
    logging.basicConfig(level=settings.log_level.upper(), format=log_format)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)


def log_event(logger: logging.Logger, event: str, **payload: Any) -> None:
    record: Dict[str, Any] = {"event": event, **payload}
    logger.info(json.dumps(record, default=str))
