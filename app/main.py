"""Entrypoint for the API service."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from jobs.artifacts import S3ArtifactStore
from jobs.main import build_engine

from .config import get_settings
from .error_handlers import install_error_handlers
from .logging import configure_logging
from .routes import router

LOGGER = logging.getLogger("downloads.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(settings)
    LOGGER.info("starting api service", extra={"service": settings.service_name})
    client = redis.from_url(settings.redis_url, decode_responses=False)
    try:
        if getattr(app.state, "engine", None) is None:
            artifacts = S3ArtifactStore.from_settings(settings)
            app.state.engine, _ = build_engine(settings, client, artifacts)
        yield
    finally:
        client.close()
        LOGGER.info("stopped api service", extra={"service": settings.service_name})


def create_app() -> FastAPI:
    settings = get_settings()
    application = FastAPI(title="Download Jobs API", lifespan=lifespan)

    if settings.allowed_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=settings.allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    install_error_handlers(application)
    application.include_router(router, prefix=settings.api_prefix)
    return application


def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
