"""Common FastAPI dependency helpers."""

from fastapi import Request

from jobs.engine import LifecycleEngine


def get_engine(request: Request) -> LifecycleEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise RuntimeError("job engine not initialized")
    return engine
