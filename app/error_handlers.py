"""Maps core errors onto structured HTTP responses."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from jobs.errors import InvalidInput, NotFound

logger = logging.getLogger("downloads.api")


class ErrorResponse(BaseModel):
    """Structured error response model."""

    error: str = Field(..., description="Error type or name")
    detail: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Machine-readable error code")
    status_code: int = Field(..., description="HTTP status code")


def error_to_response(error: str, detail: str, code: str, status_code: int) -> JSONResponse:
    body = ErrorResponse(error=error, detail=detail, code=code, status_code=status_code)
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    return error_to_response(
        error="NotFound",
        detail="job not found",
        code="NOT_FOUND",
        status_code=status.HTTP_404_NOT_FOUND,
    )


async def invalid_input_handler(request: Request, exc: InvalidInput) -> JSONResponse:
    return error_to_response(
        error="InvalidInput",
        detail=str(exc),
        code="VALIDATION_ERROR",
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return error_to_response(
        error=exc.__class__.__name__,
        detail=str(exc.detail),
        code=_get_error_code(exc.status_code),
        status_code=exc.status_code,
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception occurred", exc_info=exc)
    return error_to_response(
        error="InternalError",
        detail="An internal error occurred",
        code="INTERNAL_ERROR",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


def _get_error_code(status_code: int) -> str:
    error_codes = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        405: "METHOD_NOT_ALLOWED",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_ERROR",
        503: "SERVICE_UNAVAILABLE",
    }
    return error_codes.get(status_code, "UNKNOWN_ERROR")


def install_error_handlers(app: Any) -> None:
    """Install error handlers on the FastAPI app."""
    app.add_exception_handler(NotFound, not_found_handler)
    app.add_exception_handler(InvalidInput, invalid_input_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
