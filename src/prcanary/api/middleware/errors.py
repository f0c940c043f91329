"""
Error-handling middleware: maps prcanary errors to RFC 7807 responses.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from prcanary.api.schemas import ProblemDetail
from prcanary.core.errors import (
    CanaryError,
    ConfigError,
    NotFoundError,
    StaleEvent,
    UnavailableError,
    ValidationError,
)
from prcanary.core.logging import get_logger

logger = get_logger(__name__)

# ── Error type → (HTTP status, code) ─────────────────────────────────────

ERROR_STATUS: list[tuple[type[CanaryError], int, str]] = [
    (ValidationError, 400, "VALIDATION_FAILED"),
    (StaleEvent, 409, "STALE"),
    (NotFoundError, 404, "NOT_FOUND"),
    (UnavailableError, 503, "UNAVAILABLE"),
    (ConfigError, 500, "CONFIG"),
]


def status_for_error(exc: CanaryError) -> tuple[int, str]:
    """Resolve an error to HTTP status and code, defaulting to 500."""
    for error_type, status, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status, code
    return 500, "INTERNAL"


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    code: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(title=title, status=status, detail=detail, instance=instance, code=code)
    return JSONResponse(
        status_code=status,
        content=body.model_dump(),
        media_type="application/problem+json",
        headers=headers,
    )


async def canary_error_handler(request: Request, exc: CanaryError) -> JSONResponse:
    status, code = status_for_error(exc)
    logger.info("api_error", path=request.url.path, status=status, **exc.to_dict())
    headers = None
    if exc.retry_after is not None:
        headers = {"Retry-After": str(int(exc.retry_after))}
    return problem_response(
        status=status,
        title=type(exc).__name__,
        detail=exc.message,
        instance=str(request.url),
        code=code,
        headers=headers,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions; returns 500 with ProblemDetail."""
    logger.error("api_unhandled_error", path=request.url.path, exc_info=exc)
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=str(request.url),
        code="INTERNAL",
    )
