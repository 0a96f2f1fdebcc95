"""
Error-handling middleware - maps pipeline errors to RFC 7807 responses.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from pgscope.api.schemas import ProblemDetail
from pgscope.core.errors import ErrorCategory, PgscopeError

# ── Error category → HTTP status mapping ─────────────────────────────────

CATEGORY_TO_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.CONFIG: 400,
    ErrorCategory.EXTRACTION: 400,
    ErrorCategory.SINK: 503,
    ErrorCategory.INTERNAL: 500,
    ErrorCategory.UNKNOWN: 500,
}


def status_for_category(category: ErrorCategory) -> int:
    """Resolve an error category to HTTP status, defaulting to 500."""
    return CATEGORY_TO_STATUS.get(category, 500)


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(title=title, status=status, detail=detail, instance=instance)
    return JSONResponse(status_code=status, content=body.model_dump())


async def pgscope_error_handler(request: Request, exc: PgscopeError) -> JSONResponse:
    """Return ``PgscopeError`` subclasses as problem responses."""
    return problem_response(
        status=status_for_category(exc.category),
        title=exc.__class__.__name__,
        detail=exc.message,
        instance=str(request.url.path),
    )
