"""
Request and response models for the log-control API.

Errors follow RFC 7807 (``ProblemDetail``); successful mutations return a
``LevelChangeResponse`` describing the effective state afterwards.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class ProblemDetail(BaseModel):
    """RFC 7807 problem response."""

    type: str = Field(default="about:blank", description="Error type URI (usually 'about:blank')")
    title: str = Field(description="Short human-readable error summary")
    status: int = Field(description="HTTP status code (e.g., 400, 404, 500)")
    detail: str = Field(default="", description="Human-readable explanation of the error")
    instance: str = Field(default="", description="URI of the failing request")


class LevelChangeRequest(BaseModel):
    level: str = Field(description="TRACE, DEBUG, INFO, WARN or ERROR")
    duration_minutes: float | None = Field(
        default=None,
        gt=0,
        description="Revert automatically after this many minutes",
    )


class LevelResponse(BaseModel):
    logger: str
    level: str
    overridden: bool = False
    expires_at: datetime | None = None


class LevelChangeResponse(BaseModel):
    success: bool = True
    logger: str
    level: str
    expires_at: datetime | None = None
    message: str = ""


class ResourceSummaryResponse(BaseModel):
    heap_used_mb: float
    heap_max_mb: float
    heap_usage_percent: float
    thread_count: int
    uptime: str


class LogConfigResponse(BaseModel):
    levels: dict[str, str]
    temporary_overrides: dict[str, datetime]
    format: str
    sql_logging_enabled: bool
    redaction_enabled: bool
    resources: ResourceSummaryResponse


class PresetInfo(BaseModel):
    name: str
    level: str
    description: str
