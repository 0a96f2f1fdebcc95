"""
Error hierarchy for the pgscope observability pipeline.

Every error raised by pgscope extends ``PgscopeError`` so callers can catch
one base class, and every error carries an ``ErrorCategory`` that tells the
pipeline how it must be treated:

- **CONFIG:** bad level names, unknown presets, invalid settings. The
  operation that hit it reports failure; the previous state stays in effect.
- **EXTRACTION:** a request attribute (principal, forwarded-for header)
  could not be read. Treated as "field absent", never fatal.
- **SINK:** the log destination rejected a write. Dropped and counted;
  logging never fails the request it instruments.

Interceptor failures are *not* wrapped: ``SqlCallInterceptor`` re-raises the
caller's original exception object unchanged.

Examples:
    >>> err = InvalidLevelError("LOUD")
    >>> err.category
    <ErrorCategory.CONFIG: 'CONFIG'>
    >>> err.to_dict()["level"]
    'LOUD'

Tags:
    errors, exceptions, pgscope, observability
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Classification used when an error is reported or logged."""

    CONFIG = "CONFIG"             # Invalid level, preset or setting
    EXTRACTION = "EXTRACTION"     # Optional request field unavailable
    SINK = "SINK"                 # Log destination write failure
    INTERNAL = "INTERNAL"         # Unexpected state
    UNKNOWN = "UNKNOWN"


class PgscopeError(Exception):
    """
    Base exception for all pgscope errors.

    Subclasses set ``default_category``; callers may override it per instance.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        cause: Exception | None = None,
        **details: Any,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.cause = cause
        self.details = details

        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        result.update(self.details)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(PgscopeError):
    """
    Configuration error.

    Never fatal to the caller of a runtime operation: the operation reports
    failure and the original configuration remains in effect.
    """

    default_category = ErrorCategory.CONFIG


class InvalidLevelError(ConfigError):
    """A log level name could not be parsed."""

    def __init__(self, level: Any, message: str | None = None):
        self.level = level
        super().__init__(message or f"Invalid log level: {level!r}", level=level)


class InvalidPresetError(ConfigError):
    """An unknown logging preset name was requested."""

    def __init__(self, preset: Any, valid: list[str] | None = None):
        self.preset = preset
        self.valid = valid or []
        super().__init__(f"Invalid preset: {preset!r}", preset=preset, valid_presets=self.valid)


# =============================================================================
# RUNTIME ERRORS
# =============================================================================


class ContextExtractionError(PgscopeError):
    """An optional request-context field could not be derived."""

    default_category = ErrorCategory.EXTRACTION

    def __init__(self, field: str, cause: Exception | None = None):
        self.field = field
        super().__init__(f"Could not resolve context field: {field}", cause=cause, field=field)


class SinkError(PgscopeError):
    """The underlying log sink failed to accept a record."""

    default_category = ErrorCategory.SINK


def categorize_error(error: Exception) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, PgscopeError):
        return error.category
    if isinstance(error, (KeyError, AttributeError, ValueError)):
        return ErrorCategory.CONFIG
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "PgscopeError",
    "ConfigError",
    "InvalidLevelError",
    "InvalidPresetError",
    "ContextExtractionError",
    "SinkError",
    "categorize_error",
]
