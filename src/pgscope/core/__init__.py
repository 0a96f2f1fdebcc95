"""Core building blocks: error hierarchy and settings."""

from pgscope.core.errors import (
    ConfigError,
    ContextExtractionError,
    ErrorCategory,
    InvalidLevelError,
    InvalidPresetError,
    PgscopeError,
    SinkError,
)
from pgscope.core.settings import LoggingSettings, get_settings

__all__ = [
    "ErrorCategory",
    "PgscopeError",
    "ConfigError",
    "InvalidLevelError",
    "InvalidPresetError",
    "ContextExtractionError",
    "SinkError",
    "LoggingSettings",
    "get_settings",
]
