"""Logging pipeline settings.

Every knob of the observability pipeline (redaction, request context,
SQL logging, latency thresholds, resource sampling) is declared here once,
validated by pydantic, and read from the environment with the
``PGSCOPE_LOGGING_`` prefix or from a ``.env`` file.

Examples:
    >>> from pgscope.core.settings import LoggingSettings
    >>> settings = LoggingSettings(format="json", sql_enabled=True)
    >>> settings.redact_replacement
    '[REDACTED]'

    From the environment::

        PGSCOPE_LOGGING_FORMAT=json
        PGSCOPE_LOGGING_REDACT_PATTERNS=password,secret,token
        PGSCOPE_LOGGING_CATEGORY_LEVELS='{"pgscope.SQL": "DEBUG"}'

Tags:
    settings, configuration, pydantic, environment, logging
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

DEFAULT_REDACT_PATTERNS: list[str] = [
    "password",
    "secret",
    "token",
    "key",
    "credential",
    "auth",
    "apikey",
    "api_key",
    "bearer",
    "jwt",
]

_LEVEL_NAMES = {"TRACE", "DEBUG", "INFO", "WARN", "WARNING", "ERROR"}


class LoggingSettings(BaseSettings):
    """Configuration for the request-scoped logging pipeline.

    Fields
    ──────
    format                 : ``plain`` (``[category] message``) or ``json``
    namespace              : Prefix of every sink name (``<namespace>.<category>``)
    level / category_levels: Baseline levels before any runtime override
    sql_*                  : Query logging switches and limits
    redact_*               : Redaction engine behaviour
    correlation_id_* / include_* : Request-context fields to attach
    *_threshold_ms         : Slow request / operation escalation thresholds
    resource_logging_*     : Periodic resource sampler
    """

    model_config = SettingsConfigDict(
        env_prefix="PGSCOPE_LOGGING_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────────
    format: Literal["plain", "json"] = "plain"
    namespace: str = "pgscope"
    level: str = "INFO"
    category_levels: dict[str, str] = Field(
        default_factory=dict,
        description="Baseline level per sink name, e.g. {'pgscope.SQL': 'DEBUG'}",
    )

    # ── SQL logging ──────────────────────────────────────────────
    sql_enabled: bool = False
    sql_slow_threshold_ms: int = Field(default=1000, ge=0)
    sql_max_query_length: int = Field(default=2000, gt=0)

    # ── Redaction ────────────────────────────────────────────────
    redact_enabled: bool = True
    redact_patterns: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_REDACT_PATTERNS)
    )
    redact_replacement: str = "[REDACTED]"
    redact_mask_pii: bool = False
    redact_connection_strings: bool = True
    redact_key_match: Literal["substring", "word"] = "substring"

    # ── Request context ──────────────────────────────────────────
    correlation_id_enabled: bool = True
    correlation_id_header: str = "X-Correlation-ID"
    include_user: bool = True
    include_instance: bool = True
    include_client_ip: bool = True

    # ── Performance ──────────────────────────────────────────────
    latency_logging_enabled: bool = True
    slow_request_threshold_ms: int = Field(default=5000, ge=0)
    slow_operation_threshold_ms: int = Field(default=5000, ge=0)
    resource_logging_enabled: bool = False
    resource_logging_interval_seconds: float = Field(default=60, gt=0)

    @field_validator("format", mode="before")
    @classmethod
    def _normalize_format(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @field_validator("level")
    @classmethod
    def _validate_level(cls, v: str) -> str:
        upper_v = v.strip().upper()
        if upper_v not in _LEVEL_NAMES:
            raise ValueError(f"Invalid log level: {v}. Must be one of {sorted(_LEVEL_NAMES)}")
        return upper_v

    @field_validator("category_levels")
    @classmethod
    def _validate_category_levels(cls, v: dict[str, str]) -> dict[str, str]:
        normalized = {}
        for name, level in v.items():
            upper_level = level.strip().upper()
            if upper_level not in _LEVEL_NAMES:
                raise ValueError(f"Invalid log level for {name!r}: {level}")
            normalized[name] = upper_level
        return normalized

    @field_validator("redact_patterns", mode="before")
    @classmethod
    def _split_patterns(cls, v: Any) -> Any:
        # Accept "a,b,c" from the environment as well as a real list
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v


@lru_cache
def get_settings() -> LoggingSettings:
    """Get cached settings instance."""
    return LoggingSettings()


__all__ = ["DEFAULT_REDACT_PATTERNS", "LoggingSettings", "get_settings"]
