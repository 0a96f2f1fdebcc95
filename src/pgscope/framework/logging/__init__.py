"""
pgscope logging - request-scoped, redacting, runtime-tunable logging.

This module provides:
- Request context propagation via contextvars
- Redaction of secrets (and optionally PII) before anything is written
- A level-gated structured dispatcher with category namespaces
- Runtime level overrides with scheduled reversion
- Operation timing, SQL call interception and resource sampling

Usage:
    from pgscope.framework.logging import build_observability, configure_logging

    # Configure once at startup
    configure_logging(settings)
    obs = build_observability(settings)

    with obs.propagator.request_scope(headers, query, "/api/instance/prod/stats", "GET"):
        obs.dispatcher.info("REQUEST", "Fetching stats", {"table": "pg_stat_statements"})

    with obs.dispatcher.start_timing("DATABASE", "refresh_stats"):
        refresh()
"""

from pgscope.framework.logging.config import (
    Observability,
    build_observability,
    configure_logging,
    is_configured,
)
from pgscope.framework.logging.context import (
    ContextPropagator,
    RequestContext,
    current_context,
    current_correlation_id,
    set_field,
)
from pgscope.framework.logging.dispatcher import (
    AUDIT,
    RESOURCES,
    SECURITY,
    SQL,
    LogEvent,
    MemorySink,
    OutputFormat,
    StdlibSink,
    StructuredLogDispatcher,
)
from pgscope.framework.logging.levels import Level, LevelManager, LogPreset, parse_level
from pgscope.framework.logging.redaction import RedactionEngine
from pgscope.framework.logging.resources import ResourceSampler, ResourceSnapshot, ResourceSummary
from pgscope.framework.logging.sql import SqlCallInterceptor, logged_sql
from pgscope.framework.logging.timing import TimingHandle, log_timing

__all__ = [
    # Configuration
    "configure_logging",
    "is_configured",
    "build_observability",
    "Observability",
    # Context
    "ContextPropagator",
    "RequestContext",
    "current_context",
    "current_correlation_id",
    "set_field",
    # Dispatch
    "StructuredLogDispatcher",
    "LogEvent",
    "OutputFormat",
    "StdlibSink",
    "MemorySink",
    "SQL",
    "SECURITY",
    "AUDIT",
    "RESOURCES",
    # Levels
    "Level",
    "LevelManager",
    "LogPreset",
    "parse_level",
    # Redaction
    "RedactionEngine",
    # Instrumentation
    "TimingHandle",
    "log_timing",
    "SqlCallInterceptor",
    "logged_sql",
    "ResourceSampler",
    "ResourceSnapshot",
    "ResourceSummary",
]
