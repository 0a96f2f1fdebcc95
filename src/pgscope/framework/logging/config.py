"""
Logging configuration.

Provides a single entry point for configuring structured logging, plus the
wiring that builds the whole pipeline from one ``LoggingSettings``.

Both structlog loggers (internal events such as ``log_level_set``) and the
stdlib records written by the dispatcher's sink go through one
``structlog.stdlib.ProcessorFormatter``, so every line has the same shape:

- ``format="json"``  : one JSON object per line (JSONRenderer)
- ``format="plain"`` : human-readable key=value lines (ConsoleRenderer)

Usage:
    # Configure at application startup
    from pgscope.framework.logging import build_observability, configure_logging

    settings = LoggingSettings()
    configure_logging(settings)
    obs = build_observability(settings)
    obs.dispatcher.info("REQUEST", "hello")
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import IO, Any

import structlog
from structlog.types import Processor

from pgscope.core.settings import LoggingSettings, get_settings
from pgscope.framework.logging.context import ContextPropagator, add_context_processor
from pgscope.framework.logging.dispatcher import EVENT_FIELDS_KEY, LogSink, StructuredLogDispatcher
from pgscope.framework.logging.levels import LevelManager, parse_level
from pgscope.framework.logging.redaction import RedactionEngine
from pgscope.framework.logging.resources import ResourceCollector, ResourceSampler
from pgscope.framework.logging.sql import SqlCallInterceptor

# Track if logging has been configured
_configured = False
_handler: logging.Handler | None = None


def _lift_event_fields(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Copy dispatcher fields carried on a stdlib record into the event dict."""
    record = event_dict.get("_record")
    fields = getattr(record, EVENT_FIELDS_KEY, None) if record is not None else None
    if fields:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
    return event_dict


def _shared_processors() -> list[Processor]:
    return [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        # Add timestamp in UTC ISO-8601
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_context_processor,
        structlog.processors.StackInfoRenderer(),
    ]


def _renderer(log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=False)


def configure_logging(
    settings: LoggingSettings | None = None,
    stream: IO[str] | None = None,
    force: bool = False,
) -> None:
    """
    Configure structured logging for the application.

    Should be called once at startup. Subsequent calls are no-ops unless
    force=True.

    Args:
        settings: Pipeline settings (defaults to ``get_settings()``)
        stream: Output stream (default: stderr)
        force: Reconfigure even if already configured
    """
    global _configured, _handler

    if _configured and not force:
        return

    settings = settings or get_settings()
    shared = _shared_processors()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[_lift_event_fields, *shared],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            _renderer(settings.format),
        ],
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)
    root.addHandler(handler)
    root.setLevel(int(parse_level(settings.level)))
    _handler = handler

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    _configured = True


def is_configured() -> bool:
    """Check if logging has been configured."""
    return _configured


# =============================================================================
# Pipeline wiring
# =============================================================================


@dataclass
class Observability:
    """Every pipeline component built from one settings object."""

    settings: LoggingSettings
    levels: LevelManager
    redaction: RedactionEngine
    propagator: ContextPropagator
    dispatcher: StructuredLogDispatcher
    sql: SqlCallInterceptor
    sampler: ResourceSampler

    def start(self) -> None:
        self.sampler.start()

    def shutdown(self) -> None:
        self.sampler.stop()
        self.levels.shutdown()


def build_observability(
    settings: LoggingSettings | None = None,
    *,
    sink: LogSink | None = None,
    collector: ResourceCollector | None = None,
    sync_stdlib: bool = True,
) -> Observability:
    settings = settings or get_settings()
    levels = LevelManager.from_settings(settings, sync_stdlib=sync_stdlib)
    redaction = RedactionEngine.from_settings(settings)
    dispatcher = StructuredLogDispatcher.from_settings(settings, levels, redaction, sink=sink)
    return Observability(
        settings=settings,
        levels=levels,
        redaction=redaction,
        propagator=ContextPropagator.from_settings(settings),
        dispatcher=dispatcher,
        sql=SqlCallInterceptor(dispatcher),
        sampler=ResourceSampler.from_settings(settings, dispatcher, collector),
    )


__all__ = [
    "configure_logging",
    "is_configured",
    "Observability",
    "build_observability",
]
