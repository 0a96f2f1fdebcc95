"""
Structured log dispatcher.

Single entry point for every diagnostic event the pipeline produces::

    dispatcher.emit(Level.WARN, "SQL", "Slow query", {"duration_ms": 1200})

Per call, in order:

1. Gate on the effective level of ``<namespace>.<category>``; a filtered
   event costs one dict walk and nothing else (no redaction, no formatting).
2. Redact the message (full pipeline) and every metadata value (by key).
3. Merge the current RequestContext; explicit metadata wins on conflict.
4. Stamp a UTC timestamp.
5. Shape the record: ``json`` keeps the message as-is, ``plain`` renders
   ``[category] message``; fields travel alongside in both shapes.
6. Write to the sink under ``<namespace>.<category>``. A sink failure is
   counted and dropped, never raised.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol

from pgscope.core.errors import SinkError
from pgscope.framework.logging.context import current_context
from pgscope.framework.logging.levels import Level, LevelManager
from pgscope.framework.logging.redaction import RedactionEngine
from pgscope.framework.logging.timing import TimingHandle

# Well-known categories
SQL = "SQL"
SECURITY = "SECURITY"
AUDIT = "AUDIT"
RESOURCES = "RESOURCES"
REQUEST = "REQUEST"
DATABASE = "DATABASE"
LOGGING = "LOGGING"

EVENT_FIELDS_KEY = "event_fields"
TRUNCATION_MARKER = "... [truncated]"
SLOW_QUERY_PREVIEW_CHARS = 100


class OutputFormat(str, Enum):
    PLAIN = "plain"
    JSON = "json"


@dataclass(frozen=True)
class LogEvent:
    """One emission, after redaction and context merge."""

    level: Level
    category: str
    message: str
    metadata: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


# =============================================================================
# Sinks
# =============================================================================


class LogSink(Protocol):
    def write(self, name: str, level: Level, message: str, fields: Mapping[str, Any]) -> None: ...


class StdlibSink:
    """Writes through ``logging.getLogger(name)``; structlog renders the record."""

    def write(self, name: str, level: Level, message: str, fields: Mapping[str, Any]) -> None:
        logging.getLogger(name).log(int(level), message, extra={EVENT_FIELDS_KEY: dict(fields)})


@dataclass(frozen=True)
class SinkRecord:
    name: str
    level: Level
    message: str
    fields: Mapping[str, Any]


class MemorySink:
    """Collects records in memory. Useful in tests and for debugging endpoints."""

    def __init__(self) -> None:
        self.records: list[SinkRecord] = []
        self._lock = threading.Lock()

    def write(self, name: str, level: Level, message: str, fields: Mapping[str, Any]) -> None:
        with self._lock:
            self.records.append(SinkRecord(name, level, message, dict(fields)))

    def by_category(self, category: str) -> list[SinkRecord]:
        return [r for r in self.records if r.fields.get("category") == category]

    def clear(self) -> None:
        with self._lock:
            self.records.clear()


# =============================================================================
# Dispatcher
# =============================================================================


class StructuredLogDispatcher:
    """Level-gated, redacting, context-aware front door to the log sink."""

    def __init__(
        self,
        levels: LevelManager,
        redaction: RedactionEngine,
        *,
        sink: LogSink | None = None,
        namespace: str = "pgscope",
        output_format: OutputFormat | str = OutputFormat.PLAIN,
        latency_logging_enabled: bool = True,
        slow_operation_threshold_ms: int = 5000,
        sql_enabled: bool = False,
        sql_slow_threshold_ms: int = 1000,
        sql_max_query_length: int = 2000,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.levels = levels
        self.redaction = redaction
        self.sink: LogSink = sink or StdlibSink()
        self.namespace = namespace
        self.output_format = OutputFormat(output_format)
        self.latency_logging_enabled = latency_logging_enabled
        self.slow_operation_threshold_ms = slow_operation_threshold_ms
        self.sql_enabled = sql_enabled
        self.sql_slow_threshold_ms = sql_slow_threshold_ms
        self.sql_max_query_length = sql_max_query_length
        self._clock = clock
        self._dropped = 0
        self.last_sink_error: SinkError | None = None
        self._dropped_lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        levels: LevelManager,
        redaction: RedactionEngine,
        sink: LogSink | None = None,
    ) -> StructuredLogDispatcher:
        return cls(
            levels,
            redaction,
            sink=sink,
            namespace=settings.namespace,
            output_format=settings.format,
            latency_logging_enabled=settings.latency_logging_enabled,
            slow_operation_threshold_ms=settings.slow_operation_threshold_ms,
            sql_enabled=settings.sql_enabled,
            sql_slow_threshold_ms=settings.sql_slow_threshold_ms,
            sql_max_query_length=settings.sql_max_query_length,
        )

    @property
    def dropped_events(self) -> int:
        """Number of events lost to sink failures."""
        return self._dropped

    def sink_name(self, category: str) -> str:
        return f"{self.namespace}.{category}" if self.namespace else category

    # ── Core ────────────────────────────────────────────────────────

    def emit(
        self,
        level: Level,
        category: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
        error: BaseException | str | None = None,
    ) -> LogEvent | None:
        """Emit one event. Returns the event written, or None if filtered."""
        name = self.sink_name(category)
        if level < self.levels.get_level(name):
            return None

        redacted_message = self.redaction.redact(message) or ""
        fields: dict[str, Any] = {
            key: self.redaction.redact_value(key, value) for key, value in (metadata or {}).items()
        }

        ctx = current_context()
        if ctx is not None:
            for key, value in ctx.log_fields().items():
                fields.setdefault(key, value)

        error_detail = None
        if isinstance(error, BaseException):
            error_detail = self.redaction.redact_exception(error)
            fields.setdefault("error_type", type(error).__name__)
        elif error is not None:
            error_detail = self.redaction.redact(str(error))
        if error_detail is not None:
            fields["error"] = error_detail

        event = LogEvent(
            level=level,
            category=category,
            message=redacted_message,
            metadata=MappingProxyType(fields),
            error=error_detail,
            timestamp=self._clock(),
        )
        self._write(name, event)
        return event

    def format_event(self, event: LogEvent) -> tuple[str, dict[str, Any]]:
        """Message text and out-of-band fields for the configured shape."""
        fields = {"category": event.category, "timestamp": event.timestamp.isoformat()}
        fields.update(event.metadata)
        if self.output_format is OutputFormat.PLAIN:
            return f"[{event.category}] {event.message}", fields
        return event.message, fields

    def _write(self, name: str, event: LogEvent) -> None:
        try:
            message, fields = self.format_event(event)
            self.sink.write(name, event.level, message, fields)
        except Exception as exc:
            with self._dropped_lock:
                self._dropped += 1
                self.last_sink_error = SinkError(f"Sink write failed for {name}", cause=exc, sink=name)

    # ── Level shortcuts ─────────────────────────────────────────────

    def trace(self, category: str, message: str, metadata: Mapping[str, Any] | None = None) -> LogEvent | None:
        return self.emit(Level.TRACE, category, message, metadata)

    def debug(self, category: str, message: str, metadata: Mapping[str, Any] | None = None) -> LogEvent | None:
        return self.emit(Level.DEBUG, category, message, metadata)

    def info(self, category: str, message: str, metadata: Mapping[str, Any] | None = None) -> LogEvent | None:
        return self.emit(Level.INFO, category, message, metadata)

    def warn(
        self,
        category: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
        error: BaseException | str | None = None,
    ) -> LogEvent | None:
        return self.emit(Level.WARN, category, message, metadata, error)

    def error(
        self,
        category: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
        error: BaseException | str | None = None,
    ) -> LogEvent | None:
        return self.emit(Level.ERROR, category, message, metadata, error)

    # ── Derived operations ──────────────────────────────────────────

    def log_operation(
        self,
        category: str,
        operation: str,
        duration_ms: float,
        success: bool = True,
    ) -> LogEvent | None:
        """INFO normally, WARN when slow, ERROR when failed (failure wins)."""
        metadata = {"operation": operation, "duration_ms": duration_ms, "success": success}
        level = Level.INFO
        message = f"Operation '{operation}' completed in {duration_ms:.0f}ms"

        if self.latency_logging_enabled and duration_ms > self.slow_operation_threshold_ms:
            level = Level.WARN
            message = (
                f"Slow operation '{operation}' took {duration_ms:.0f}ms "
                f"(threshold: {self.slow_operation_threshold_ms}ms)"
            )

        if not success:
            level = Level.ERROR
            message = f"Operation '{operation}' failed after {duration_ms:.0f}ms"

        return self.emit(level, category, message, metadata)

    def redact_query(self, sql: str | None) -> str:
        """Truncate ``sql`` to the configured maximum, then redact it."""
        query = sql or ""
        if len(query) > self.sql_max_query_length:
            query = query[: self.sql_max_query_length] + TRUNCATION_MARKER
        return self.redaction.redact(query) or ""

    def log_query(self, sql: str | None, duration_ms: float, row_count: int) -> LogEvent | None:
        """DEBUG normally, WARN over the slow-query threshold. No-op when SQL logging is off."""
        if not self.sql_enabled:
            return None

        redacted_query = self.redact_query(sql)
        metadata = {"duration_ms": duration_ms, "row_count": row_count, "query": redacted_query}
        level = Level.DEBUG
        message = f"Query executed in {duration_ms:.0f}ms, {row_count} rows"

        if duration_ms > self.sql_slow_threshold_ms:
            level = Level.WARN
            message = (
                f"Slow query took {duration_ms:.0f}ms (threshold: {self.sql_slow_threshold_ms}ms): "
                f"{redacted_query[:SLOW_QUERY_PREVIEW_CHARS]}"
            )

        return self.emit(level, SQL, message, metadata)

    def log_security_event(self, event: str, user: str, details: str, success: bool) -> LogEvent | None:
        metadata = {
            "security_event": event,
            "user": user,
            "details": self.redaction.redact(details),
            "success": success,
        }
        level = Level.INFO if success else Level.WARN
        return self.emit(level, SECURITY, f"Security event: {event} for user '{user}'", metadata)

    def log_audit(self, action: str, resource: str, user: str, outcome: str) -> LogEvent | None:
        metadata = {
            "action": action,
            "resource": resource,
            "user": user,
            "outcome": outcome,
            "timestamp": self._clock().isoformat(),
        }
        message = f"User '{user}' performed '{action}' on '{resource}': {outcome}"
        return self.emit(Level.INFO, AUDIT, message, metadata)

    def start_timing(self, category: str, operation: str) -> TimingHandle:
        """Open a timing handle; closing it calls ``log_operation`` exactly once."""
        return TimingHandle(self, category, operation)


__all__ = [
    "SQL",
    "SECURITY",
    "AUDIT",
    "RESOURCES",
    "REQUEST",
    "DATABASE",
    "LOGGING",
    "OutputFormat",
    "LogEvent",
    "LogSink",
    "StdlibSink",
    "SinkRecord",
    "MemorySink",
    "StructuredLogDispatcher",
]
