"""
Tests for the structured log dispatcher.

Tests verify:
- Level gating happens before any redaction work
- Messages and metadata are redacted, context is merged, explicit keys win
- Flat and structured record shapes
- Sink failures are counted, never raised
- Operation, query, security and audit classification
"""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from pgscope.framework.logging.context import ContextPropagator
from pgscope.framework.logging.dispatcher import (
    AUDIT,
    SECURITY,
    SQL,
    MemorySink,
    OutputFormat,
    StdlibSink,
    StructuredLogDispatcher,
)
from pgscope.framework.logging.levels import Level, LevelManager
from pgscope.framework.logging.redaction import RedactionEngine
from pgscope.framework.logging.timing import TimingHandle


class BrokenSink:
    def write(self, name, level, message, fields):
        raise OSError("disk full")


class TestGating:
    def test_filtered_event_does_no_work(self, sink):
        redaction = MagicMock(wraps=RedactionEngine())
        dispatcher = StructuredLogDispatcher(LevelManager(), redaction, sink=sink)

        assert dispatcher.debug("SQL", "password=secret", {"token": "x"}) is None
        assert sink.records == []
        redaction.redact.assert_not_called()
        redaction.redact_value.assert_not_called()

    def test_category_override_opens_gate(self, sink):
        levels = LevelManager()
        dispatcher = StructuredLogDispatcher(levels, RedactionEngine(), sink=sink)
        levels.set_level("pgscope.SQL", "DEBUG")

        assert dispatcher.debug("SQL", "visible") is not None
        assert dispatcher.debug("AUDIT", "hidden") is None
        assert [r.name for r in sink.records] == ["pgscope.SQL"]

    def test_trace_shortcut(self, dispatcher, sink):
        dispatcher.trace("SQL", "very detailed")
        assert sink.records[0].level is Level.TRACE


class TestEmit:
    def test_message_and_metadata_redacted(self, dispatcher, sink):
        event = dispatcher.info("AUTH", "login password=abc", {"password": "hunter2", "rows": 3})

        assert event.message == "login password=[REDACTED]"
        assert event.metadata["password"] == "[REDACTED]"
        assert event.metadata["rows"] == 3
        record = sink.records[0]
        assert record.name == "pgscope.AUTH"
        assert record.message == "[AUTH] login password=[REDACTED]"
        assert record.fields["category"] == "AUTH"

    def test_context_merged_explicit_wins(self, dispatcher, sink):
        propagator = ContextPropagator()
        with propagator.request_scope({"X-Correlation-ID": "corr-1"}, {"instance": "prod"}, "/", "GET", principal="alice"):
            event = dispatcher.info("REQUEST", "hello", {"user": "bob"})

        assert event.metadata["user"] == "bob"
        assert event.metadata["correlationId"] == "corr-1"
        assert event.metadata["instance"] == "prod"
        assert "clientIp" not in event.metadata

    def test_no_context_outside_request(self, dispatcher):
        event = dispatcher.info("REQUEST", "hello")
        assert "correlationId" not in event.metadata

    def test_metadata_is_read_only(self, dispatcher):
        event = dispatcher.info("REQUEST", "hello", {"a": 1})
        with pytest.raises(TypeError):
            event.metadata["a"] = 2

    def test_timestamp_from_clock(self, levels, sink):
        fixed = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        dispatcher = StructuredLogDispatcher(levels, RedactionEngine(), sink=sink, clock=lambda: fixed)
        event = dispatcher.info("X", "hello")
        assert event.timestamp == fixed
        assert sink.records[0].fields["timestamp"] == fixed.isoformat()

    def test_json_format_keeps_message(self, levels, sink):
        dispatcher = StructuredLogDispatcher(levels, RedactionEngine(), sink=sink, output_format="json")
        assert dispatcher.output_format is OutputFormat.JSON
        dispatcher.info("SQL", "hello")
        assert sink.records[0].message == "hello"

    def test_exception_detail_redacted(self, dispatcher, sink):
        event = dispatcher.error("DATABASE", "connect failed", error=ValueError("password=abc"))
        assert event.error == "ValueError: password=[REDACTED]"
        assert sink.records[0].fields["error_type"] == "ValueError"

    def test_string_error_redacted(self, dispatcher):
        event = dispatcher.warn("DATABASE", "retry", error="token=abc")
        assert event.error == "token=[REDACTED]"


class TestSinkFailures:
    def test_sink_error_is_dropped(self, levels):
        dispatcher = StructuredLogDispatcher(levels, RedactionEngine(), sink=BrokenSink())

        dispatcher.info("SQL", "one")
        dispatcher.error("SQL", "two")

        assert dispatcher.dropped_events == 2
        assert "pgscope.SQL" in dispatcher.last_sink_error.message

    def test_stdlib_sink_writes_fields(self, caplog):
        caplog.set_level(Level.INFO, logger="pgscope_sink_test")
        StdlibSink().write("pgscope_sink_test.SQL", Level.WARN, "[SQL] slow", {"duration_ms": 1200})

        record = caplog.records[-1]
        assert record.name == "pgscope_sink_test.SQL"
        assert record.levelno == Level.WARN
        assert record.event_fields == {"duration_ms": 1200}


class TestLogOperation:
    def test_fast_success_is_info(self, dispatcher):
        event = dispatcher.log_operation("DATABASE", "refresh", 120)
        assert event.level is Level.INFO
        assert event.metadata["success"] is True

    def test_slow_is_warn(self, dispatcher):
        event = dispatcher.log_operation("DATABASE", "refresh", 6000)
        assert event.level is Level.WARN
        assert "Slow operation" in event.message

    def test_failure_beats_slow(self, dispatcher):
        event = dispatcher.log_operation("DATABASE", "refresh", 6000, success=False)
        assert event.level is Level.ERROR

    def test_latency_logging_disabled(self, levels, sink):
        dispatcher = StructuredLogDispatcher(levels, RedactionEngine(), sink=sink, latency_logging_enabled=False)
        assert dispatcher.log_operation("DATABASE", "refresh", 60000).level is Level.INFO


class TestLogQuery:
    def test_disabled_is_noop(self, levels, sink):
        dispatcher = StructuredLogDispatcher(levels, RedactionEngine(), sink=sink)
        assert dispatcher.log_query("SELECT 1", 5, 1) is None
        assert sink.records == []

    def test_fast_query_is_debug(self, dispatcher, sink):
        event = dispatcher.log_query("SELECT 1", 5, 1)
        assert event.level is Level.DEBUG
        assert event.category == SQL
        assert event.metadata["row_count"] == 1
        assert sink.records[0].name == "pgscope.SQL"

    def test_truncated_before_redaction(self, levels, sink):
        dispatcher = StructuredLogDispatcher(
            levels, RedactionEngine(), sink=sink, sql_enabled=True, sql_max_query_length=20
        )
        sql = "SELECT * FROM pg_stat_activity WHERE state = 'active'"
        event = dispatcher.log_query(sql, 5, 0)
        assert event.metadata["query"] == sql[:20] + "... [truncated]"

    def test_slow_query_is_warn_with_preview(self, dispatcher):
        sql = "SELECT * FROM users WHERE password='hunter2' AND " + "x = 1 AND " * 30
        event = dispatcher.log_query(sql, 1500, 2)

        assert event.level is Level.WARN
        assert "Slow query took 1500ms" in event.message
        assert "hunter2" not in event.message
        assert "hunter2" not in event.metadata["query"]
        preview = event.message.split("): ", 1)[1]
        assert len(preview) == 100


class TestSecurityAndAudit:
    def test_security_success_is_info(self, dispatcher):
        event = dispatcher.log_security_event("LOGIN", "alice", "token=abc", True)
        assert event.level is Level.INFO
        assert event.category == SECURITY
        assert event.metadata["details"] == "token=[REDACTED]"

    def test_security_failure_is_warn(self, dispatcher):
        assert dispatcher.log_security_event("LOGIN", "alice", "bad password", False).level is Level.WARN

    def test_audit_fields(self, dispatcher):
        event = dispatcher.log_audit("SET_LOG_LEVEL", "pgscope.SQL", "alice", "level=DEBUG")
        assert event.level is Level.INFO
        assert event.category == AUDIT
        for key in ("action", "resource", "user", "outcome", "timestamp"):
            assert key in event.metadata
        assert event.metadata["user"] == "alice"


class TestStartTiming:
    def test_returns_handle(self, dispatcher):
        handle = dispatcher.start_timing("DATABASE", "refresh")
        assert isinstance(handle, TimingHandle)
        assert not handle.closed


class TestFromSettings:
    def test_uses_settings(self, settings, levels):
        settings = settings.model_copy(update={"format": "json", "sql_enabled": True, "namespace": "app"})
        sink = MemorySink()
        dispatcher = StructuredLogDispatcher.from_settings(settings, levels, RedactionEngine(), sink=sink)
        dispatcher.log_query("SELECT 1", 1, 1)
        assert sink.records[0].name == "app.SQL"
        assert sink.records[0].message.startswith("Query executed")
