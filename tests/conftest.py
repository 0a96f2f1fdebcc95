"""
Shared pytest fixtures and configuration for pgscope tests.

This module provides:
- Request-context cleanup for test isolation
- Pre-wired pipeline pieces writing to an in-memory sink
- Fake resource collectors with deterministic snapshots

Usage:
    Fixtures are auto-discovered by pytest. Simply use them as function
    arguments (pytest injects them automatically).

    def test_something(dispatcher, sink):
        dispatcher.info("SQL", "hello")
        assert sink.records
"""

import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import Generator

import pytest

# Ensure pgscope package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pgscope.core.settings import LoggingSettings, get_settings
from pgscope.framework.logging import context as context_module
from pgscope.framework.logging.dispatcher import MemorySink, StructuredLogDispatcher
from pgscope.framework.logging.levels import LevelManager
from pgscope.framework.logging.redaction import RedactionEngine
from pgscope.framework.logging.resources import ResourceSnapshot


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if test_path.parts and test_path.parts[0] == "api":
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_request_context() -> Generator[None, None, None]:
    """No test starts or ends inside someone else's request."""
    context_module._request_context.set(None)
    yield
    context_module._request_context.set(None)


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# =============================================================================
# Pipeline fixtures
# =============================================================================


@pytest.fixture
def settings() -> LoggingSettings:
    return LoggingSettings(_env_file=None)


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def levels() -> Generator[LevelManager, None, None]:
    """Level manager letting everything through (TRACE at root)."""
    manager = LevelManager(root_level="TRACE")
    yield manager
    manager.shutdown()


@pytest.fixture
def redaction() -> RedactionEngine:
    return RedactionEngine()


@pytest.fixture
def dispatcher(levels: LevelManager, redaction: RedactionEngine, sink: MemorySink) -> StructuredLogDispatcher:
    return StructuredLogDispatcher(levels, redaction, sink=sink, sql_enabled=True)


# =============================================================================
# Resource fixtures
# =============================================================================


def make_snapshot(heap_used_mb: float = 100.0, heap_max_mb: float = 1000.0, thread_count: int = 10) -> ResourceSnapshot:
    return ResourceSnapshot(
        timestamp=datetime(2026, 1, 1, tzinfo=UTC),
        heap_used_mb=heap_used_mb,
        heap_max_mb=heap_max_mb,
        heap_committed_mb=heap_used_mb,
        non_heap_used_mb=50.0,
        non_heap_committed_mb=50.0,
        thread_count=thread_count,
        daemon_thread_count=2,
        peak_thread_count=thread_count,
        available_processors=4,
        uptime_seconds=3723.0,
    )


class FakeCollector:
    """Returns a fixed snapshot and counts calls."""

    def __init__(self, snapshot: ResourceSnapshot | None = None) -> None:
        self.snapshot = snapshot or make_snapshot()
        self.calls = 0

    def collect(self) -> ResourceSnapshot:
        self.calls += 1
        return self.snapshot


@pytest.fixture
def fake_collector() -> FakeCollector:
    return FakeCollector()
