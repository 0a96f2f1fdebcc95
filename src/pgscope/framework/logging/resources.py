"""
Periodic process resource sampling.

``ResourceSampler`` takes a ``ResourceSnapshot`` on a fixed interval from a
daemon thread and routes it through the dispatcher under ``RESOURCES``:

    heap usage > 90%   → WARN
    heap usage > 75%   → INFO
    otherwise          → DEBUG
    threads    > 500   → WARN (separately, may fire alongside the above)

A run that starts while the previous one is still executing is skipped, so
samples never overlap.

Process metrics come from psutil: "heap" is the resident set size measured
against total system memory, "non-heap" is the virtual memory size.
"""

from __future__ import annotations

import os
import threading
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import psutil
import structlog

from pgscope.framework.logging.dispatcher import RESOURCES, LogEvent, StructuredLogDispatcher
from pgscope.framework.logging.levels import Level

logger = structlog.get_logger(__name__)

HEAP_WARN_PERCENT = 90.0
HEAP_INFO_PERCENT = 75.0
THREAD_WARN_COUNT = 500

_MB = 1024 * 1024


def calculate_percentage(used: float | None, maximum: float | None) -> float:
    """``used / maximum`` as a percentage; 0 when the maximum is unknown or zero."""
    if used is None or maximum is None or maximum <= 0:
        return 0.0
    return used / maximum * 100.0


def format_uptime(seconds: float) -> str:
    """``1d 2h 3m`` / ``2h 3m 4s`` / ``3m 4s`` / ``4s``."""
    total = max(int(seconds), 0)
    days, rem = divmod(total, 86400)
    hours, rem = divmod(rem, 3600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


@dataclass(frozen=True)
class ResourceSnapshot:
    timestamp: datetime
    heap_used_mb: float
    heap_max_mb: float
    heap_committed_mb: float
    non_heap_used_mb: float
    non_heap_committed_mb: float
    thread_count: int
    daemon_thread_count: int
    peak_thread_count: int
    available_processors: int
    uptime_seconds: float

    @property
    def heap_usage_percent(self) -> float:
        return calculate_percentage(self.heap_used_mb, self.heap_max_mb)

    @property
    def uptime_formatted(self) -> str:
        return format_uptime(self.uptime_seconds)

    def to_dict(self) -> dict[str, Any]:
        return {
            "heap_used_mb": round(self.heap_used_mb, 2),
            "heap_max_mb": round(self.heap_max_mb, 2),
            "heap_committed_mb": round(self.heap_committed_mb, 2),
            "heap_usage_percent": round(self.heap_usage_percent, 2),
            "non_heap_used_mb": round(self.non_heap_used_mb, 2),
            "non_heap_committed_mb": round(self.non_heap_committed_mb, 2),
            "thread_count": self.thread_count,
            "daemon_thread_count": self.daemon_thread_count,
            "peak_thread_count": self.peak_thread_count,
            "available_processors": self.available_processors,
            "uptime_seconds": round(self.uptime_seconds, 1),
            "uptime": self.uptime_formatted,
        }


@dataclass(frozen=True)
class ResourceSummary:
    """Compact view for status endpoints."""

    heap_used_mb: float
    heap_max_mb: float
    heap_usage_percent: float
    thread_count: int
    uptime: str

    @classmethod
    def from_snapshot(cls, snapshot: ResourceSnapshot) -> ResourceSummary:
        return cls(
            heap_used_mb=round(snapshot.heap_used_mb, 2),
            heap_max_mb=round(snapshot.heap_max_mb, 2),
            heap_usage_percent=round(snapshot.heap_usage_percent, 2),
            thread_count=snapshot.thread_count,
            uptime=snapshot.uptime_formatted,
        )


class ResourceCollector(Protocol):
    def collect(self) -> ResourceSnapshot: ...


class ProcessCollector:
    """Reads the current process through psutil."""

    def __init__(self, pid: int | None = None) -> None:
        self._process = psutil.Process(pid)
        self._peak_threads = 0

    def collect(self) -> ResourceSnapshot:
        with self._process.oneshot():
            memory = self._process.memory_info()
            thread_count = self._process.num_threads()
            created = self._process.create_time()
        self._peak_threads = max(self._peak_threads, thread_count)
        return ResourceSnapshot(
            timestamp=datetime.now(UTC),
            heap_used_mb=memory.rss / _MB,
            heap_max_mb=psutil.virtual_memory().total / _MB,
            heap_committed_mb=memory.rss / _MB,
            non_heap_used_mb=memory.vms / _MB,
            non_heap_committed_mb=memory.vms / _MB,
            thread_count=thread_count,
            daemon_thread_count=sum(1 for t in threading.enumerate() if t.daemon),
            peak_thread_count=self._peak_threads,
            available_processors=psutil.cpu_count() or os.cpu_count() or 1,
            uptime_seconds=time.time() - created,
        )


class ResourceSampler:
    """Samples resources on an interval and escalates by threshold.

    Example:
        >>> sampler = ResourceSampler(dispatcher, interval_seconds=60)
        >>> sampler.start()
        >>> # ... later ...
        >>> sampler.stop()
    """

    def __init__(
        self,
        dispatcher: StructuredLogDispatcher,
        collector: ResourceCollector | None = None,
        *,
        interval_seconds: float = 60.0,
        enabled: bool = True,
    ) -> None:
        self.dispatcher = dispatcher
        self.collector: ResourceCollector = collector or ProcessCollector()
        self.interval_seconds = interval_seconds
        self.enabled = enabled
        self.skipped_runs = 0
        self.sample_count = 0
        self.last_snapshot: ResourceSnapshot | None = None
        self._running = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        dispatcher: StructuredLogDispatcher,
        collector: ResourceCollector | None = None,
    ) -> ResourceSampler:
        return cls(
            dispatcher,
            collector,
            interval_seconds=settings.resource_logging_interval_seconds,
            enabled=settings.resource_logging_enabled,
        )

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def sample(self) -> ResourceSnapshot:
        """Collect one snapshot and log it."""
        snapshot = self.collector.collect()
        self.last_snapshot = snapshot
        self.sample_count += 1
        self.classify(snapshot)
        return snapshot

    def classify(self, snapshot: ResourceSnapshot) -> list[LogEvent]:
        """Emit the heap event and, when needed, the thread-count warning."""
        metrics = snapshot.to_dict()
        heap_percent = snapshot.heap_usage_percent
        events = []

        if heap_percent > HEAP_WARN_PERCENT:
            heap_event = self.dispatcher.warn(
                RESOURCES, f"High memory usage: {heap_percent:.1f}% of maximum", metrics
            )
        elif heap_percent > HEAP_INFO_PERCENT:
            heap_event = self.dispatcher.info(
                RESOURCES, f"Elevated memory usage: {heap_percent:.1f}% of maximum", metrics
            )
        else:
            heap_event = self.dispatcher.debug(
                RESOURCES, f"Resource usage: heap {heap_percent:.1f}%", metrics
            )
        if heap_event is not None:
            events.append(heap_event)

        if snapshot.thread_count > THREAD_WARN_COUNT:
            thread_event = self.dispatcher.emit(
                Level.WARN,
                RESOURCES,
                f"High thread count: {snapshot.thread_count} (threshold: {THREAD_WARN_COUNT})",
                {"thread_count": snapshot.thread_count, "peak_thread_count": snapshot.peak_thread_count},
            )
            if thread_event is not None:
                events.append(thread_event)
        return events

    def run_once(self) -> ResourceSnapshot | None:
        """Scheduled entry point. Returns None when a previous run is still going."""
        if not self._running.acquire(blocking=False):
            self.skipped_runs += 1
            logger.debug("resource_sample_skipped", skipped_runs=self.skipped_runs)
            return None
        try:
            return self.sample()
        except Exception as e:
            logger.warning("resource_sample_failed", error=str(e))
            return None
        finally:
            self._running.release()

    def summary(self) -> ResourceSummary:
        snapshot = self.last_snapshot or self.collector.collect()
        return ResourceSummary.from_snapshot(snapshot)

    def start(self) -> bool:
        """Start sampling in a daemon thread. Returns False if disabled or already running."""
        if not self.enabled:
            return False
        if self.is_running:
            logger.warning("resource_sampler_already_started")
            return False

        self._stop_event.clear()

        def _loop() -> None:
            logger.info("resource_sampler_started", interval_seconds=self.interval_seconds)
            while not self._stop_event.wait(self.interval_seconds):
                self.run_once()
            logger.info("resource_sampler_stopped")

        self._thread = threading.Thread(target=_loop, name="pgscope-resource-sampler", daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None


__all__ = [
    "HEAP_WARN_PERCENT",
    "HEAP_INFO_PERCENT",
    "THREAD_WARN_COUNT",
    "calculate_percentage",
    "format_uptime",
    "ResourceSnapshot",
    "ResourceSummary",
    "ResourceCollector",
    "ProcessCollector",
    "ResourceSampler",
]
