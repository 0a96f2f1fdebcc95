"""
Tests for the resource sampler.

Tests verify:
- Percentages against zero/unknown maxima are 0
- Heap and thread-count classification
- Overlapping runs are skipped
- The daemon loop starts and stops cleanly
"""

import threading
import time

import pytest

from conftest import FakeCollector, make_snapshot
from pgscope.framework.logging.dispatcher import RESOURCES
from pgscope.framework.logging.levels import Level
from pgscope.framework.logging.resources import (
    ProcessCollector,
    ResourceSampler,
    ResourceSummary,
    calculate_percentage,
    format_uptime,
)


class TestHelpers:
    @pytest.mark.parametrize(
        ("used", "maximum", "expected"),
        [(50, 200, 25.0), (10, 0, 0.0), (10, None, 0.0), (10, -1, 0.0), (None, 100, 0.0)],
    )
    def test_calculate_percentage(self, used, maximum, expected):
        assert calculate_percentage(used, maximum) == expected

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(90061, "1d 1h 1m"), (7384, "2h 3m 4s"), (184, "3m 4s"), (4, "4s"), (0, "0s")],
    )
    def test_format_uptime(self, seconds, expected):
        assert format_uptime(seconds) == expected

    def test_snapshot_to_dict(self):
        data = make_snapshot(heap_used_mb=250, heap_max_mb=1000).to_dict()
        assert data["heap_usage_percent"] == 25.0
        assert data["uptime"] == "1h 2m 3s"


class TestClassification:
    def sample_with(self, dispatcher, **kwargs):
        sampler = ResourceSampler(dispatcher, FakeCollector(make_snapshot(**kwargs)))
        sampler.sample()
        return sampler

    def test_high_heap_warns(self, dispatcher, sink):
        self.sample_with(dispatcher, heap_used_mb=950)
        assert [r.level for r in sink.records] == [Level.WARN]
        assert sink.records[0].fields["category"] == RESOURCES

    def test_elevated_heap_info(self, dispatcher, sink):
        self.sample_with(dispatcher, heap_used_mb=800)
        assert [r.level for r in sink.records] == [Level.INFO]

    def test_normal_heap_debug(self, dispatcher, sink):
        self.sample_with(dispatcher, heap_used_mb=100)
        assert [r.level for r in sink.records] == [Level.DEBUG]

    def test_thread_warning_is_independent(self, dispatcher, sink):
        self.sample_with(dispatcher, heap_used_mb=950, thread_count=600)
        assert [r.level for r in sink.records] == [Level.WARN, Level.WARN]
        assert "thread count" in sink.records[1].message

    def test_thread_warning_with_normal_heap(self, dispatcher, sink):
        self.sample_with(dispatcher, heap_used_mb=100, thread_count=501)
        assert [r.level for r in sink.records] == [Level.DEBUG, Level.WARN]

    def test_unknown_maximum_is_debug(self, dispatcher, sink):
        self.sample_with(dispatcher, heap_used_mb=100, heap_max_mb=0)
        assert sink.records[0].fields["heap_usage_percent"] == 0.0
        assert sink.records[0].level is Level.DEBUG


class BlockingCollector(FakeCollector):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def collect(self):
        self.entered.set()
        self.release.wait(5)
        return super().collect()


class TestScheduling:
    def test_overlapping_run_is_skipped(self, dispatcher):
        collector = BlockingCollector()
        sampler = ResourceSampler(dispatcher, collector)

        worker = threading.Thread(target=sampler.run_once)
        worker.start()
        assert collector.entered.wait(5)

        assert sampler.run_once() is None
        assert sampler.skipped_runs == 1

        collector.release.set()
        worker.join(5)
        assert collector.calls == 1
        assert sampler.run_once() is not None

    def test_failing_collector_does_not_raise(self, dispatcher):
        class Broken:
            def collect(self):
                raise RuntimeError("no /proc")

        sampler = ResourceSampler(dispatcher, Broken())
        assert sampler.run_once() is None
        # The guard is released after a failure
        assert sampler.run_once() is None
        assert sampler.skipped_runs == 0

    def test_start_and_stop(self, dispatcher, fake_collector):
        sampler = ResourceSampler(dispatcher, fake_collector, interval_seconds=0.01)
        assert sampler.start()
        assert sampler.start() is False

        deadline = time.monotonic() + 2
        while fake_collector.calls < 2 and time.monotonic() < deadline:
            time.sleep(0.01)
        sampler.stop()

        assert fake_collector.calls >= 2
        assert not sampler.is_running

    def test_disabled_does_not_start(self, dispatcher, fake_collector):
        sampler = ResourceSampler(dispatcher, fake_collector, enabled=False)
        assert sampler.start() is False
        assert not sampler.is_running

    def test_from_settings(self, settings, dispatcher, fake_collector):
        sampler = ResourceSampler.from_settings(settings, dispatcher, fake_collector)
        assert sampler.interval_seconds == 60
        assert sampler.enabled is False


class TestSummary:
    def test_summary_from_last_sample(self, dispatcher):
        sampler = ResourceSampler(dispatcher, FakeCollector(make_snapshot(heap_used_mb=500)))
        sampler.sample()
        summary = sampler.summary()
        assert isinstance(summary, ResourceSummary)
        assert summary.heap_usage_percent == 50.0
        assert summary.uptime == "1h 2m 3s"


class TestProcessCollector:
    def test_reads_current_process(self):
        snapshot = ProcessCollector().collect()
        assert snapshot.heap_used_mb > 0
        assert snapshot.heap_max_mb > snapshot.heap_used_mb
        assert snapshot.thread_count >= 1
        assert snapshot.peak_thread_count >= snapshot.thread_count
        assert snapshot.available_processors >= 1
        assert snapshot.uptime_seconds >= 0
