"""Tests for _processor module."""

import threading
import time
from collections.abc import Sequence

from telecart._exporter import ExportResult, OTLPSpanExporter
from telecart._metrics import Meter
from telecart._processor import (
    BackgroundProcessor,
    BatchSpanProcessor,
    PeriodicMetricReader,
    PipelineState,
)
from telecart._resource import Resource
from telecart._tracer import Tracer
from telecart._types import MetricData, SpanData, SpanKind, SpanStatus


def _make_span(name: str = "test") -> SpanData:
    return SpanData(
        span_id="abcdef0123456789",
        trace_id="0123456789abcdef0123456789abcdef",
        name=name,
        kind=SpanKind.INTERNAL,
        status=SpanStatus.OK,
        start_time_ns=0,
        end_time_ns=1000,
    )


class _SlowSpanExporter(OTLPSpanExporter):
    """Real OTLP exporter whose RPC takes long enough to overlap a second shutdown."""

    def _call(self, request) -> None:  # type: ignore[no-untyped-def]
        time.sleep(0.3)
        super()._call(request)


class _ListExporter:
    """Collects every exported batch."""

    def __init__(self, delay_s: float = 0.0, fail: bool = False) -> None:
        self.batches: list[list] = []
        self.shutdown_calls = 0
        self._delay_s = delay_s
        self._fail = fail
        self._lock = threading.Lock()

    def export(self, batch: Sequence) -> ExportResult:
        if self._delay_s:
            time.sleep(self._delay_s)
        if self._fail:
            raise RuntimeError("exporter exploded")
        with self._lock:
            self.batches.append(list(batch))
        return ExportResult.SUCCESS

    def shutdown(self) -> None:
        self.shutdown_calls += 1

    @property
    def items(self) -> list:
        return [item for batch in self.batches for item in batch]


class TestBackgroundProcessor:
    def test_state_machine(self) -> None:
        proc = BackgroundProcessor(lambda: None, flush_interval_ms=50)
        assert proc.state is PipelineState.INITIALIZED
        proc.start()
        assert proc.state is PipelineState.RUNNING
        assert proc.is_running
        assert proc.shutdown(timeout_s=1.0) is True
        assert proc.state is PipelineState.STOPPED
        assert not proc.is_running

    def test_timer_flushes(self) -> None:
        calls: list[int] = []
        proc = BackgroundProcessor(lambda: calls.append(1), flush_interval_ms=20)
        proc.start()
        time.sleep(0.15)
        proc.shutdown()
        assert len(calls) >= 3

    def test_wake_triggers_early_flush(self) -> None:
        flushed = threading.Event()
        proc = BackgroundProcessor(flushed.set, flush_interval_ms=60_000)
        proc.start()
        proc.wake()
        assert flushed.wait(1.0)
        proc.shutdown()

    def test_thread_is_daemon(self) -> None:
        proc = BackgroundProcessor(lambda: None, flush_interval_ms=50)
        proc.start()
        assert proc._thread is not None
        assert proc._thread.daemon is True
        proc.shutdown()

    def test_double_start_is_idempotent(self) -> None:
        proc = BackgroundProcessor(lambda: None, flush_interval_ms=50)
        proc.start()
        thread1 = proc._thread
        proc.start()
        assert proc._thread is thread1
        proc.shutdown()

    def test_second_shutdown_returns_without_flushing(self) -> None:
        calls: list[int] = []
        proc = BackgroundProcessor(lambda: calls.append(1), flush_interval_ms=60_000)
        proc.start()
        assert proc.shutdown() is True
        assert calls == [1]
        assert proc.shutdown() is True
        assert calls == [1]

    def test_start_after_shutdown_is_noop(self) -> None:
        proc = BackgroundProcessor(lambda: None, flush_interval_ms=50)
        proc.shutdown()
        proc.start()
        assert proc.state is PipelineState.STOPPED
        assert not proc.is_running

    def test_handler_exception_does_not_crash(self) -> None:
        calls: list[int] = []

        def bad_flush() -> None:
            calls.append(1)
            raise RuntimeError("handler exploded")

        proc = BackgroundProcessor(bad_flush, flush_interval_ms=20)
        proc.start()
        time.sleep(0.12)
        assert proc.is_running
        proc.shutdown()
        assert len(calls) >= 2

    def test_final_flush_bounded_by_timeout(self) -> None:
        release = threading.Event()
        proc = BackgroundProcessor(lambda: release.wait(5.0), flush_interval_ms=60_000)
        proc.start()
        started = time.monotonic()
        assert proc.shutdown(timeout_s=0.1) is False
        assert time.monotonic() - started < 1.0
        assert proc.state is PipelineState.STOPPED
        release.set()

    def test_concurrent_shutdown_waits_for_first_caller(self) -> None:
        release = threading.Event()
        hooks: list[int] = []
        proc = BackgroundProcessor(
            lambda: release.wait(5.0),
            flush_interval_ms=60_000,
            on_shutdown=lambda: hooks.append(1),
        )
        proc.start()
        first = threading.Thread(target=proc.shutdown)
        first.start()
        time.sleep(0.05)
        assert proc.state is PipelineState.SHUTTING_DOWN
        assert proc.shutdown(timeout_s=0.05) is False
        assert hooks == []
        release.set()
        assert proc.shutdown(timeout_s=2.0) is True
        first.join()
        assert proc.state is PipelineState.STOPPED
        assert hooks == [1]


class TestBatchSpanProcessor:
    def test_final_drain_on_shutdown(self) -> None:
        exporter = _ListExporter()
        proc = BatchSpanProcessor(exporter, schedule_delay_ms=60_000)
        proc.start()
        proc.on_end(_make_span("late"))
        assert proc.shutdown() is True
        assert [s.name for s in exporter.items] == ["late"]
        assert exporter.shutdown_calls == 1

    def test_batch_threshold_wakes_worker(self) -> None:
        exporter = _ListExporter()
        proc = BatchSpanProcessor(exporter, batch_size=4, schedule_delay_ms=60_000)
        proc.start()
        for i in range(4):
            proc.on_end(_make_span(f"s{i}"))
        deadline = time.monotonic() + 2.0
        while not exporter.batches and time.monotonic() < deadline:
            time.sleep(0.01)
        assert len(exporter.items) == 4
        proc.shutdown()

    def test_batches_respect_batch_size(self) -> None:
        exporter = _ListExporter()
        proc = BatchSpanProcessor(exporter, batch_size=3, schedule_delay_ms=60_000)
        for i in range(7):
            proc.on_end(_make_span(f"s{i}"))
        proc.shutdown()
        assert [len(b) for b in exporter.batches] == [3, 3, 1]

    def test_timer_flush(self) -> None:
        exporter = _ListExporter()
        proc = BatchSpanProcessor(exporter, schedule_delay_ms=20)
        proc.start()
        proc.on_end(_make_span("timed"))
        time.sleep(0.2)
        assert [s.name for s in exporter.items] == ["timed"]
        proc.shutdown()

    def test_on_end_never_blocks_when_full(self) -> None:
        exporter = _ListExporter(delay_s=0.5)
        proc = BatchSpanProcessor(exporter, buffer_size=2, schedule_delay_ms=60_000)
        started = time.monotonic()
        for i in range(100):
            proc.on_end(_make_span(f"s{i}"))
        assert time.monotonic() - started < 0.5
        assert proc.dropped_spans == 98
        proc.shutdown(timeout_s=2.0)

    def test_spans_after_shutdown_dropped(self) -> None:
        exporter = _ListExporter()
        proc = BatchSpanProcessor(exporter)
        proc.start()
        proc.shutdown()
        proc.on_end(_make_span("too-late"))
        assert exporter.items == []
        assert proc.dropped_spans == 1

    def test_span_ended_during_shutdown_counted_as_dropped(self) -> None:
        exporter = _ListExporter(delay_s=0.2)
        proc = BatchSpanProcessor(exporter, schedule_delay_ms=60_000)
        proc.start()
        proc.on_end(_make_span("pending"))
        first = threading.Thread(target=proc.shutdown)
        first.start()
        time.sleep(0.05)
        proc.on_end(_make_span("during"))
        first.join()
        assert [s.name for s in exporter.items] == ["pending"]
        assert proc.dropped_spans == 1
        assert len(proc._buffer) == 0

    def test_concurrent_shutdown_keeps_pending_batch(self, collector) -> None:
        exporter = _SlowSpanExporter(
            Resource.for_service("svc"), endpoint=collector.endpoint, timeout_s=5.0
        )
        proc = BatchSpanProcessor(exporter, schedule_delay_ms=60_000)
        proc.start()
        proc.on_end(_make_span("pending"))

        results: list[bool] = []
        first = threading.Thread(target=lambda: results.append(proc.shutdown(5.0)))
        first.start()
        time.sleep(0.1)
        second = proc.shutdown(5.0)
        first.join()

        assert second is True
        assert results == [True]
        assert exporter.exported_batches == 1
        assert exporter.failed_batches == 0
        assert collector.traces.span_names == ["pending"]

    def test_shutdown_twice(self) -> None:
        exporter = _ListExporter()
        proc = BatchSpanProcessor(exporter)
        proc.start()
        proc.on_end(_make_span("once"))
        assert proc.shutdown() is True
        assert proc.shutdown() is True
        assert len(exporter.batches) == 1
        assert exporter.shutdown_calls == 1

    def test_exporter_failure_does_not_stop_pipeline(self) -> None:
        exporter = _ListExporter(fail=True)
        proc = BatchSpanProcessor(exporter, schedule_delay_ms=20)
        proc.start()
        proc.on_end(_make_span("lost"))
        time.sleep(0.1)
        assert proc.state is PipelineState.RUNNING
        assert proc.shutdown() is True

    def test_drained_span_from_tracer(self) -> None:
        exporter = _ListExporter()
        proc = BatchSpanProcessor(exporter, schedule_delay_ms=60_000)
        tracer = Tracer("test", processor=proc)
        proc.start()

        _, span = tracer.start_span(None, "op")
        span.set_attribute("status", "ok")
        time.sleep(0.01)
        span.end()
        proc.shutdown()

        (sd,) = exporter.items
        assert sd.name == "op"
        assert sd.attributes == {"status": "ok"}
        assert sd.duration_ms >= 10.0


class TestPeriodicMetricReader:
    def test_exports_each_tick(self) -> None:
        meter = Meter("test")
        counter = meter.create_counter("hits")
        counter.add(None, 1)
        exporter = _ListExporter()
        reader = PeriodicMetricReader(meter, exporter, export_interval_ms=20)
        reader.start()
        time.sleep(0.15)
        reader.shutdown()

        assert len(exporter.batches) >= 3
        metric: MetricData = exporter.batches[-1][0]
        assert metric.name == "hits"
        assert exporter.shutdown_calls == 1

    def test_nothing_recorded_nothing_exported(self) -> None:
        exporter = _ListExporter()
        reader = PeriodicMetricReader(Meter("test"), exporter, export_interval_ms=20)
        reader.start()
        time.sleep(0.08)
        reader.shutdown()
        assert exporter.batches == []

    def test_observable_callback_failure_next_tick_fires(self) -> None:
        meter = Meter("test")
        calls = {"n": 0}

        def flaky() -> float:
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("tick failed")
            return float(calls["n"])

        meter.create_observable_gauge("g", samplers=[flaky])
        exporter = _ListExporter()
        reader = PeriodicMetricReader(meter, exporter, export_interval_ms=20)
        reader.start()
        deadline = time.monotonic() + 2.0
        while not exporter.batches and time.monotonic() < deadline:
            time.sleep(0.01)
        assert reader.state is PipelineState.RUNNING
        reader.shutdown()
        assert calls["n"] >= 2
        assert exporter.batches

    def test_force_flush(self) -> None:
        meter = Meter("test")
        meter.create_gauge("g").record(None, 3)
        exporter = _ListExporter()
        reader = PeriodicMetricReader(meter, exporter, export_interval_ms=60_000)
        reader.start()
        assert reader.force_flush() is True
        assert exporter.batches[0][0].points[0].value == 3
        reader.shutdown()

    def test_concurrent_shutdown_closes_exporter_once(self) -> None:
        meter = Meter("test")
        meter.create_counter("hits").add(None, 1)
        exporter = _ListExporter(delay_s=0.2)
        reader = PeriodicMetricReader(meter, exporter, export_interval_ms=60_000)
        reader.start()
        first = threading.Thread(target=reader.shutdown)
        first.start()
        time.sleep(0.05)
        assert reader.shutdown(timeout_s=2.0) is True
        assert len(exporter.batches) == 1
        assert exporter.shutdown_calls == 1
        first.join()
        assert exporter.shutdown_calls == 1
