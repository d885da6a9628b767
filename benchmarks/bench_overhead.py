#!/usr/bin/env python3
"""Request-path overhead benchmark.

Measures the hot-path cost of:
  1. ring buffer enqueue
  2. span start -> set_attribute -> end (into a batch processor)
  3. counter add / histogram record

Nothing here performs I/O: the processor is never started, so spans only
land in the buffer.

Usage:
    python benchmarks/bench_overhead.py
"""

from __future__ import annotations

import time

from telecart._buffer import RingBuffer
from telecart._exporter import ExportResult
from telecart._metrics import Meter
from telecart._processor import BatchSpanProcessor
from telecart._tracer import Tracer
from telecart._types import SpanData, SpanKind, SpanStatus


class _DiscardExporter:
    def export(self, batch: object) -> ExportResult:
        return ExportResult.SUCCESS

    def shutdown(self) -> None:
        pass


def bench_enqueue_only(iterations: int = 500_000) -> float:
    """Benchmark: ring buffer enqueue cost only."""
    buf: RingBuffer[SpanData] = RingBuffer(maxsize=iterations + 1000)
    sd = SpanData(
        span_id="abcdef0123456789",
        trace_id="0123456789abcdef0123456789abcdef",
        name="bench",
        kind=SpanKind.INTERNAL,
        status=SpanStatus.OK,
        start_time_ns=1000,
        end_time_ns=2000,
    )

    for _ in range(5000):
        buf.enqueue(sd)
    buf.drain(buf.maxsize)

    start = time.perf_counter_ns()
    for _ in range(iterations):
        buf.enqueue(sd)
    elapsed = time.perf_counter_ns() - start

    return elapsed / iterations


def bench_span_lifecycle(iterations: int = 200_000) -> float:
    """Benchmark: start_span -> set_attribute -> end, nested under a parent."""
    processor = BatchSpanProcessor(
        _DiscardExporter(), batch_size=iterations * 2, buffer_size=iterations + 1000
    )
    tracer = Tracer("bench", processor=processor)
    parent, _ = tracer.start_span(None, "parent")

    for _ in range(1000):
        _, span = tracer.start_span(parent, "bench")
        span.end()

    start = time.perf_counter_ns()
    for _ in range(iterations):
        _, span = tracer.start_span(parent, "bench")
        span.set_attribute("cart.count", 3)
        span.end()
    elapsed = time.perf_counter_ns() - start

    return elapsed / iterations


def bench_metric_recording(iterations: int = 500_000) -> tuple[float, float]:
    """Benchmark: counter add and histogram record, no attributes."""
    meter = Meter("bench")
    counter = meter.create_counter("bench.counter")
    histogram = meter.create_histogram("bench.latency")

    start = time.perf_counter_ns()
    for _ in range(iterations):
        counter.add(None, 1)
    counter_ns = (time.perf_counter_ns() - start) / iterations

    start = time.perf_counter_ns()
    for i in range(iterations):
        histogram.record(None, i % 100)
    histogram_ns = (time.perf_counter_ns() - start) / iterations

    return counter_ns, histogram_ns


def _grade(ns: float, target_ns: float) -> str:
    return "PASS" if ns < target_ns else "WARN" if ns < target_ns * 2 else "FAIL"


def main() -> None:
    print("=" * 60)
    print("Telecart Request-Path Overhead Benchmark")
    print("=" * 60)

    results: list[tuple[str, float, str]] = []

    ns = bench_enqueue_only()
    results.append(("Ring buffer enqueue", ns, f"{_grade(ns, 500)} (target < 500ns)"))

    ns = bench_span_lifecycle()
    results.append(("Span start/attribute/end", ns, f"{_grade(ns, 10_000)} (target < 10μs)"))

    counter_ns, histogram_ns = bench_metric_recording()
    results.append(("Counter.add", counter_ns, f"{_grade(counter_ns, 2000)} (target < 2μs)"))
    results.append(("Histogram.record", histogram_ns, f"{_grade(histogram_ns, 3000)} (target < 3μs)"))

    print()
    for name, ns_val, note in results:
        if ns_val >= 1000:
            display = f"{ns_val / 1000:.2f}μs"
        else:
            display = f"{ns_val:.0f}ns"
        print(f"  {name:40s}  {display:>10s}   {note}")

    print()
    if all("FAIL" not in r[2] for r in results):
        print("All benchmarks within acceptable range.")
    else:
        print("WARNING: Some benchmarks exceeded target. Review above.")


if __name__ == "__main__":
    main()
