"""Background pipelines that drain finished telemetry to an exporter."""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Protocol

from telecart._buffer import DropPolicy, RingBuffer

if TYPE_CHECKING:
    from telecart._exporter import ExportResult
    from telecart._metrics import Meter
    from telecart._types import MetricData, SpanData

logger = logging.getLogger("telecart.processor")


class PipelineState(enum.Enum):
    """Lifecycle of a background pipeline."""

    INITIALIZED = "initialized"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    STOPPED = "stopped"


class SpanProcessor(Protocol):
    """Receives every ended, sampled span."""

    def on_end(self, span: SpanData) -> None: ...


class SpanExporter(Protocol):
    def export(self, spans: Sequence[SpanData]) -> ExportResult: ...

    def shutdown(self) -> None: ...


class MetricExporter(Protocol):
    def export(self, metrics: Sequence[MetricData]) -> ExportResult: ...

    def shutdown(self) -> None: ...


class BackgroundProcessor:
    """Daemon thread that calls ``flush`` on a timer or when woken.

    ``shutdown`` stops timer-driven flushes, runs one final flush bounded by
    the timeout, calls ``on_shutdown`` and always ends in STOPPED. Only the
    first caller does this work; concurrent callers wait for STOPPED.
    """

    def __init__(
        self,
        flush: Callable[[], None],
        *,
        flush_interval_ms: int = 5000,
        name: str = "telecart-processor",
        on_shutdown: Callable[[], None] | None = None,
    ) -> None:
        self._flush = flush
        self._on_shutdown = on_shutdown
        self._flush_interval_s = flush_interval_ms / 1000.0
        self._name = name
        self._state = PipelineState.INITIALIZED
        self._state_lock = threading.Lock()
        self._flush_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._stopped = threading.Event()
        self._final_flush_ok = True

    @property
    def state(self) -> PipelineState:
        return self._state

    def start(self) -> None:
        """Start the background loop. A no-op unless INITIALIZED."""
        with self._state_lock:
            if self._state is not PipelineState.INITIALIZED:
                return
            self._state = PipelineState.RUNNING
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def wake(self) -> None:
        """Request an early flush."""
        self._wake_event.set()

    def flush(self, timeout_s: float = 5.0) -> bool:
        """Flush now on the caller's thread, waiting at most ``timeout_s``."""
        return _run_bounded(self._safe_flush, timeout_s, f"{self._name}-flush")

    def shutdown(self, timeout_s: float = 5.0) -> bool:
        """Stop the loop and perform one final flush.

        Returns False if the final flush did not finish within ``timeout_s``.
        A call made while another shutdown is in progress waits up to
        ``timeout_s`` for it and reports its outcome; a call after STOPPED
        returns that outcome immediately without flushing.
        """
        with self._state_lock:
            owner = self._state in (PipelineState.INITIALIZED, PipelineState.RUNNING)
            if owner:
                self._state = PipelineState.SHUTTING_DOWN
        if not owner:
            return self._stopped.wait(timeout_s) and self._final_flush_ok

        deadline = time.monotonic() + timeout_s
        self._stop_event.set()
        self._wake_event.set()
        if self._thread is not None:
            self._thread.join(timeout=max(0.0, deadline - time.monotonic()))
            self._thread = None

        completed = _run_bounded(
            self._safe_flush, max(0.0, deadline - time.monotonic()), f"{self._name}-final"
        )
        if not completed:
            logger.warning("%s: final flush did not complete within %.1fs", self._name, timeout_s)

        if self._on_shutdown is not None:
            try:
                self._on_shutdown()
            except Exception:  # noqa: BLE001
                logger.warning("%s: shutdown hook failed", self._name, exc_info=True)

        self._final_flush_ok = completed
        with self._state_lock:
            self._state = PipelineState.STOPPED
        self._stopped.set()
        return completed

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self._wake_event.wait(timeout=self._flush_interval_s)
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            self._safe_flush()

    def _safe_flush(self) -> None:
        with self._flush_lock:
            try:
                self._flush()
            except Exception:  # noqa: BLE001
                logger.warning("%s: flush failed", self._name, exc_info=True)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


def _run_bounded(fn: Callable[[], None], timeout_s: float, name: str) -> bool:
    """Run ``fn`` on a helper thread, returning False if it outlives the timeout."""
    if timeout_s <= 0:
        return False
    worker = threading.Thread(target=fn, name=name, daemon=True)
    worker.start()
    worker.join(timeout=timeout_s)
    return not worker.is_alive()


class BatchSpanProcessor:
    """Buffers ended spans and exports them in batches.

    ``on_end`` never blocks: it enqueues into a bounded ring buffer and wakes
    the worker once ``batch_size`` spans are waiting. The worker also flushes
    every ``schedule_delay_ms``.
    """

    def __init__(
        self,
        exporter: SpanExporter,
        *,
        batch_size: int = 512,
        buffer_size: int = 8192,
        schedule_delay_ms: int = 1000,
        drop_policy: DropPolicy = "oldest",
    ) -> None:
        self._exporter = exporter
        self._batch_size = batch_size
        self._buffer: RingBuffer[SpanData] = RingBuffer(buffer_size, drop_policy=drop_policy)
        # Guards _closed so no span is enqueued after the final drain starts.
        self._accept_lock = threading.Lock()
        self._closed = False
        self._rejected = 0
        self._worker = BackgroundProcessor(
            self._export_pending,
            flush_interval_ms=schedule_delay_ms,
            name="telecart-spans",
            on_shutdown=exporter.shutdown,
        )

    @property
    def state(self) -> PipelineState:
        return self._worker.state

    @property
    def dropped_spans(self) -> int:
        """Spans lost to a full buffer or ended after shutdown began."""
        return self._buffer.drop_count + self._rejected

    def start(self) -> None:
        self._worker.start()

    def on_end(self, span: SpanData) -> None:
        with self._accept_lock:
            if self._closed:
                self._rejected += 1
                logger.debug("Span %r ended after shutdown; dropped", span.name)
                return
            self._buffer.enqueue(span)
        if len(self._buffer) >= self._batch_size:
            self._worker.wake()

    def _export_pending(self) -> None:
        while True:
            batch = self._buffer.drain(self._batch_size)
            if not batch:
                return
            self._exporter.export(batch)

    def force_flush(self, timeout_s: float = 5.0) -> bool:
        return self._worker.flush(timeout_s)

    def shutdown(self, timeout_s: float = 5.0) -> bool:
        with self._accept_lock:
            self._closed = True
        return self._worker.shutdown(timeout_s)


class PeriodicMetricReader:
    """Collects a meter every ``export_interval_ms`` and exports the snapshot.

    Observable instruments are sampled on this reader's thread.
    """

    def __init__(
        self,
        meter: Meter,
        exporter: MetricExporter,
        *,
        export_interval_ms: int = 3000,
    ) -> None:
        self._meter = meter
        self._exporter = exporter
        self._worker = BackgroundProcessor(
            self._collect_and_export,
            flush_interval_ms=export_interval_ms,
            name="telecart-metrics",
            on_shutdown=exporter.shutdown,
        )

    @property
    def state(self) -> PipelineState:
        return self._worker.state

    def start(self) -> None:
        self._worker.start()

    def _collect_and_export(self) -> None:
        metrics = self._meter.collect()
        if metrics:
            self._exporter.export(metrics)

    def force_flush(self, timeout_s: float = 5.0) -> bool:
        return self._worker.flush(timeout_s)

    def shutdown(self, timeout_s: float = 5.0) -> bool:
        return self._worker.shutdown(timeout_s)
