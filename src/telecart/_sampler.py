"""Process resource sampling on a background thread."""

from __future__ import annotations

import logging
import math
import threading

import psutil

from telecart._metrics import Sampler

logger = logging.getLogger("telecart.sampler")

BYTES_PER_MB = 1_048_576


class ProcessMemorySampler:
    """Resident memory of this process in MB, read through psutil."""

    def __init__(self, process: psutil.Process | None = None) -> None:
        self._process = process or psutil.Process()

    def sample(self) -> float:
        return self._process.memory_info().rss / BYTES_PER_MB


class PeriodicSampler:
    """Polls a source on a daemon thread and caches the last good value.

    Implements the Sampler protocol itself, so it can be registered on an
    observable gauge: the metric reader then pulls the cached value without
    touching the source. Read failures are logged and skipped for that tick.
    """

    def __init__(self, source: Sampler, *, interval_ms: int = 5000) -> None:
        self._source = source
        self._interval_s = interval_ms / 1000.0
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._value: float | None = None
        self._failures = 0

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._read_once()
        self._thread = threading.Thread(
            target=self._collection_loop, name="telecart-sampler", daemon=True
        )
        self._thread.start()

    def stop(self, timeout_s: float = 2.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout_s)
            self._thread = None

    def _collection_loop(self) -> None:
        while not self._stop_event.wait(self._interval_s):
            self._read_once()

    def _read_once(self) -> None:
        try:
            value = float(self._source.sample())
        except Exception:  # noqa: BLE001
            self._failures += 1
            logger.warning("Resource sample from %r failed", self._source, exc_info=True)
            return
        if not math.isfinite(value):
            self._failures += 1
            logger.warning("Resource sample from %r was %r", self._source, value)
            return
        with self._lock:
            self._value = value

    def sample(self) -> float:
        """Last successfully read value. Raises LookupError before the first."""
        with self._lock:
            if self._value is None:
                raise LookupError("no sample available yet")
            return self._value

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
