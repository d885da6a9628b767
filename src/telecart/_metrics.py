"""Metric instruments and the meter that registers and collects them."""

from __future__ import annotations

import bisect
import logging
import math
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from telecart._errors import ConfigurationError, DuplicateInstrumentError, InvalidArgumentError
from telecart._types import (
    AttributeValue,
    Exemplar,
    HistogramDataPoint,
    InstrumentKind,
    MetricData,
    NumberDataPoint,
)

if TYPE_CHECKING:
    from telecart._context import SpanContext

logger = logging.getLogger("telecart.metrics")

DEFAULT_HISTOGRAM_BOUNDARIES: tuple[float, ...] = (
    0.0, 5.0, 10.0, 25.0, 50.0, 75.0, 100.0, 250.0, 500.0,
    750.0, 1000.0, 2500.0, 5000.0, 7500.0, 10000.0,
)

_AttrKey = tuple[tuple[str, AttributeValue], ...]


def _attr_key(attributes: Mapping[str, AttributeValue] | None) -> _AttrKey:
    if not attributes:
        return ()
    return tuple(sorted(attributes.items()))


def _exemplar(ctx: SpanContext | None, value: float, now_ns: int) -> Exemplar | None:
    if ctx is None or not ctx.sampled:
        return None
    return Exemplar(value=value, time_ns=now_ns, trace_id=ctx.trace_id, span_id=ctx.span_id)


def _require_finite(name: str, value: float) -> float:
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError(f"{name}: value {value!r} is not a number") from None
    if not math.isfinite(as_float):
        raise InvalidArgumentError(f"{name}: value {value!r} is not finite")
    return as_float


@runtime_checkable
class Sampler(Protocol):
    """Anything that can report a current value when polled."""

    def sample(self) -> float: ...


class CallbackSampler:
    """Adapts a zero-argument callable to the Sampler protocol."""

    def __init__(self, fn: Callable[[], float]) -> None:
        self._fn = fn

    def sample(self) -> float:
        return self._fn()

    def __repr__(self) -> str:
        return f"CallbackSampler({getattr(self._fn, '__qualname__', self._fn)!r})"


class _Instrument:
    kind: InstrumentKind

    def __init__(self, name: str, unit: str, description: str, start_time_ns: int) -> None:
        self.name = name
        self.unit = unit
        self.description = description
        self._start_time_ns = start_time_ns
        self._lock = threading.Lock()

    def collect(self, now_ns: int) -> MetricData:
        raise NotImplementedError

    def _metric(self, points: list[NumberDataPoint | HistogramDataPoint]) -> MetricData:
        return MetricData(
            name=self.name,
            description=self.description,
            unit=self.unit,
            kind=self.kind,
            points=points,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, unit={self.unit!r})"


@dataclass
class _NumberState:
    value: float
    exemplar: Exemplar | None


class _NumberInstrument(_Instrument):
    def __init__(self, name: str, unit: str, description: str, start_time_ns: int) -> None:
        super().__init__(name, unit, description, start_time_ns)
        self._states: dict[_AttrKey, _NumberState] = {}

    def collect(self, now_ns: int) -> MetricData:
        with self._lock:
            points: list[NumberDataPoint | HistogramDataPoint] = [
                NumberDataPoint(
                    attributes=dict(key),
                    start_time_ns=self._start_time_ns,
                    time_ns=now_ns,
                    value=state.value,
                    exemplar=state.exemplar,
                )
                for key, state in self._states.items()
            ]
        return self._metric(points)

    def value(self, attributes: Mapping[str, AttributeValue] | None = None) -> float | None:
        """Current value for an attribute set, or None if never recorded."""
        with self._lock:
            state = self._states.get(_attr_key(attributes))
            return None if state is None else state.value


class Counter(_NumberInstrument):
    """Monotonic cumulative sum."""

    kind = InstrumentKind.COUNTER

    def add(
        self,
        ctx: SpanContext | None,
        delta: float = 1,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> None:
        """Add a non-negative delta. Raises InvalidArgumentError otherwise."""
        value = _require_finite(self.name, delta)
        if value < 0:
            raise InvalidArgumentError(f"{self.name}: counter delta must be >= 0, got {delta!r}")
        now = time.time_ns()
        key = _attr_key(attributes)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = self._states[key] = _NumberState(0.0, None)
            state.value += value
            state.exemplar = _exemplar(ctx, value, now) or state.exemplar


class Gauge(_NumberInstrument):
    """Synchronous gauge: last write wins."""

    kind = InstrumentKind.GAUGE

    def record(
        self,
        ctx: SpanContext | None,
        value: float,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> None:
        as_float = _require_finite(self.name, value)
        now = time.time_ns()
        key = _attr_key(attributes)
        with self._lock:
            previous = self._states.get(key)
            exemplar = _exemplar(ctx, as_float, now)
            if exemplar is None and previous is not None:
                exemplar = previous.exemplar
            self._states[key] = _NumberState(as_float, exemplar)


@dataclass
class _HistogramState:
    bucket_counts: list[int]
    count: int = 0
    sum: float = 0.0
    min: float = math.inf
    max: float = -math.inf
    exemplar: Exemplar | None = None


class Histogram(_Instrument):
    """Explicit-bucket histogram with count, sum, min and max."""

    kind = InstrumentKind.HISTOGRAM

    def __init__(
        self,
        name: str,
        unit: str,
        description: str,
        start_time_ns: int,
        boundaries: Sequence[float] = DEFAULT_HISTOGRAM_BOUNDARIES,
    ) -> None:
        super().__init__(name, unit, description, start_time_ns)
        bounds = tuple(float(b) for b in boundaries)
        if any(b2 <= b1 for b1, b2 in zip(bounds, bounds[1:])):
            raise ConfigurationError(f"{name}: histogram boundaries must be strictly increasing")
        self.boundaries = bounds
        self._states: dict[_AttrKey, _HistogramState] = {}

    def record(
        self,
        ctx: SpanContext | None,
        value: float,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> None:
        """Record a finite value. NaN and infinities raise InvalidArgumentError."""
        as_float = _require_finite(self.name, value)
        now = time.time_ns()
        key = _attr_key(attributes)
        index = bisect.bisect_left(self.boundaries, as_float)
        with self._lock:
            state = self._states.get(key)
            if state is None:
                state = self._states[key] = _HistogramState([0] * (len(self.boundaries) + 1))
            state.bucket_counts[index] += 1
            state.count += 1
            state.sum += as_float
            state.min = min(state.min, as_float)
            state.max = max(state.max, as_float)
            state.exemplar = _exemplar(ctx, as_float, now) or state.exemplar

    def collect(self, now_ns: int) -> MetricData:
        with self._lock:
            points: list[NumberDataPoint | HistogramDataPoint] = [
                HistogramDataPoint(
                    attributes=dict(key),
                    start_time_ns=self._start_time_ns,
                    time_ns=now_ns,
                    count=state.count,
                    sum=state.sum,
                    min=state.min,
                    max=state.max,
                    explicit_bounds=self.boundaries,
                    bucket_counts=tuple(state.bucket_counts),
                    exemplar=state.exemplar,
                )
                for key, state in self._states.items()
            ]
        return self._metric(points)


class ObservableGauge(_Instrument):
    """Gauge whose value is pulled from registered samplers at each collection."""

    kind = InstrumentKind.OBSERVABLE_GAUGE

    def __init__(self, name: str, unit: str, description: str, start_time_ns: int) -> None:
        super().__init__(name, unit, description, start_time_ns)
        self._samplers: list[tuple[Sampler, dict[str, AttributeValue]]] = []

    def register_sampler(
        self,
        sampler: Sampler | Callable[[], float],
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> Sampler:
        """Register a sampler polled once per export tick.

        Samplers run on the metric reader's thread, concurrently with
        request handlers, and must not block.
        """
        if not isinstance(sampler, Sampler):
            if not callable(sampler):
                raise InvalidArgumentError(f"{self.name}: {sampler!r} is not a sampler")
            sampler = CallbackSampler(sampler)
        with self._lock:
            self._samplers.append((sampler, dict(attributes or {})))
        return sampler

    def unregister_sampler(self, sampler: Sampler) -> None:
        with self._lock:
            self._samplers = [(s, a) for s, a in self._samplers if s is not sampler]

    def collect(self, now_ns: int) -> MetricData:
        with self._lock:
            samplers = list(self._samplers)
        points: list[NumberDataPoint | HistogramDataPoint] = []
        for sampler, attributes in samplers:
            try:
                value = float(sampler.sample())
            except Exception:  # noqa: BLE001
                logger.warning("Sampler %r for %s failed", sampler, self.name, exc_info=True)
                continue
            if not math.isfinite(value):
                logger.warning("Sampler %r for %s returned %r", sampler, self.name, value)
                continue
            points.append(NumberDataPoint(
                attributes=dict(attributes),
                start_time_ns=self._start_time_ns,
                time_ns=now_ns,
                value=value,
            ))
        return self._metric(points)


class Meter:
    """Registry of instruments keyed by (name, unit)."""

    def __init__(self, name: str, version: str = "") -> None:
        self.name = name
        self.version = version
        self._start_time_ns = time.time_ns()
        self._instruments: dict[tuple[str, str], _Instrument] = {}
        self._lock = threading.Lock()

    def _register(self, instrument: _Instrument) -> None:
        if not instrument.name:
            raise ConfigurationError("instrument name must be non-empty")
        key = (instrument.name, instrument.unit)
        with self._lock:
            if key in self._instruments:
                raise DuplicateInstrumentError(instrument.name, instrument.unit)
            self._instruments[key] = instrument

    def create_counter(self, name: str, *, unit: str = "", description: str = "") -> Counter:
        counter = Counter(name, unit, description, self._start_time_ns)
        self._register(counter)
        return counter

    def create_histogram(
        self,
        name: str,
        *,
        unit: str = "",
        description: str = "",
        boundaries: Sequence[float] = DEFAULT_HISTOGRAM_BOUNDARIES,
    ) -> Histogram:
        histogram = Histogram(name, unit, description, self._start_time_ns, boundaries)
        self._register(histogram)
        return histogram

    def create_gauge(self, name: str, *, unit: str = "", description: str = "") -> Gauge:
        gauge = Gauge(name, unit, description, self._start_time_ns)
        self._register(gauge)
        return gauge

    def create_observable_gauge(
        self,
        name: str,
        *,
        unit: str = "",
        description: str = "",
        samplers: Sequence[Sampler | Callable[[], float]] = (),
    ) -> ObservableGauge:
        gauge = ObservableGauge(name, unit, description, self._start_time_ns)
        self._register(gauge)
        for sampler in samplers:
            gauge.register_sampler(sampler)
        return gauge

    def collect(self) -> list[MetricData]:
        """Snapshot every instrument that has at least one data point."""
        now = time.time_ns()
        with self._lock:
            instruments = list(self._instruments.values())
        metrics = [instrument.collect(now) for instrument in instruments]
        return [m for m in metrics if m.points]
