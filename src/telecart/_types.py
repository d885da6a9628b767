"""Core types: enums, span snapshots and metric snapshots."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

AttributeValue = str | int | float | bool


class SpanKind(enum.Enum):
    """Type of span operation."""

    INTERNAL = "internal"
    CLIENT = "client"
    SERVER = "server"


class SpanStatus(enum.Enum):
    """Status of a completed span."""

    UNSET = "unset"
    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class SpanData:
    """Immutable snapshot of a completed span for buffer storage."""

    span_id: str
    trace_id: str
    name: str
    kind: SpanKind
    status: SpanStatus
    start_time_ns: int
    end_time_ns: int
    attributes: dict[str, AttributeValue] = field(default_factory=dict)
    parent_span_id: str | None = None
    error_message: str | None = None

    @property
    def duration_ms(self) -> float:
        return (self.end_time_ns - self.start_time_ns) / 1_000_000


class InstrumentKind(enum.Enum):
    """Kind of metric instrument."""

    COUNTER = "counter"
    HISTOGRAM = "histogram"
    GAUGE = "gauge"
    OBSERVABLE_GAUGE = "observable_gauge"


@dataclass(frozen=True)
class Exemplar:
    """A measurement linked to the span that was active when it was taken."""

    value: float
    time_ns: int
    trace_id: str
    span_id: str


@dataclass(frozen=True)
class NumberDataPoint:
    """Sum or gauge value for one attribute set."""

    attributes: dict[str, AttributeValue]
    start_time_ns: int
    time_ns: int
    value: float
    exemplar: Exemplar | None = None


@dataclass(frozen=True)
class HistogramDataPoint:
    """Explicit-bucket distribution for one attribute set.

    ``bucket_counts`` has ``len(explicit_bounds) + 1`` entries.
    """

    attributes: dict[str, AttributeValue]
    start_time_ns: int
    time_ns: int
    count: int
    sum: float
    min: float
    max: float
    explicit_bounds: tuple[float, ...]
    bucket_counts: tuple[int, ...]
    exemplar: Exemplar | None = None


@dataclass(frozen=True)
class MetricData:
    """Snapshot of one instrument at a collection tick."""

    name: str
    description: str
    unit: str
    kind: InstrumentKind
    points: list[NumberDataPoint | HistogramDataPoint] = field(default_factory=list)
