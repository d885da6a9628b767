"""Telecart: a small telemetry emission core exporting OTLP over gRPC."""

from __future__ import annotations

from telecart._buffer import RingBuffer
from telecart._config import TelemetryConfig
from telecart._context import SpanContext
from telecart._errors import (
    ConfigurationError,
    DuplicateInstrumentError,
    ExportError,
    InvalidArgumentError,
    ShutdownTimeoutError,
    TelemetryError,
)
from telecart._exporter import ExportResult, OTLPMetricExporter, OTLPSpanExporter, create_channel
from telecart._metrics import (
    CallbackSampler,
    Counter,
    Gauge,
    Histogram,
    Meter,
    ObservableGauge,
    Sampler,
)
from telecart._processor import BatchSpanProcessor, PeriodicMetricReader, PipelineState
from telecart._propagation import extract, inject
from telecart._resource import Resource, build_resource
from telecart._sampler import PeriodicSampler, ProcessMemorySampler
from telecart._span import Span
from telecart._telemetry import Telemetry
from telecart._tracer import Tracer
from telecart._types import InstrumentKind, MetricData, SpanData, SpanKind, SpanStatus

__version__ = "0.1.0"

__all__ = [
    "BatchSpanProcessor",
    "CallbackSampler",
    "ConfigurationError",
    "Counter",
    "DuplicateInstrumentError",
    "ExportError",
    "ExportResult",
    "Gauge",
    "Histogram",
    "InstrumentKind",
    "InvalidArgumentError",
    "Meter",
    "MetricData",
    "OTLPMetricExporter",
    "OTLPSpanExporter",
    "ObservableGauge",
    "PeriodicMetricReader",
    "PeriodicSampler",
    "PipelineState",
    "ProcessMemorySampler",
    "Resource",
    "RingBuffer",
    "Sampler",
    "ShutdownTimeoutError",
    "Span",
    "SpanContext",
    "SpanData",
    "SpanKind",
    "SpanStatus",
    "Telemetry",
    "TelemetryConfig",
    "TelemetryError",
    "Tracer",
    "__version__",
    "build_resource",
    "create_channel",
    "extract",
    "inject",
]
