"""OTLP gRPC exporters — convert span and metric batches to protobuf and ship them."""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Sequence
from typing import Any

import grpc
from opentelemetry.proto.collector.metrics.v1.metrics_service_pb2 import (
    ExportMetricsServiceRequest,
)
from opentelemetry.proto.collector.metrics.v1.metrics_service_pb2_grpc import (
    MetricsServiceStub,
)
from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import (
    ExportTraceServiceRequest,
)
from opentelemetry.proto.collector.trace.v1.trace_service_pb2_grpc import (
    TraceServiceStub,
)
from opentelemetry.proto.common.v1.common_pb2 import (
    AnyValue,
    InstrumentationScope,
    KeyValue,
)
from opentelemetry.proto.metrics.v1 import metrics_pb2
from opentelemetry.proto.resource.v1.resource_pb2 import Resource as OtlpResource
from opentelemetry.proto.trace.v1.trace_pb2 import (
    ResourceSpans,
    ScopeSpans,
)
from opentelemetry.proto.trace.v1.trace_pb2 import (
    Span as OtlpSpan,
)
from opentelemetry.proto.trace.v1.trace_pb2 import (
    Status as OtlpStatus,
)

from telecart._errors import ExportError
from telecart._resource import SDK_NAME, SDK_VERSION, Resource
from telecart._types import (
    AttributeValue,
    Exemplar,
    HistogramDataPoint,
    InstrumentKind,
    MetricData,
    NumberDataPoint,
    SpanData,
    SpanKind,
    SpanStatus,
)

logger = logging.getLogger("telecart.exporter")

_KIND_MAP: dict[SpanKind, int] = {
    SpanKind.INTERNAL: OtlpSpan.SPAN_KIND_INTERNAL,
    SpanKind.SERVER: OtlpSpan.SPAN_KIND_SERVER,
    SpanKind.CLIENT: OtlpSpan.SPAN_KIND_CLIENT,
}

_STATUS_MAP: dict[SpanStatus, int] = {
    SpanStatus.UNSET: OtlpStatus.STATUS_CODE_UNSET,
    SpanStatus.OK: OtlpStatus.STATUS_CODE_OK,
    SpanStatus.ERROR: OtlpStatus.STATUS_CODE_ERROR,
}

_RETRYABLE_CODES = frozenset({
    grpc.StatusCode.UNAVAILABLE,
    grpc.StatusCode.DEADLINE_EXCEEDED,
    grpc.StatusCode.RESOURCE_EXHAUSTED,
    grpc.StatusCode.ABORTED,
})

_CUMULATIVE = metrics_pb2.AGGREGATION_TEMPORALITY_CUMULATIVE


class ExportResult(enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


def create_channel(endpoint: str, *, insecure: bool = True) -> grpc.Channel:
    """Open one gRPC channel to the collector, shared by both exporters."""
    if insecure:
        return grpc.insecure_channel(endpoint)
    return grpc.secure_channel(endpoint, grpc.ssl_channel_credentials())


def _make_attribute(key: str, value: AttributeValue) -> KeyValue:
    """Convert a Python key-value pair to an OTLP KeyValue protobuf."""
    if isinstance(value, bool):
        av = AnyValue(bool_value=value)
    elif isinstance(value, int):
        av = AnyValue(int_value=value)
    elif isinstance(value, float):
        av = AnyValue(double_value=value)
    else:
        av = AnyValue(string_value=str(value))
    return KeyValue(key=key, value=av)


def _make_attributes(attributes: dict[str, AttributeValue]) -> list[KeyValue]:
    return [_make_attribute(k, v) for k, v in attributes.items()]


def _resource_to_otlp(resource: Resource) -> OtlpResource:
    return OtlpResource(
        attributes=[_make_attribute(k, v) for k, v in resource.attributes.items()]
    )


def _span_data_to_otlp(sd: SpanData) -> OtlpSpan:
    """Convert a single SpanData to an OTLP Span protobuf."""
    status = OtlpStatus(code=_STATUS_MAP[sd.status])  # type: ignore[arg-type]
    if sd.status == SpanStatus.ERROR and sd.error_message:
        status = OtlpStatus(code=_STATUS_MAP[sd.status], message=sd.error_message)  # type: ignore[arg-type]

    parent = bytes.fromhex(sd.parent_span_id) if sd.parent_span_id else b""

    return OtlpSpan(
        trace_id=bytes.fromhex(sd.trace_id),
        span_id=bytes.fromhex(sd.span_id),
        parent_span_id=parent,
        name=sd.name,
        kind=_KIND_MAP.get(sd.kind, OtlpSpan.SPAN_KIND_INTERNAL),  # type: ignore[arg-type]
        start_time_unix_nano=sd.start_time_ns,
        end_time_unix_nano=sd.end_time_ns,
        attributes=_make_attributes(sd.attributes),
        status=status,
    )


def _build_trace_request(
    spans: Sequence[SpanData],
    resource: Resource,
    scope_name: str = SDK_NAME,
) -> ExportTraceServiceRequest:
    """Build an ExportTraceServiceRequest from a batch of SpanData."""
    scope = InstrumentationScope(name=scope_name, version=SDK_VERSION)
    scope_spans = ScopeSpans(scope=scope, spans=[_span_data_to_otlp(sd) for sd in spans])
    resource_spans = ResourceSpans(
        resource=_resource_to_otlp(resource), scope_spans=[scope_spans]
    )
    return ExportTraceServiceRequest(resource_spans=[resource_spans])


def _exemplars(exemplar: Exemplar | None) -> list[metrics_pb2.Exemplar]:
    if exemplar is None:
        return []
    return [metrics_pb2.Exemplar(
        time_unix_nano=exemplar.time_ns,
        as_double=exemplar.value,
        trace_id=bytes.fromhex(exemplar.trace_id),
        span_id=bytes.fromhex(exemplar.span_id),
    )]


def _number_point_to_otlp(point: NumberDataPoint) -> metrics_pb2.NumberDataPoint:
    return metrics_pb2.NumberDataPoint(
        attributes=_make_attributes(point.attributes),
        start_time_unix_nano=point.start_time_ns,
        time_unix_nano=point.time_ns,
        as_double=point.value,
        exemplars=_exemplars(point.exemplar),
    )


def _histogram_point_to_otlp(point: HistogramDataPoint) -> metrics_pb2.HistogramDataPoint:
    return metrics_pb2.HistogramDataPoint(
        attributes=_make_attributes(point.attributes),
        start_time_unix_nano=point.start_time_ns,
        time_unix_nano=point.time_ns,
        count=point.count,
        sum=point.sum,
        min=point.min,
        max=point.max,
        bucket_counts=list(point.bucket_counts),
        explicit_bounds=list(point.explicit_bounds),
        exemplars=_exemplars(point.exemplar),
    )


def _metric_to_otlp(metric: MetricData) -> metrics_pb2.Metric:
    """Convert one MetricData snapshot to an OTLP Metric (cumulative temporality)."""
    otlp = metrics_pb2.Metric(name=metric.name, description=metric.description, unit=metric.unit)
    if metric.kind is InstrumentKind.COUNTER:
        otlp.sum.CopyFrom(metrics_pb2.Sum(
            data_points=[_number_point_to_otlp(p) for p in metric.points if isinstance(p, NumberDataPoint)],
            aggregation_temporality=_CUMULATIVE,
            is_monotonic=True,
        ))
    elif metric.kind is InstrumentKind.HISTOGRAM:
        otlp.histogram.CopyFrom(metrics_pb2.Histogram(
            data_points=[
                _histogram_point_to_otlp(p) for p in metric.points if isinstance(p, HistogramDataPoint)
            ],
            aggregation_temporality=_CUMULATIVE,
        ))
    else:
        otlp.gauge.CopyFrom(metrics_pb2.Gauge(
            data_points=[_number_point_to_otlp(p) for p in metric.points if isinstance(p, NumberDataPoint)],
        ))
    return otlp


def _build_metrics_request(
    metrics: Sequence[MetricData],
    resource: Resource,
    scope_name: str = SDK_NAME,
) -> ExportMetricsServiceRequest:
    """Build an ExportMetricsServiceRequest from one collection of MetricData."""
    scope = InstrumentationScope(name=scope_name, version=SDK_VERSION)
    scope_metrics = metrics_pb2.ScopeMetrics(
        scope=scope, metrics=[_metric_to_otlp(m) for m in metrics]
    )
    resource_metrics = metrics_pb2.ResourceMetrics(
        resource=_resource_to_otlp(resource), scope_metrics=[scope_metrics]
    )
    return ExportMetricsServiceRequest(resource_metrics=[resource_metrics])


class _GrpcExporter:
    """Shared plumbing: channel ownership, auth metadata and the retry budget.

    Failures are logged and turned into ``ExportResult.FAILURE``; ``export``
    never raises.
    """

    _signal = "telemetry"

    def __init__(
        self,
        resource: Resource,
        *,
        endpoint: str | None = None,
        channel: grpc.Channel | None = None,
        insecure: bool = True,
        timeout_s: float = 10.0,
        max_attempts: int = 3,
        backoff_s: float = 0.2,
        api_key: str | None = None,
        scope_name: str = SDK_NAME,
    ) -> None:
        if channel is None and endpoint is None:
            raise ValueError("either endpoint or channel is required")
        self._resource = resource
        self._scope_name = scope_name
        self._timeout_s = timeout_s
        self._max_attempts = max(1, max_attempts)
        self._backoff_s = backoff_s
        self._metadata: list[tuple[str, str]] | None = None
        if api_key is not None:
            self._metadata = [("authorization", f"Bearer {api_key}")]

        self._owns_channel = channel is None
        if channel is None:
            assert endpoint is not None
            channel = create_channel(endpoint, insecure=insecure)
        self._channel = channel
        self._shutdown_event = threading.Event()
        self.exported_batches = 0
        self.failed_batches = 0

    def _call(self, request: Any) -> None:
        raise NotImplementedError

    def _send(self, request: Any) -> None:
        """Send with retries on transient status codes. Raises ExportError."""
        for attempt in range(1, self._max_attempts + 1):
            try:
                self._call(request)
                return
            except grpc.RpcError as exc:
                code = exc.code() if isinstance(exc, grpc.Call) else None
                if code not in _RETRYABLE_CODES or attempt == self._max_attempts:
                    raise ExportError(
                        f"{self._signal} export failed after {attempt} attempt(s): {code}",
                        code=code,
                    ) from exc
                delay = self._backoff_s * (2 ** (attempt - 1))
                logger.debug(
                    "%s export attempt %d failed with %s; retrying in %.2fs",
                    self._signal, attempt, code, delay,
                )
                if self._shutdown_event.wait(delay):
                    raise ExportError(
                        f"{self._signal} export abandoned during shutdown", code=code
                    ) from exc

    def _export(self, request_factory: Any, count: int) -> ExportResult:
        if self._shutdown_event.is_set():
            logger.debug("Exporter shut down; dropping %d %s records", count, self._signal)
            return ExportResult.FAILURE
        try:
            request = request_factory()
        except Exception:  # noqa: BLE001
            self.failed_batches += 1
            logger.warning("Failed to encode %d %s records", count, self._signal, exc_info=True)
            return ExportResult.FAILURE
        try:
            self._send(request)
        except ExportError:
            self.failed_batches += 1
            logger.warning("Dropped batch of %d %s records", count, self._signal, exc_info=True)
            return ExportResult.FAILURE
        except ValueError:
            # grpc raises ValueError when the channel was closed underneath us.
            self.failed_batches += 1
            logger.warning(
                "gRPC channel closed; dropped batch of %d %s records", count, self._signal
            )
            return ExportResult.FAILURE
        except Exception:  # noqa: BLE001
            self.failed_batches += 1
            logger.warning(
                "Unexpected error exporting %d %s records", count, self._signal, exc_info=True
            )
            return ExportResult.FAILURE
        self.exported_batches += 1
        return ExportResult.SUCCESS

    def shutdown(self) -> None:
        """Stop exporting. Closes the channel only if this exporter opened it."""
        if self._shutdown_event.is_set():
            return
        self._shutdown_event.set()
        if self._owns_channel:
            try:
                self._channel.close()
            except Exception:  # noqa: BLE001
                logger.debug("Error closing gRPC channel", exc_info=True)


class OTLPSpanExporter(_GrpcExporter):
    """Exports SpanData batches using the OTLP trace service."""

    _signal = "span"

    def __init__(self, resource: Resource, **kwargs: Any) -> None:
        super().__init__(resource, **kwargs)
        self._stub = TraceServiceStub(self._channel)  # type: ignore[no-untyped-call]

    def _call(self, request: ExportTraceServiceRequest) -> None:
        self._stub.Export(request, timeout=self._timeout_s, metadata=self._metadata)

    def export(self, spans: Sequence[SpanData]) -> ExportResult:
        """Export a batch of spans. Logs and swallows all errors."""
        if not spans:
            return ExportResult.SUCCESS
        return self._export(
            lambda: _build_trace_request(spans, self._resource, self._scope_name), len(spans)
        )


class OTLPMetricExporter(_GrpcExporter):
    """Exports MetricData snapshots using the OTLP metrics service."""

    _signal = "metric"

    def __init__(self, resource: Resource, **kwargs: Any) -> None:
        super().__init__(resource, **kwargs)
        self._stub = MetricsServiceStub(self._channel)  # type: ignore[no-untyped-call]

    def _call(self, request: ExportMetricsServiceRequest) -> None:
        self._stub.Export(request, timeout=self._timeout_s, metadata=self._metadata)

    def export(self, metrics: Sequence[MetricData]) -> ExportResult:
        """Export one collection of metrics. Logs and swallows all errors."""
        if not metrics:
            return ExportResult.SUCCESS
        return self._export(
            lambda: _build_metrics_request(metrics, self._resource, self._scope_name),
            len(metrics),
        )
