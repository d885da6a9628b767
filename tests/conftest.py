"""Shared pytest fixtures: an in-process OTLP collector."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from concurrent import futures

import grpc
import pytest
from opentelemetry.proto.collector.metrics.v1.metrics_service_pb2 import (
    ExportMetricsServiceRequest,
    ExportMetricsServiceResponse,
)
from opentelemetry.proto.collector.metrics.v1.metrics_service_pb2_grpc import (
    MetricsServiceServicer,
    add_MetricsServiceServicer_to_server,
)
from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import (
    ExportTraceServiceRequest,
    ExportTraceServiceResponse,
)
from opentelemetry.proto.collector.trace.v1.trace_service_pb2_grpc import (
    TraceServiceServicer,
    add_TraceServiceServicer_to_server,
)


class TraceCollector(TraceServiceServicer):
    """Collects ExportTraceServiceRequests; can fail the first N calls."""

    def __init__(self) -> None:
        self.requests: list[ExportTraceServiceRequest] = []
        self.calls = 0
        self.fail_first = 0
        self.fail_code = grpc.StatusCode.UNAVAILABLE
        self._lock = threading.Lock()

    def Export(  # noqa: N802
        self,
        request: ExportTraceServiceRequest,
        context: grpc.ServicerContext,
    ) -> ExportTraceServiceResponse:
        with self._lock:
            self.calls += 1
            if self.calls <= self.fail_first:
                context.abort(self.fail_code, "collector busy")
            self.requests.append(request)
        return ExportTraceServiceResponse()

    @property
    def span_names(self) -> list[str]:
        return [
            span.name
            for req in self.requests
            for rs in req.resource_spans
            for ss in rs.scope_spans
            for span in ss.spans
        ]


class MetricsCollector(MetricsServiceServicer):
    """Collects ExportMetricsServiceRequests."""

    def __init__(self) -> None:
        self.requests: list[ExportMetricsServiceRequest] = []
        self._lock = threading.Lock()

    def Export(  # noqa: N802
        self,
        request: ExportMetricsServiceRequest,
        context: grpc.ServicerContext,
    ) -> ExportMetricsServiceResponse:
        with self._lock:
            self.requests.append(request)
        return ExportMetricsServiceResponse()

    def metric_names(self) -> set[str]:
        return {
            metric.name
            for req in self.requests
            for rm in req.resource_metrics
            for sm in rm.scope_metrics
            for metric in sm.metrics
        }


class Collector:
    def __init__(self, endpoint: str, traces: TraceCollector, metrics: MetricsCollector) -> None:
        self.endpoint = endpoint
        self.traces = traces
        self.metrics = metrics


@pytest.fixture
def collector() -> Iterator[Collector]:
    traces = TraceCollector()
    metrics = MetricsCollector()
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=4))
    add_TraceServiceServicer_to_server(traces, server)
    add_MetricsServiceServicer_to_server(metrics, server)
    port = server.add_insecure_port("localhost:0")
    server.start()
    try:
        yield Collector(f"localhost:{port}", traces, metrics)
    finally:
        server.stop(grace=1)
