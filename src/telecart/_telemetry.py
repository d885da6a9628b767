"""Telemetry — composition root wiring config, pipelines and samplers."""

from __future__ import annotations

import logging
import threading
import time

import grpc

from telecart._config import TelemetryConfig
from telecart._errors import ShutdownTimeoutError
from telecart._exporter import OTLPMetricExporter, OTLPSpanExporter, create_channel
from telecart._metrics import Meter, ObservableGauge
from telecart._processor import BatchSpanProcessor, PeriodicMetricReader
from telecart._resource import SDK_VERSION, Resource
from telecart._sampler import PeriodicSampler, ProcessMemorySampler
from telecart._tracer import Tracer

logger = logging.getLogger("telecart")

MEMORY_GAUGE_NAME = "process.allocated_memory"


class Telemetry:
    """Owns the tracer, the meter and every background task behind them.

    Handles are passed explicitly to the code that records telemetry; there is
    no process-wide instance. Use ``Telemetry.create(config)`` to build the
    OTLP/gRPC wiring, or the constructor directly to inject components.
    """

    def __init__(
        self,
        *,
        resource: Resource,
        tracer: Tracer,
        meter: Meter,
        span_processor: BatchSpanProcessor,
        metric_reader: PeriodicMetricReader,
        memory_sampler: PeriodicSampler | None = None,
        channel: grpc.Channel | None = None,
    ) -> None:
        self.resource = resource
        self.tracer = tracer
        self.meter = meter
        self.span_processor = span_processor
        self.metric_reader = metric_reader
        self.memory_sampler = memory_sampler
        self.memory_gauge: ObservableGauge | None = None
        self._channel = channel
        self._lock = threading.Lock()
        self._started = False
        self._shut_down = False

        if memory_sampler is not None:
            self.memory_gauge = meter.create_observable_gauge(
                MEMORY_GAUGE_NAME,
                unit="{MB}",
                description="Allocated memory in MB.",
                samplers=[memory_sampler],
            )

    @classmethod
    def create(cls, config: TelemetryConfig) -> Telemetry:
        """Build and start OTLP/gRPC telemetry. Startup errors propagate."""
        config.validate()
        resource = Resource.for_service(config.service_name, config.environment)
        channel = create_channel(config.endpoint, insecure=config.insecure)
        exporter_options = {
            "channel": channel,
            "timeout_s": config.export_timeout_s,
            "max_attempts": config.max_export_attempts,
            "api_key": config.api_key,
            "scope_name": config.service_name,
        }
        span_processor = BatchSpanProcessor(
            OTLPSpanExporter(resource, **exporter_options),
            batch_size=config.batch_size,
            buffer_size=config.buffer_size,
            schedule_delay_ms=config.schedule_delay_ms,
            drop_policy=config.drop_policy,
        )
        meter = Meter(config.service_name, SDK_VERSION)
        metric_reader = PeriodicMetricReader(
            meter,
            OTLPMetricExporter(resource, **exporter_options),
            export_interval_ms=config.export_interval_ms,
        )
        telemetry = cls(
            resource=resource,
            tracer=Tracer(
                config.service_name,
                processor=span_processor,
                sampling_rate=config.sampling_rate,
            ),
            meter=meter,
            span_processor=span_processor,
            metric_reader=metric_reader,
            memory_sampler=PeriodicSampler(
                ProcessMemorySampler(), interval_ms=config.memory_sample_interval_ms
            ),
            channel=channel,
        )
        telemetry.start()
        logger.info(
            "Telemetry for %s exporting to %s (%s)",
            config.service_name,
            config.endpoint,
            "insecure" if config.insecure else "tls",
        )
        return telemetry

    def start(self) -> None:
        with self._lock:
            if self._started or self._shut_down:
                return
            self._started = True
        if self.memory_sampler is not None:
            self.memory_sampler.start()
        self.span_processor.start()
        self.metric_reader.start()

    def shutdown(self, timeout_s: float = 5.0) -> None:
        """Cancel the sampler and drain both pipelines within ``timeout_s``.

        A second call returns immediately. Raises ShutdownTimeoutError when a
        pipeline could not flush in time; the caller decides whether to exit
        anyway.
        """
        with self._lock:
            if self._shut_down:
                return
            self._shut_down = True

        deadline = time.monotonic() + timeout_s
        if self.memory_sampler is not None:
            self.memory_sampler.stop()

        unfinished: list[str] = []
        if not self.span_processor.shutdown(max(0.0, deadline - time.monotonic())):
            unfinished.append("spans")
        if not self.metric_reader.shutdown(max(0.0, deadline - time.monotonic())):
            unfinished.append("metrics")

        if self._channel is not None:
            self._channel.close()
            self._channel = None

        if unfinished:
            raise ShutdownTimeoutError(
                f"{', '.join(unfinished)} not flushed within {timeout_s:.1f}s"
            )

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down
