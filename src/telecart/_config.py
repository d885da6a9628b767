"""SDK configuration."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

from telecart._buffer import DropPolicy
from telecart._errors import ConfigurationError

_ENDPOINT_RE = re.compile(r"^(?:\[[0-9a-fA-F:.]+\]|[A-Za-z0-9_.-]+):\d{1,5}$")


def _env_int(key: str, default: int) -> int:
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    val = os.environ.get(key)
    if val is None:
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    val = os.environ.get(key)
    if val is None:
        return default
    return val.strip().lower() in ("true", "1", "yes")


def parse_endpoint(endpoint: str) -> tuple[str, bool | None]:
    """Strip an http(s):// scheme and trailing slash.

    Returns the host:port string and the security implied by the scheme
    (True for insecure, False for TLS, None when no scheme was given).
    """
    endpoint = endpoint.strip()
    insecure: bool | None = None
    if endpoint.startswith("https://"):
        endpoint, insecure = endpoint[len("https://"):], False
    elif endpoint.startswith("http://"):
        endpoint, insecure = endpoint[len("http://"):], True
    return endpoint.rstrip("/"), insecure


@dataclass(frozen=True)
class TelemetryConfig:
    """Immutable SDK configuration."""

    service_name: str = "test-service"
    endpoint: str = "localhost:4317"
    insecure: bool = True
    environment: str = "development"
    export_interval_ms: int = 3000
    schedule_delay_ms: int = 1000
    batch_size: int = 512
    buffer_size: int = 8192
    drop_policy: DropPolicy = "oldest"
    sampling_rate: float = 1.0
    memory_sample_interval_ms: int = 5000
    export_timeout_s: float = 10.0
    max_export_attempts: int = 3
    api_key: str | None = None

    @classmethod
    def from_env(cls) -> TelemetryConfig:
        """Build a config from the standard OTEL_* variables.

        Environment Variables:
            OTEL_SERVICE_NAME: service.name resource attribute.
            OTEL_EXPORTER_OTLP_ENDPOINT: collector host:port; an https://
                scheme switches to TLS.
            OTEL_EXPORTER_OTLP_INSECURE: "true"/"false".
            OTEL_METRIC_EXPORT_INTERVAL: milliseconds between metric exports.
            OTEL_BSP_SCHEDULE_DELAY: milliseconds between span flushes.
            OTEL_BSP_MAX_EXPORT_BATCH_SIZE: spans per export request.
            OTEL_BSP_MAX_QUEUE_SIZE: span buffer capacity.
            OTEL_TRACES_SAMPLER_ARG: root sampling probability.
            TELECART_ENVIRONMENT: deployment.environment resource attribute.
            TELECART_API_KEY: bearer token sent to the collector.
        """
        defaults = cls()
        endpoint, scheme_insecure = parse_endpoint(
            os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", defaults.endpoint)
        )
        insecure = _env_bool(
            "OTEL_EXPORTER_OTLP_INSECURE",
            defaults.insecure if scheme_insecure is None else scheme_insecure,
        )
        return cls(
            service_name=os.environ.get("OTEL_SERVICE_NAME", defaults.service_name),
            endpoint=endpoint,
            insecure=insecure,
            environment=os.environ.get("TELECART_ENVIRONMENT", defaults.environment),
            export_interval_ms=_env_int("OTEL_METRIC_EXPORT_INTERVAL", defaults.export_interval_ms),
            schedule_delay_ms=_env_int("OTEL_BSP_SCHEDULE_DELAY", defaults.schedule_delay_ms),
            batch_size=_env_int("OTEL_BSP_MAX_EXPORT_BATCH_SIZE", defaults.batch_size),
            buffer_size=_env_int("OTEL_BSP_MAX_QUEUE_SIZE", defaults.buffer_size),
            sampling_rate=_env_float("OTEL_TRACES_SAMPLER_ARG", defaults.sampling_rate),
            api_key=os.environ.get("TELECART_API_KEY") or None,
        )

    def validate(self) -> TelemetryConfig:
        """Raise ConfigurationError on any unusable setting; return self."""
        if not self.service_name.strip():
            raise ConfigurationError("service_name must not be empty")
        if not _ENDPOINT_RE.match(self.endpoint):
            raise ConfigurationError(f"endpoint must be host:port, got {self.endpoint!r}")
        port = int(self.endpoint.rsplit(":", 1)[1])
        if not 0 < port < 65536:
            raise ConfigurationError(f"endpoint port out of range: {port}")
        for name in (
            "export_interval_ms",
            "schedule_delay_ms",
            "batch_size",
            "buffer_size",
            "memory_sample_interval_ms",
            "max_export_attempts",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.export_timeout_s <= 0:
            raise ConfigurationError("export_timeout_s must be positive")
        if not 0.0 <= self.sampling_rate <= 1.0:
            raise ConfigurationError(f"sampling_rate must be in [0, 1], got {self.sampling_rate}")
        if self.drop_policy not in ("oldest", "newest"):
            raise ConfigurationError(f"unknown drop_policy {self.drop_policy!r}")
        return self
