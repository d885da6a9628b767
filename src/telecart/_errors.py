"""Exception hierarchy for the telemetry core."""

from __future__ import annotations

from typing import Any


class TelemetryError(Exception):
    """Base class for all telecart errors."""


class ConfigurationError(TelemetryError, ValueError):
    """Invalid configuration or resource attributes. Fatal at startup."""


class DuplicateInstrumentError(TelemetryError):
    """An instrument with the same (name, unit) is already registered."""

    def __init__(self, name: str, unit: str) -> None:
        super().__init__(f"instrument {name!r} with unit {unit!r} already registered")
        self.name = name
        self.unit = unit


class InvalidArgumentError(TelemetryError, ValueError):
    """A recorded value was rejected. The stored value is left unchanged."""


class ExportError(TelemetryError):
    """A batch could not be delivered to the collector."""

    def __init__(self, message: str, *, code: Any = None) -> None:
        super().__init__(message)
        self.code = code


class ShutdownTimeoutError(TelemetryError, TimeoutError):
    """A pipeline did not drain within its shutdown budget."""
