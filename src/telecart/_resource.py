"""Resource: static identity attributes attached to all exported telemetry."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from telecart._errors import ConfigurationError

SDK_NAME = "telecart"
SDK_VERSION = "0.1.0"


def _sdk_attributes() -> dict[str, str]:
    return {
        "telemetry.sdk.name": SDK_NAME,
        "telemetry.sdk.language": "python",
        "telemetry.sdk.version": SDK_VERSION,
    }


@dataclass(frozen=True)
class Resource:
    """Immutable mapping of string keys to string values."""

    attributes: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.attributes.get(key, default)

    @property
    def service_name(self) -> str:
        return self.attributes.get("service.name", "")

    @classmethod
    def for_service(cls, service_name: str, environment: str = "development") -> Resource:
        """Standard identity of a service process."""
        return build_resource({
            "service.name": service_name,
            "deployment.environment": environment,
            "library.language": "python",
        })


def build_resource(attributes: Mapping[str, str]) -> Resource:
    """Build a Resource from caller attributes merged over the SDK attributes.

    Raises ConfigurationError on an empty key or a non-string key/value.
    """
    merged = _sdk_attributes()
    for key, value in attributes.items():
        if not isinstance(key, str) or not key:
            raise ConfigurationError(f"resource attribute key must be a non-empty string, got {key!r}")
        if not isinstance(value, str):
            raise ConfigurationError(
                f"resource attribute {key!r} must be a string, got {type(value).__name__}"
            )
        merged[key] = value
    return Resource(attributes=MappingProxyType(merged))
