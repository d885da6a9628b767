"""Explicit span context passed between call sites.

There is no ambient "current span": callers thread the ``SpanContext``
returned by ``Tracer.start_span`` into every call that should nest under it.
``None`` is the root context.
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType

INVALID_TRACE_ID = "0" * 32
INVALID_SPAN_ID = "0" * 16


def new_trace_id() -> str:
    while True:
        trace_id = secrets.token_hex(16)
        if trace_id != INVALID_TRACE_ID:
            return trace_id


def new_span_id() -> str:
    while True:
        span_id = secrets.token_hex(8)
        if span_id != INVALID_SPAN_ID:
            return span_id


@dataclass(frozen=True)
class SpanContext:
    """Identity of an active span plus the baggage travelling with it."""

    trace_id: str
    span_id: str
    sampled: bool = True
    remote: bool = False
    baggage: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    def with_baggage(self, key: str, value: str) -> SpanContext:
        """Return a copy carrying an extra baggage entry."""
        merged = dict(self.baggage)
        merged[key] = value
        return replace(self, baggage=MappingProxyType(merged))
