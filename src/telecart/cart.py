"""Shopping cart state and the instruments the demo handlers record into."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from telecart._context import SpanContext
    from telecart._metrics import Counter, Gauge, Histogram, Meter


@dataclass(frozen=True)
class ServiceInstruments:
    """Instruments shared by the HTTP handlers."""

    error_counter: Counter
    latency_histogram: Histogram
    item_gauge: Gauge

    @classmethod
    def register(cls, meter: Meter) -> ServiceInstruments:
        """Register the service instruments. Raises DuplicateInstrumentError on reuse."""
        return cls(
            error_counter=meter.create_counter(
                "api.request.error_counter",
                unit="{call}",
                description="Number of erroneous API calls.",
            ),
            latency_histogram=meter.create_histogram(
                "api.request.latency_seconds",
                unit="{s}",
                description="Records the latency of requests in seconds",
            ),
            item_gauge=meter.create_gauge(
                "api.cart.items",
                unit="{item}",
                description="Tracks the number of items in a user's cart",
            ),
        )


class CartCounter:
    """Item count shared by concurrent handlers.

    Every change happens under one lock, and the gauge is recorded while the
    lock is held, so the last gauge write always equals the final count.
    """

    def __init__(self, gauge: Gauge | None = None) -> None:
        self._gauge = gauge
        self._lock = threading.Lock()
        self._count = 0

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def add(self, ctx: SpanContext | None = None) -> int:
        with self._lock:
            self._count += 1
            self._publish(ctx)
            return self._count

    def remove(self, ctx: SpanContext | None = None) -> int:
        """Decrement, never below zero."""
        with self._lock:
            if self._count > 0:
                self._count -= 1
            self._publish(ctx)
            return self._count

    def _publish(self, ctx: SpanContext | None) -> None:
        if self._gauge is not None:
            self._gauge.record(ctx, self._count)
