"""Tracer — opens spans under an explicitly passed parent context."""

from __future__ import annotations

import random
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import TYPE_CHECKING

from telecart._context import SpanContext, new_span_id, new_trace_id
from telecart._span import Span
from telecart._types import AttributeValue, SpanKind

if TYPE_CHECKING:
    from telecart._processor import SpanProcessor


class Tracer:
    """Creates spans and wires them to a span processor.

    Sampling is parent-based: a root span is kept with probability
    ``sampling_rate`` and every descendant inherits that decision.
    """

    def __init__(
        self,
        name: str,
        *,
        processor: SpanProcessor | None = None,
        sampling_rate: float = 1.0,
        rng: random.Random | None = None,
    ) -> None:
        self.name = name
        self._processor = processor
        self._sampling_rate = sampling_rate
        self._rng = rng or random.Random()

    def _should_sample(self) -> bool:
        if self._sampling_rate >= 1.0:
            return True
        if self._sampling_rate <= 0.0:
            return False
        return self._rng.random() < self._sampling_rate

    def start_span(
        self,
        parent: SpanContext | None,
        name: str,
        *,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> tuple[SpanContext, Span]:
        """Open a span as a child of ``parent`` (or a new root when None).

        Returns the child context to pass to nested calls, and the span.
        """
        if parent is not None:
            ctx = SpanContext(
                trace_id=parent.trace_id,
                span_id=new_span_id(),
                sampled=parent.sampled,
                baggage=parent.baggage,
            )
            parent_span_id: str | None = parent.span_id
        else:
            ctx = SpanContext(
                trace_id=new_trace_id(),
                span_id=new_span_id(),
                sampled=self._should_sample(),
            )
            parent_span_id = None

        span = Span(
            name,
            ctx,
            parent_span_id=parent_span_id,
            processor=self._processor,
            kind=kind,
            attributes=attributes,
        )
        return ctx, span

    @contextmanager
    def span(
        self,
        parent: SpanContext | None,
        name: str,
        *,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> Iterator[tuple[SpanContext, Span]]:
        """Scoped span: ends on exit, marking ERROR if an exception escapes.

        Usage::

            with tracer.span(ctx, "load-cart") as (child_ctx, s):
                s.set_attribute("cart.size", 3)
        """
        ctx, span = self.start_span(parent, name, kind=kind, attributes=attributes)
        with span:
            yield ctx, span
