"""Span class — the core unit of tracing."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from types import TracebackType
from typing import TYPE_CHECKING

from telecart._types import AttributeValue, SpanData, SpanKind, SpanStatus

if TYPE_CHECKING:
    from telecart._context import SpanContext
    from telecart._processor import SpanProcessor

logger = logging.getLogger("telecart.span")


class Span:
    """A mutable span that becomes an immutable SpanData on end.

    Spans are created by ``Tracer.start_span``. Used as a context manager::

        ctx, span = tracer.start_span(parent, "my-operation")
        with span:
            span.set_attribute("key", "value")
    """

    def __init__(
        self,
        name: str,
        context: SpanContext,
        *,
        parent_span_id: str | None = None,
        processor: SpanProcessor | None = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Mapping[str, AttributeValue] | None = None,
        start_time_ns: int | None = None,
    ) -> None:
        self.name = name
        self.kind = kind
        self.context = context
        self.parent_span_id = parent_span_id
        self._processor = processor

        self._lock = threading.Lock()
        self._status: SpanStatus = SpanStatus.UNSET
        self._error_message: str | None = None
        self._attributes: dict[str, AttributeValue] = dict(attributes or {})
        self._start_time_ns: int = start_time_ns if start_time_ns is not None else time.time_ns()
        self._end_time_ns: int | None = None

    @property
    def trace_id(self) -> str:
        return self.context.trace_id

    @property
    def span_id(self) -> str:
        return self.context.span_id

    @property
    def is_recording(self) -> bool:
        return self._end_time_ns is None

    @property
    def status(self) -> SpanStatus:
        return self._status

    def __enter__(self) -> Span:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self.set_status(
                SpanStatus.ERROR, str(exc_val) if exc_val else exc_type.__name__
            )
        if self.is_recording:
            self.end()

    def set_attribute(self, key: str, value: AttributeValue) -> None:
        """Attach a key-value attribute to this span."""
        with self._lock:
            if self._end_time_ns is not None:
                logger.debug("set_attribute(%r) on ended span %r ignored", key, self.name)
                return
            self._attributes[key] = value

    def set_attributes(self, attributes: Mapping[str, AttributeValue]) -> None:
        with self._lock:
            if self._end_time_ns is not None:
                logger.debug("set_attributes on ended span %r ignored", self.name)
                return
            self._attributes.update(attributes)

    def set_status(self, status: SpanStatus, message: str | None = None) -> None:
        """Explicitly set span status."""
        with self._lock:
            if self._end_time_ns is not None:
                logger.debug("set_status on ended span %r ignored", self.name)
                return
            self._status = status
            self._error_message = message if status == SpanStatus.ERROR else None

    def record_exception(self, exc: BaseException) -> None:
        self.set_status(SpanStatus.ERROR, str(exc) or type(exc).__name__)

    def end(self, end_time_ns: int | None = None) -> None:
        """Stamp the end time and hand the snapshot to the processor.

        Ending a span twice is a usage error: it is logged and ignored.
        """
        with self._lock:
            if self._end_time_ns is not None:
                logger.warning("Span %r (%s) already ended", self.name, self.span_id)
                return
            end = end_time_ns if end_time_ns is not None else time.time_ns()
            self._end_time_ns = max(end, self._start_time_ns)
            if self._status == SpanStatus.UNSET:
                self._status = SpanStatus.OK
            data = self._to_span_data()

        if self._processor is not None and self.context.sampled:
            self._processor.on_end(data)

    def _to_span_data(self) -> SpanData:
        assert self._end_time_ns is not None
        return SpanData(
            span_id=self.span_id,
            trace_id=self.trace_id,
            name=self.name,
            kind=self.kind,
            status=self._status,
            start_time_ns=self._start_time_ns,
            end_time_ns=self._end_time_ns,
            attributes=dict(self._attributes),
            parent_span_id=self.parent_span_id,
            error_message=self._error_message,
        )
