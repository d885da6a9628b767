"""W3C trace-context and baggage header propagation."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, MutableMapping
from types import MappingProxyType
from urllib.parse import quote, unquote

from telecart._context import INVALID_SPAN_ID, INVALID_TRACE_ID, SpanContext

logger = logging.getLogger("telecart.propagation")

TRACEPARENT_HEADER = "traceparent"
BAGGAGE_HEADER = "baggage"

_TRACEPARENT_RE = re.compile(
    r"^(?P<version>[0-9a-f]{2})-(?P<trace_id>[0-9a-f]{32})-"
    r"(?P<span_id>[0-9a-f]{16})-(?P<flags>[0-9a-f]{2})(?:-.*)?$"
)
_MAX_BAGGAGE_ENTRIES = 180
_MAX_BAGGAGE_BYTES = 8192


def inject(ctx: SpanContext | None, carrier: MutableMapping[str, str]) -> None:
    """Write traceparent and baggage headers for ``ctx`` into ``carrier``."""
    if ctx is None:
        return
    flags = "01" if ctx.sampled else "00"
    carrier[TRACEPARENT_HEADER] = f"00-{ctx.trace_id}-{ctx.span_id}-{flags}"
    if ctx.baggage:
        carrier[BAGGAGE_HEADER] = ",".join(
            f"{quote(k, safe='')}={quote(v, safe='')}" for k, v in ctx.baggage.items()
        )


def _get_header(carrier: Mapping[str, str], name: str) -> str | None:
    value = carrier.get(name)
    if value is not None:
        return value
    for key, candidate in carrier.items():
        if key.lower() == name:
            return candidate
    return None


def _parse_baggage(header: str | None) -> dict[str, str]:
    if not header or len(header.encode()) > _MAX_BAGGAGE_BYTES:
        return {}
    entries: dict[str, str] = {}
    for member in header.split(","):
        # properties after ';' are not carried
        pair = member.split(";", 1)[0].strip()
        if "=" not in pair:
            continue
        key, value = pair.split("=", 1)
        key = unquote(key.strip())
        if not key:
            continue
        entries[key] = unquote(value.strip())
        if len(entries) >= _MAX_BAGGAGE_ENTRIES:
            break
    return entries


def extract(carrier: Mapping[str, str]) -> SpanContext | None:
    """Parse incoming headers into a remote parent context.

    Malformed or missing traceparent headers yield None so the caller starts
    a new trace.
    """
    header = _get_header(carrier, TRACEPARENT_HEADER)
    if not header:
        return None
    match = _TRACEPARENT_RE.match(header.strip().lower())
    if match is None:
        logger.debug("Ignoring malformed traceparent %r", header)
        return None
    version = match.group("version")
    if version == "ff" or (version == "00" and len(header.strip()) != 55):
        logger.debug("Ignoring unsupported traceparent %r", header)
        return None
    trace_id = match.group("trace_id")
    span_id = match.group("span_id")
    if trace_id == INVALID_TRACE_ID or span_id == INVALID_SPAN_ID:
        return None
    sampled = bool(int(match.group("flags"), 16) & 0x01)
    baggage = _parse_baggage(_get_header(carrier, BAGGAGE_HEADER))
    return SpanContext(
        trace_id=trace_id,
        span_id=span_id,
        sampled=sampled,
        remote=True,
        baggage=MappingProxyType(baggage),
    )
