"""Telecart Quick Start — send one trace and a few metrics to a local collector."""

import telecart

# 1. Build telemetry from OTEL_* environment variables (defaults: localhost:4317)
telemetry = telecart.Telemetry.create(
    telecart.TelemetryConfig.from_env().validate()
)
tracer = telemetry.tracer
requests = telemetry.meter.create_counter(
    "example.requests", unit="{call}", description="Requests handled."
)

# 2. Trace an operation; the returned context is passed to nested work
with tracer.span(None, "checkout", kind=telecart.SpanKind.SERVER) as (ctx, s):
    s.set_attribute("cart.items", 3)
    requests.add(ctx, 1)

    with tracer.span(ctx, "charge-card") as (_, child):
        child.set_attribute("payment.provider", "demo")

# 3. Shutdown (flushes remaining spans and a final metric snapshot)
telemetry.shutdown()

print("Done! Check your collector's debug exporter output.")
