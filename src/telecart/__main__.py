"""Command line entry point: ``python -m telecart`` or ``telecart``."""

from __future__ import annotations

import dataclasses
import logging
import sys

import click
import uvicorn

from telecart._config import TelemetryConfig, parse_endpoint
from telecart._errors import ConfigurationError, DuplicateInstrumentError
from telecart._telemetry import Telemetry
from telecart.app import create_app

logger = logging.getLogger("telecart")


@click.command()
@click.option("--host", default="0.0.0.0", show_default=True, help="Address to bind.")
@click.option("--port", default=8080, show_default=True, type=int, help="Port to bind.")
@click.option("--service-name", default=None, help="service.name resource attribute.")
@click.option("--endpoint", default=None, help="Collector host:port (default from OTEL_* env).")
@click.option(
    "--export-interval",
    default=None,
    type=click.IntRange(min=1),
    help="Metric export interval in milliseconds.",
)
@click.option("--tls/--insecure", "tls", default=None, help="Transport security to the collector.")
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
)
def main(
    host: str,
    port: int,
    service_name: str | None,
    endpoint: str | None,
    export_interval: int | None,
    tls: bool | None,
    log_level: str,
) -> None:
    """Run the instrumented shopping-cart service."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides: dict[str, object] = {}
    if service_name is not None:
        overrides["service_name"] = service_name
    if endpoint is not None:
        overrides["endpoint"], scheme_insecure = parse_endpoint(endpoint)
        if scheme_insecure is not None:
            overrides["insecure"] = scheme_insecure
    if export_interval is not None:
        overrides["export_interval_ms"] = export_interval
    if tls is not None:
        overrides["insecure"] = not tls
    config = dataclasses.replace(TelemetryConfig.from_env(), **overrides)  # type: ignore[arg-type]

    try:
        telemetry = Telemetry.create(config)
        app = create_app(telemetry)
    except (ConfigurationError, DuplicateInstrumentError) as exc:
        logger.error("Startup failed: %s", exc)
        sys.exit(1)

    logger.info("Starting server on %s:%d", host, port)
    uvicorn.run(app, host=host, port=port, log_level=log_level.lower())


if __name__ == "__main__":
    main()
