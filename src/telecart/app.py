"""FastAPI shopping-cart service instrumented with telecart."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from telecart._errors import ShutdownTimeoutError
from telecart._propagation import extract
from telecart._telemetry import Telemetry
from telecart._types import SpanKind, SpanStatus
from telecart.cart import CartCounter, ServiceInstruments

logger = logging.getLogger("telecart.app")


def create_app(
    telemetry: Telemetry,
    *,
    instruments: ServiceInstruments | None = None,
    cart: CartCounter | None = None,
    error_rate: float = 0.5,
    rng: random.Random | None = None,
    shutdown_timeout_s: float = 5.0,
) -> FastAPI:
    """FastAPI application factory.

    Handlers receive the tracer, instruments and cart through this closure;
    nothing is looked up from module state.
    """
    instruments = instruments or ServiceInstruments.register(telemetry.meter)
    cart = cart or CartCounter(instruments.item_gauge)
    rng = rng or random.Random()
    tracer = telemetry.tracer

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("Cart service starting")
        yield
        logger.info("Cart service shutting down")
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, telemetry.shutdown, shutdown_timeout_s)
        except ShutdownTimeoutError:
            logger.warning("Telemetry shutdown timed out; buffered data may be lost", exc_info=True)

    app = FastAPI(title="telecart", lifespan=lifespan)
    app.state.telemetry = telemetry
    app.state.cart = cart
    app.state.instruments = instruments

    @app.get("/", response_class=PlainTextResponse)
    def hello_world(request: Request) -> PlainTextResponse:
        start = time.perf_counter()
        ctx, span = tracer.start_span(
            extract(request.headers), "helloWorldHandler", kind=SpanKind.SERVER
        )
        try:
            if rng.random() < error_rate:
                instruments.error_counter.add(ctx, 1)
                span.set_attributes({
                    "helloWorldHandler.error": True,
                    "http.status": 500,
                })
                span.set_status(SpanStatus.ERROR, "simulated failure")
                return PlainTextResponse("Internal Server Error", status_code=500)

            span.set_attributes({
                "helloWorldHandler.error": False,
                "http.status": 200,
            })
            return PlainTextResponse("Hello, World!", status_code=200)
        finally:
            span.end()
            instruments.latency_histogram.record(ctx, time.perf_counter() - start)

    @app.get("/cart/add", response_class=PlainTextResponse)
    def cart_add(request: Request) -> PlainTextResponse:
        ctx, span = tracer.start_span(
            extract(request.headers), "cartAddHandler", kind=SpanKind.SERVER
        )
        with span:
            count = cart.add(ctx)
            span.set_attribute("cartAddHandler.cartCount", count)
        return PlainTextResponse(f"Item added to cart. Number of items in cart: {count}.")

    @app.get("/cart/remove", response_class=PlainTextResponse)
    def cart_remove(request: Request) -> PlainTextResponse:
        ctx, span = tracer.start_span(
            extract(request.headers), "cartRemoveHandler", kind=SpanKind.SERVER
        )
        with span:
            count = cart.remove(ctx)
            span.set_attribute("cartRemoveHandler.cartCount", count)
        return PlainTextResponse(f"Item removed from cart. Number of items in cart: {count}.")

    return app
