"""Tests for the shared cart counter and service instruments."""

import threading

import pytest

from telecart._errors import DuplicateInstrumentError
from telecart._metrics import Meter
from telecart.cart import CartCounter, ServiceInstruments


def _gauge_value(meter: Meter) -> float:
    (metric,) = [m for m in meter.collect() if m.name == "api.cart.items"]
    (point,) = metric.points
    return point.value


def test_register_instruments() -> None:
    meter = Meter("test")
    instruments = ServiceInstruments.register(meter)
    assert instruments.error_counter.unit == "{call}"
    assert instruments.latency_histogram.unit == "{s}"
    assert instruments.item_gauge.unit == "{item}"
    with pytest.raises(DuplicateInstrumentError):
        ServiceInstruments.register(meter)


def test_remove_never_goes_below_zero() -> None:
    cart = CartCounter()
    assert cart.remove() == 0
    assert cart.add() == 1
    assert cart.remove() == 0
    assert cart.remove() == 0


def test_three_concurrent_adds_then_remove() -> None:
    meter = Meter("test")
    cart = CartCounter(ServiceInstruments.register(meter).item_gauge)
    barrier = threading.Barrier(3)

    def add() -> None:
        barrier.wait()
        cart.add()

    threads = [threading.Thread(target=add) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    cart.remove()

    assert cart.count == 2
    assert _gauge_value(meter) == 2


def test_concurrent_add_remove_has_no_lost_updates() -> None:
    meter = Meter("test")
    cart = CartCounter(ServiceInstruments.register(meter).item_gauge)
    n_threads, n_ops = 8, 500

    def adder() -> None:
        for _ in range(n_ops):
            cart.add()

    def mixed() -> None:
        for _ in range(n_ops):
            cart.add()
            cart.remove()

    threads = [threading.Thread(target=adder) for _ in range(n_threads)]
    threads += [threading.Thread(target=mixed) for _ in range(n_threads)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert cart.count == n_threads * n_ops
    assert _gauge_value(meter) == n_threads * n_ops
