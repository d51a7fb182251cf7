from __future__ import annotations

import threading
import time

import pytest

from ledger_recon.fanout import fan_out_settled


def test_results_keep_input_order():
    def slow_inverse(n: int) -> int:
        time.sleep(0.001 * (5 - n))
        return n * 10

    settled = fan_out_settled(range(5), slow_inverse, concurrency=3)
    assert [s.item for s in settled] == [0, 1, 2, 3, 4]
    assert [s.value for s in settled] == [0, 10, 20, 30, 40]
    assert all(s.ok for s in settled)


def test_errors_are_captured_per_item():
    def boom_on_two(n: int) -> int:
        if n == 2:
            raise RuntimeError("two")
        return n

    settled = fan_out_settled([1, 2, 3], boom_on_two, concurrency=2)
    assert [s.ok for s in settled] == [True, False, True]
    assert isinstance(settled[1].error, RuntimeError)
    assert settled[2].value == 3


def test_concurrency_is_bounded():
    lock = threading.Lock()
    in_flight = 0
    peak = 0

    def track(_: int) -> None:
        nonlocal in_flight, peak
        with lock:
            in_flight += 1
            peak = max(peak, in_flight)
        time.sleep(0.005)
        with lock:
            in_flight -= 1

    fan_out_settled(range(12), track, concurrency=3)
    assert 1 <= peak <= 3


def test_empty_input():
    assert fan_out_settled([], lambda x: x, concurrency=4) == []


@pytest.mark.parametrize("bad", [0, -1, 1.5])
def test_rejects_invalid_concurrency(bad):
    with pytest.raises(ValueError):
        fan_out_settled([1], lambda x: x, concurrency=bad)
