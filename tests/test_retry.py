from __future__ import annotations

import pytest

from ledger_recon.errors import LookupFailure, LookupTimeout
from ledger_recon.retry import backoff_delay, retry_lookup


def _failing(times: int, exc: type[Exception] = LookupFailure):
    calls = {"n": 0}

    def fn() -> str:
        calls["n"] += 1
        if calls["n"] <= times:
            raise exc("store down")
        return "ok"

    return fn, calls


def test_returns_value_and_attempts_after_transient_failures():
    sleeps: list[float] = []
    fn, calls = _failing(2)

    value, attempts = retry_lookup(
        fn, max_attempts=3, schedule=(0.2, 0.5), op="test", sleep=sleeps.append
    )

    assert (value, attempts) == ("ok", 3)
    assert calls["n"] == 3
    assert len(sleeps) == 2
    assert 0.16 <= sleeps[0] <= 0.24
    assert 0.40 <= sleeps[1] <= 0.60


def test_timeouts_are_retried_like_other_lookup_failures():
    fn, _ = _failing(1, LookupTimeout)
    assert retry_lookup(fn, max_attempts=2, schedule=(0.0,), op="test", sleep=lambda _: None) == (
        "ok",
        2,
    )


def test_exhausted_attempts_reraise_with_attempt_count():
    fn, calls = _failing(10)
    with pytest.raises(LookupFailure) as ei:
        retry_lookup(fn, max_attempts=3, schedule=(0.0,), op="test", sleep=lambda _: None)
    assert ei.value.attempts == 3
    assert calls["n"] == 3


def test_other_errors_are_not_retried():
    fn, calls = _failing(1, RuntimeError)
    with pytest.raises(RuntimeError):
        retry_lookup(fn, max_attempts=5, schedule=(0.0,), op="test", sleep=lambda _: None)
    assert calls["n"] == 1


def test_backoff_delay_repeats_last_step():
    assert backoff_delay(1, (0.0,)) == 0.0
    for _ in range(20):
        assert 0.8 <= backoff_delay(7, (0.2, 0.5, 1.0)) <= 1.2
