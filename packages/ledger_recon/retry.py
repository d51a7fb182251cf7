"""Bounded retries for store lookups.

Only :class:`~ledger_recon.errors.LookupFailure` (and ``LookupTimeout``) is
retried. Everything else propagates on the first attempt.
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable, Sequence
from typing import TypeVar

from .errors import LookupFailure
from .logging_setup import get_logger

_logger = get_logger("ledger_recon.retry")

_JITTER_PCT = 0.20

T = TypeVar("T")


def backoff_delay(attempt_no: int, schedule: Sequence[float]) -> float:
    """Seconds to wait after failed attempt ``attempt_no`` (1-based)."""

    if attempt_no - 1 < len(schedule):
        base = schedule[attempt_no - 1]
    else:
        base = schedule[-1]
    jitter = base * _JITTER_PCT
    return max(0.0, base + random.uniform(-jitter, jitter))


def retry_lookup(
    fn: Callable[[], T],
    *,
    max_attempts: int,
    schedule: Sequence[float],
    op: str,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[T, int]:
    """Call ``fn`` until it succeeds or ``max_attempts`` lookups have failed.

    Returns ``(value, attempts_used)``. The final ``LookupFailure`` is re-raised
    with ``attempts`` set to the number of attempts made.
    """

    attempt = 1
    while True:
        t0 = time.perf_counter()
        try:
            return fn(), attempt
        except LookupFailure as e:
            dt_ms = (time.perf_counter() - t0) * 1000.0
            if attempt >= max_attempts:
                _logger.error(
                    "%s:lookup_failed_terminal attempts=%d latency_ms=%.2f error=%s",
                    op,
                    attempt,
                    dt_ms,
                    e.__class__.__name__,
                )
                e.attempts = attempt
                raise
            _logger.warning(
                "%s:lookup_retry attempt=%d latency_ms=%.2f error=%s",
                op,
                attempt,
                dt_ms,
                e.__class__.__name__,
            )
            sleep(backoff_delay(attempt, schedule))
            attempt += 1


__all__ = ["backoff_delay", "retry_lookup"]
