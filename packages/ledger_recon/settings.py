"""Runtime settings resolved from the environment.

Entrypoints call :meth:`ReconcileSettings.from_env` once (after loading
``.env``) and pass the result down explicitly.

Environment variables
---------------------
- ``LEDGER_RECON_MAX_WORKERS``: fan-out cap for candidate checks and balance
  projection (default 8, clamped to 1..32).
- ``LEDGER_RECON_MAX_ATTEMPTS``: attempts per candidate on lookup failures
  (default 3, minimum 1).
- ``LEDGER_RECON_STATEMENT_TIMEOUT_MS``: per-query timeout for SQL stores
  (default 5000; ``0`` disables).
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

_MAX_WORKERS_CAP = 32


def _env_int(environ: Mapping[str, str], name: str) -> int | None:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class ReconcileSettings:
    max_workers: int = 8
    max_attempts: int = 3
    statement_timeout_ms: int = 5000
    # Seconds slept before attempt N+1 (last value repeats); jitter is +/-20%.
    backoff_schedule_sec: tuple[float, ...] = field(default=(0.2, 0.5, 1.0))

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ValueError("max_workers must be a positive integer")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be a positive integer")
        if self.statement_timeout_ms < 0:
            raise ValueError("statement_timeout_ms must be >= 0")
        if not self.backoff_schedule_sec:
            raise ValueError("backoff_schedule_sec must not be empty")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ReconcileSettings:
        env = os.environ if environ is None else environ
        kwargs: dict[str, int] = {}

        workers = _env_int(env, "LEDGER_RECON_MAX_WORKERS")
        if workers is not None and workers > 0:
            kwargs["max_workers"] = min(workers, _MAX_WORKERS_CAP)

        attempts = _env_int(env, "LEDGER_RECON_MAX_ATTEMPTS")
        if attempts is not None and attempts > 0:
            kwargs["max_attempts"] = attempts

        timeout_ms = _env_int(env, "LEDGER_RECON_STATEMENT_TIMEOUT_MS")
        if timeout_ms is not None and timeout_ms >= 0:
            kwargs["statement_timeout_ms"] = timeout_ms

        return cls(**kwargs)

    def workers_for(self, n_items: int) -> int:
        """Worker count for ``n_items`` units of work (never below 1)."""

        return max(1, min(self.max_workers, n_items))


__all__ = ["ReconcileSettings"]
