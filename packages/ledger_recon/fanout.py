"""Bounded thread-pool fan-out used for candidate checks and balance replay.

``fan_out_settled(items, fn, concurrency=...)`` never raises for mapper
errors; it returns one :class:`Settled` per item (value or exception) in input
order, so one bad account or candidate cannot sink the others.

At most ``concurrency`` calls are in flight. Inputs are consumed lazily.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Generic, TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


@dataclass(frozen=True, slots=True)
class Settled(Generic[InT, OutT]):
    item: InT
    value: OutT | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def fan_out_settled(
    items: Iterable[InT],
    fn: Callable[[InT], OutT],
    *,
    concurrency: int,
) -> list[Settled[InT, OutT]]:
    """Map ``items`` through ``fn``, capturing each mapper's exception per item."""

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    source = enumerate(items)
    settled: dict[int, Settled[InT, OutT]] = {}
    pending: dict[Future, tuple[int, InT]] = {}

    def _submit_next(pool: ThreadPoolExecutor) -> bool:
        try:
            idx, item = next(source)
        except StopIteration:
            return False
        pending[pool.submit(fn, item)] = (idx, item)
        return True

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        for _ in range(concurrency):
            if not _submit_next(pool):
                break

        while pending:
            done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
            for fut in done:
                idx, item = pending.pop(fut)
                try:
                    settled[idx] = Settled(item=item, value=fut.result())
                except Exception as e:  # noqa: BLE001
                    settled[idx] = Settled(item=item, error=e)
            for _ in range(len(done)):
                if not _submit_next(pool):
                    break

    return [settled[i] for i in sorted(settled)]


__all__ = ["Settled", "fan_out_settled"]
