"""Dedup-then-insert for a batch of candidates.

Each candidate ends in exactly one outcome:

- ``inserted``: accepted and written
- ``duplicate_same_source`` / ``duplicate_cross_source``: already represented
- ``failed``: the store could not answer after ``max_attempts`` lookups; the
  candidate stays unprocessed and a re-run picks it up

Candidates are checked with a bounded thread fan-out. Check and insert for
one ``(user, account_type, bank_name)`` run under one in-process lock, so two
candidates of the same account in the same batch (or in concurrent batches
sharing an :class:`AccountLocks`) never both pass the check. Across processes
the store's same-source uniqueness constraint closes the gap: a
``DuplicateTransaction`` from the insert is reported as a same-source
duplicate.

Nothing is rolled back when a later candidate fails; re-running the same
batch inserts nothing new.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from ..dedup import check_candidate
from ..errors import DuplicateTransaction, LookupFailure
from ..fanout import fan_out_settled
from ..logging_setup import get_logger
from ..models import AccountKey, CandidateTransaction
from ..retry import retry_lookup
from ..settings import ReconcileSettings

if TYPE_CHECKING:  # pragma: no cover
    from ..store import TransactionStore

_logger = get_logger("ledger_recon.ingest.batch")

OutcomeStatus = Literal[
    "inserted",
    "duplicate_same_source",
    "duplicate_cross_source",
    "failed",
]


@dataclass(frozen=True, slots=True)
class CandidateOutcome:
    position: int
    candidate: CandidateTransaction
    status: OutcomeStatus
    # Inserted row id, or the id of the existing row a duplicate matched.
    transaction_id: int | None = None
    attempts: int = 1
    error: str | None = None


@dataclass(frozen=True, slots=True)
class BatchReport:
    outcomes: list[CandidateOutcome]

    def _count(self, *statuses: str) -> int:
        return sum(1 for o in self.outcomes if o.status in statuses)

    @property
    def inserted(self) -> int:
        return self._count("inserted")

    @property
    def duplicates_same_source(self) -> int:
        return self._count("duplicate_same_source")

    @property
    def duplicates_cross_source(self) -> int:
        return self._count("duplicate_cross_source")

    @property
    def duplicates(self) -> int:
        return self._count("duplicate_same_source", "duplicate_cross_source")

    @property
    def failed(self) -> int:
        return self._count("failed")

    def counts(self) -> dict[str, int]:
        return {
            "inserted": self.inserted,
            "duplicateSameSource": self.duplicates_same_source,
            "duplicateCrossSource": self.duplicates_cross_source,
            "failed": self.failed,
            "total": len(self.outcomes),
        }


class AccountLocks:
    """In-process mutual exclusion per ``(user_id, account)``."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, AccountKey], threading.Lock] = {}

    def for_account(self, user_id: str, account: AccountKey) -> threading.Lock:
        key = (user_id, account)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock


def reconcile_candidate(
    store: TransactionStore,
    *,
    user_id: str,
    candidate: CandidateTransaction,
    locks: AccountLocks,
    statement_id: int | None = None,
) -> tuple[OutcomeStatus, int | None]:
    """Check one candidate and insert it when accepted.

    Returns ``(status, transaction_id)``. ``LookupFailure`` propagates.
    """

    with locks.for_account(user_id, candidate.account):
        decision = check_candidate(store, user_id=user_id, candidate=candidate)
        if not decision.accepted:
            match_id = decision.match.id if decision.match else None
            return decision.verdict, match_id  # type: ignore[return-value]
        try:
            entry = store.insert_transaction(user_id, candidate, statement_id=statement_id)
        except DuplicateTransaction:
            # Written by another process between the check and the insert.
            match = store.find_same_source(user_id, candidate)
            return "duplicate_same_source", match.id if match else None
        return "inserted", entry.id


def reconcile_batch(
    store: TransactionStore,
    *,
    user_id: str,
    candidates: Sequence[CandidateTransaction],
    settings: ReconcileSettings,
    positions: Sequence[int] | None = None,
    statement_id: int | None = None,
    locks: AccountLocks | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchReport:
    """Reconcile ``candidates`` against the store and insert the new ones.

    ``positions`` maps each candidate back to its row in the caller's input
    (defaults to ``0..n-1``). A ``LookupFailure`` is retried on the
    settings' backoff schedule; once attempts are exhausted the candidate is
    reported ``failed`` and the rest of the batch continues.
    """

    if positions is not None and len(positions) != len(candidates):
        raise ValueError("positions must align with candidates")
    locks = locks or AccountLocks()
    items = list(zip(positions or range(len(candidates)), candidates, strict=True))
    t0 = time.perf_counter()

    def _one(item: tuple[int, CandidateTransaction]) -> CandidateOutcome:
        pos, candidate = item
        (status, tx_id), attempts = retry_lookup(
            lambda: reconcile_candidate(
                store,
                user_id=user_id,
                candidate=candidate,
                locks=locks,
                statement_id=statement_id,
            ),
            max_attempts=settings.max_attempts,
            schedule=settings.backoff_schedule_sec,
            op="reconcile_candidate",
            sleep=sleep,
        )
        return CandidateOutcome(
            position=pos,
            candidate=candidate,
            status=status,
            transaction_id=tx_id,
            attempts=attempts,
        )

    outcomes: list[CandidateOutcome] = []
    for res in fan_out_settled(items, _one, concurrency=settings.workers_for(len(items))):
        if res.ok:
            outcomes.append(res.value)  # type: ignore[arg-type]
            continue
        if not isinstance(res.error, LookupFailure):
            raise res.error  # type: ignore[misc]
        pos, candidate = res.item
        _logger.error(
            "ingest:candidate_failed pos=%d attempts=%d error=%s",
            pos,
            res.error.attempts,
            res.error,
        )
        outcomes.append(
            CandidateOutcome(
                position=pos,
                candidate=candidate,
                status="failed",
                attempts=res.error.attempts,
                error=str(res.error),
            )
        )

    report = BatchReport(outcomes=outcomes)
    _logger.info(
        "ingest:batch_done user_id=%s candidates=%d inserted=%d duplicates=%d failed=%d "
        "latency_ms=%.2f",
        user_id,
        len(outcomes),
        report.inserted,
        report.duplicates,
        report.failed,
        (time.perf_counter() - t0) * 1000.0,
    )
    return report


__all__ = [
    "OutcomeStatus",
    "CandidateOutcome",
    "BatchReport",
    "AccountLocks",
    "reconcile_candidate",
    "reconcile_batch",
]
