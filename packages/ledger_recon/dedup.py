"""Deduplication engine: decide whether a candidate is already recorded.

Two ordered rules; the first hit rejects the candidate:

1. Same-source exact match: same ``source``, calendar day, ``description``,
   ``amount``, ``type`` and ``bank_name``. Guards against processing the same
   statement (or email) twice.
2. Cross-source match: a *different* ``source`` with the same
   ``description``, ``amount`` and ``bank_name`` on the same calendar day.
   Guards against one purchase being reported by both an email and a
   statement. ``type`` is not part of this rule.

Strings are compared exactly; normalization belongs to candidate
construction.

The engine never writes. :func:`find_duplicate` is a pure predicate over a
supplied snapshot; :func:`check_candidate` asks a store the same two
questions. Both are scoped to one user.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from .models import CandidateTransaction, LedgerEntry

if TYPE_CHECKING:  # pragma: no cover
    from .store import TransactionStore

Verdict = Literal["accept", "duplicate_same_source", "duplicate_cross_source"]


@dataclass(frozen=True, slots=True)
class DedupDecision:
    verdict: Verdict
    match: LedgerEntry | None = None

    @property
    def accepted(self) -> bool:
        return self.verdict == "accept"


ACCEPT = DedupDecision("accept")


def is_same_source_match(existing: LedgerEntry, candidate: CandidateTransaction) -> bool:
    return (
        existing.source == candidate.source
        and existing.date == candidate.date
        and existing.description == candidate.description
        and existing.amount == candidate.amount
        and existing.type == candidate.type
        and existing.bank_name == candidate.bank_name
    )


def is_cross_source_match(existing: LedgerEntry, candidate: CandidateTransaction) -> bool:
    # Dates are stored at day granularity, so the start-of-day..end-of-day
    # window reduces to equality.
    return (
        existing.source != candidate.source
        and existing.date == candidate.date
        and existing.description == candidate.description
        and existing.amount == candidate.amount
        and existing.bank_name == candidate.bank_name
    )


def find_duplicate(
    candidate: CandidateTransaction,
    existing: Iterable[LedgerEntry],
    *,
    user_id: str,
) -> DedupDecision:
    """Decide ``candidate`` against a snapshot of ``existing`` transactions.

    Rows belonging to other users are ignored. The same-source rule is
    evaluated over the whole snapshot before the cross-source rule.
    """

    scoped = [t for t in existing if t.user_id == user_id]
    for t in scoped:
        if is_same_source_match(t, candidate):
            return DedupDecision("duplicate_same_source", t)
    for t in scoped:
        if is_cross_source_match(t, candidate):
            return DedupDecision("duplicate_cross_source", t)
    return ACCEPT


def check_candidate(
    store: TransactionStore,
    *,
    user_id: str,
    candidate: CandidateTransaction,
) -> DedupDecision:
    """Store-backed variant of :func:`find_duplicate`.

    Store errors (:class:`~ledger_recon.errors.LookupFailure`) propagate to the
    caller unchanged; the candidate is then unprocessed, not accepted.
    """

    match = store.find_same_source(user_id, candidate)
    if match is not None:
        return DedupDecision("duplicate_same_source", match)
    match = store.find_cross_source(user_id, candidate)
    if match is not None:
        return DedupDecision("duplicate_cross_source", match)
    return ACCEPT


__all__ = [
    "Verdict",
    "DedupDecision",
    "is_same_source_match",
    "is_cross_source_match",
    "find_duplicate",
    "check_candidate",
]
