"""Removal of same-source duplicate rows.

Rows written before the uniqueness constraint existed can share the
same-source key ``(source, date, description, amount, type, bank_name)``.
For each such group the lowest id is kept and the rest are deleted.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, TypeAlias

from .logging_setup import get_logger
from .models import LedgerEntry

if TYPE_CHECKING:  # pragma: no cover
    from .store import TransactionStore

_logger = get_logger("ledger_recon.cleanup")

SameSourceKey: TypeAlias = tuple[str, date, str, Decimal, str, str]


@dataclass(frozen=True, slots=True)
class CleanupResult:
    duplicate_ids: list[int]
    removed: int
    dry_run: bool

    @property
    def message(self) -> str:
        if self.dry_run:
            return f"Found {len(self.duplicate_ids)} duplicate transactions"
        return f"Removed {self.removed} duplicate transactions"


def same_source_key(entry: LedgerEntry) -> SameSourceKey:
    return (
        entry.source,
        entry.date,
        entry.description,
        entry.amount,
        entry.type,
        entry.bank_name,
    )


def find_duplicate_ids(entries: list[LedgerEntry]) -> list[int]:
    """Ids of every row whose same-source key was already seen at a lower id."""

    groups: dict[SameSourceKey, list[int]] = defaultdict(list)
    for e in entries:
        groups[same_source_key(e)].append(e.id)
    dupes: list[int] = []
    for ids in groups.values():
        ids.sort()
        dupes.extend(ids[1:])
    return sorted(dupes)


def clear_duplicates(
    store: TransactionStore, *, user_id: str, dry_run: bool = False
) -> CleanupResult:
    entries = store.list_transactions(user_id)
    dupes = find_duplicate_ids(entries)
    if dry_run or not dupes:
        removed = 0
    else:
        removed = store.delete_transactions(user_id, dupes)
    _logger.info(
        "clear_duplicates:done user_id=%s scanned=%d duplicates=%d removed=%d dry_run=%s",
        user_id,
        len(entries),
        len(dupes),
        removed,
        dry_run,
    )
    return CleanupResult(duplicate_ids=dupes, removed=removed, dry_run=dry_run)


__all__ = ["CleanupResult", "same_source_key", "find_duplicate_ids", "clear_duplicates"]
