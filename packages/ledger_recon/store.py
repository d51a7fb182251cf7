"""Canonical transaction store interface and an in-memory implementation.

The reconciliation code depends only on :class:`TransactionStore`. The
production implementation is
:class:`ledger_recon.persistence.SqlTransactionStore`;
:class:`InMemoryTransactionStore` backs tests and dry runs and enforces the
same same-source uniqueness rule as the database constraint.

Every method is scoped by ``user_id``. Implementations raise
:class:`~ledger_recon.errors.LookupFailure` when they cannot answer and
:class:`~ledger_recon.errors.DuplicateTransaction` /
:class:`~ledger_recon.errors.DuplicateCheckpoint` on uniqueness violations.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence
from dataclasses import replace
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Protocol

from .dedup import is_cross_source_match, is_same_source_match
from .errors import DuplicateCheckpoint, DuplicateTransaction
from .models import (
    AccountKey,
    BalanceCheckpoint,
    CandidateTransaction,
    LedgerEntry,
    StatementRecord,
)


class TransactionStore(Protocol):
    # -- transactions -------------------------------------------------------

    def find_same_source(
        self, user_id: str, candidate: CandidateTransaction
    ) -> LedgerEntry | None: ...

    def find_cross_source(
        self, user_id: str, candidate: CandidateTransaction
    ) -> LedgerEntry | None: ...

    def insert_transaction(
        self,
        user_id: str,
        candidate: CandidateTransaction,
        *,
        statement_id: int | None = None,
    ) -> LedgerEntry: ...

    def get_transaction(self, user_id: str, transaction_id: int) -> LedgerEntry | None: ...

    def expense_amounts_after(
        self, user_id: str, account: AccountKey, after: date
    ) -> list[Decimal]: ...

    def list_transactions(
        self, user_id: str, *, statement_id: int | None = None
    ) -> list[LedgerEntry]: ...

    def delete_transactions(self, user_id: str, ids: Sequence[int]) -> int: ...

    # -- checkpoints --------------------------------------------------------

    def list_checkpoints(
        self,
        user_id: str,
        *,
        account_type: str | None = None,
        bank_name: str | None = None,
    ) -> list[BalanceCheckpoint]: ...

    def add_checkpoint(self, user_id: str, checkpoint: BalanceCheckpoint) -> BalanceCheckpoint: ...

    # -- statements ---------------------------------------------------------

    def find_processed_statement(
        self, user_id: str, *, file_hash: str, file_name: str, file_size: int
    ) -> StatementRecord | None: ...

    # An unprocessed statement with the same hash is returned instead of a new one.
    def create_statement(
        self,
        user_id: str,
        *,
        file_name: str,
        file_type: str | None,
        file_size: int,
        file_hash: str,
    ) -> StatementRecord: ...

    def mark_statement_processed(self, user_id: str, statement_id: int) -> None: ...


class InMemoryTransactionStore:
    """Thread-safe, process-local :class:`TransactionStore`."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._transactions: dict[int, LedgerEntry] = {}
        self._checkpoints: dict[int, tuple[str, BalanceCheckpoint]] = {}
        self._statements: dict[int, StatementRecord] = {}
        self._next_tx_id = 1
        self._next_cp_id = 1
        self._next_stmt_id = 1

    # -- transactions -------------------------------------------------------

    def _rows(self, user_id: str) -> list[LedgerEntry]:
        return [t for _, t in sorted(self._transactions.items()) if t.user_id == user_id]

    def find_same_source(
        self, user_id: str, candidate: CandidateTransaction
    ) -> LedgerEntry | None:
        with self._lock:
            return next(
                (t for t in self._rows(user_id) if is_same_source_match(t, candidate)), None
            )

    def find_cross_source(
        self, user_id: str, candidate: CandidateTransaction
    ) -> LedgerEntry | None:
        with self._lock:
            return next(
                (t for t in self._rows(user_id) if is_cross_source_match(t, candidate)), None
            )

    def insert_transaction(
        self,
        user_id: str,
        candidate: CandidateTransaction,
        *,
        statement_id: int | None = None,
    ) -> LedgerEntry:
        with self._lock:
            if any(is_same_source_match(t, candidate) for t in self._rows(user_id)):
                raise DuplicateTransaction(
                    f"same-source key already present for {candidate.description!r} "
                    f"on {candidate.date.isoformat()}"
                )
            entry = LedgerEntry(
                id=self._next_tx_id,
                user_id=user_id,
                date=candidate.date,
                description=candidate.description,
                amount=candidate.amount,
                type=candidate.type,
                account_type=candidate.account_type,
                bank_name=candidate.bank_name,
                source=candidate.source,
                statement_id=statement_id,
                external_ref=candidate.external_ref,
                category=candidate.category,
            )
            self._transactions[entry.id] = entry
            self._next_tx_id += 1
            return entry

    def get_transaction(self, user_id: str, transaction_id: int) -> LedgerEntry | None:
        with self._lock:
            entry = self._transactions.get(transaction_id)
            return entry if entry is not None and entry.user_id == user_id else None

    def expense_amounts_after(
        self, user_id: str, account: AccountKey, after: date
    ) -> list[Decimal]:
        with self._lock:
            return [
                t.amount
                for t in self._rows(user_id)
                if t.type == "expense" and t.account == account and t.date > after
            ]

    def list_transactions(
        self, user_id: str, *, statement_id: int | None = None
    ) -> list[LedgerEntry]:
        with self._lock:
            rows = self._rows(user_id)
        if statement_id is not None:
            rows = [t for t in rows if t.statement_id == statement_id]
        return rows

    def delete_transactions(self, user_id: str, ids: Sequence[int]) -> int:
        removed = 0
        with self._lock:
            for tx_id in ids:
                entry = self._transactions.get(tx_id)
                if entry is not None and entry.user_id == user_id:
                    del self._transactions[tx_id]
                    removed += 1
        return removed

    # -- checkpoints --------------------------------------------------------

    def list_checkpoints(
        self,
        user_id: str,
        *,
        account_type: str | None = None,
        bank_name: str | None = None,
    ) -> list[BalanceCheckpoint]:
        with self._lock:
            rows = [cp for owner, cp in self._checkpoints.values() if owner == user_id]
        if account_type is not None:
            rows = [cp for cp in rows if cp.account.account_type == account_type]
        if bank_name is not None:
            rows = [cp for cp in rows if cp.account.bank_name == bank_name]
        return rows

    def add_checkpoint(self, user_id: str, checkpoint: BalanceCheckpoint) -> BalanceCheckpoint:
        if checkpoint.period is None:
            raise ValueError("persisted checkpoints require a resolved period")
        with self._lock:
            for owner, cp in self._checkpoints.values():
                if (
                    owner == user_id
                    and cp.account == checkpoint.account
                    and cp.period == checkpoint.period
                ):
                    raise DuplicateCheckpoint(
                        f"checkpoint exists for {checkpoint.account.bank_name!r} "
                        f"{checkpoint.period.label}"
                    )
            stored = replace(checkpoint, id=self._next_cp_id)
            self._checkpoints[stored.id] = (user_id, stored)  # type: ignore[index]
            self._next_cp_id += 1
            return stored

    # -- statements ---------------------------------------------------------

    def find_processed_statement(
        self, user_id: str, *, file_hash: str, file_name: str, file_size: int
    ) -> StatementRecord | None:
        with self._lock:
            for stmt in self._statements.values():
                if stmt.user_id != user_id or not stmt.processed:
                    continue
                if stmt.file_hash == file_hash:
                    return stmt
                if stmt.file_hash is None and (stmt.file_name, stmt.file_size) == (
                    file_name,
                    file_size,
                ):
                    return stmt
        return None

    def create_statement(
        self,
        user_id: str,
        *,
        file_name: str,
        file_type: str | None,
        file_size: int,
        file_hash: str,
    ) -> StatementRecord:
        with self._lock:
            for existing in self._statements.values():
                if (
                    existing.user_id == user_id
                    and existing.file_hash == file_hash
                    and not existing.processed
                ):
                    return existing
            stmt = StatementRecord(
                id=self._next_stmt_id,
                user_id=user_id,
                file_name=file_name,
                file_type=file_type,
                file_size=file_size,
                file_hash=file_hash,
                processed=False,
                uploaded_at=datetime.now(UTC),
            )
            self._statements[stmt.id] = stmt
            self._next_stmt_id += 1
            return stmt

    def mark_statement_processed(self, user_id: str, statement_id: int) -> None:
        with self._lock:
            stmt = self._statements.get(statement_id)
            if stmt is None or stmt.user_id != user_id:
                raise KeyError(f"statement {statement_id} not found")
            self._statements[statement_id] = replace(stmt, processed=True)


__all__ = ["TransactionStore", "InMemoryTransactionStore"]
