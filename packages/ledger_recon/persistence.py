# ruff: noqa: I001
"""SQLAlchemy implementation of :class:`ledger_recon.store.TransactionStore`.

Reads and writes the ``ledger_*`` tables owned by ``libs/db``. Each method
runs in its own short transaction obtained from the injected session factory.

Error mapping:
- connection/operational failures -> ``LookupFailure``
- statement timeout (Postgres SQLSTATE 57014) or pool checkout timeout ->
  ``LookupTimeout``
- unique violations on insert -> ``DuplicateTransaction`` /
  ``DuplicateCheckpoint``

On Postgres every transaction starts with ``SET LOCAL statement_timeout`` so
no query can hang a request.
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from decimal import Decimal

from sqlalchemy import and_, delete, or_, select, text, update
from sqlalchemy.exc import (
    IntegrityError,
    InterfaceError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session, sessionmaker

from db.client import session_scope
from db.models.ledger import LedgerBalanceCheckpoint, LedgerStatement, LedgerTransaction
from .errors import (
    DuplicateCheckpoint,
    DuplicateTransaction,
    LookupFailure,
    LookupTimeout,
)
from .logging_setup import get_logger
from .models import (
    AccountKey,
    BalanceCheckpoint,
    CandidateTransaction,
    LedgerEntry,
    StatementMonth,
    StatementRecord,
    to_money,
)

_logger = get_logger("ledger_recon.persistence")

_QUERY_CANCELED = "57014"
_UNIQUE_VIOLATION = "23505"


def _sqlstate(exc: Exception) -> str | None:
    orig = getattr(exc, "orig", None)
    # psycopg 3 exposes ``sqlstate``; psycopg2 exposes ``pgcode``.
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _is_unique_violation(exc: IntegrityError) -> bool:
    if _sqlstate(exc) == _UNIQUE_VIOLATION:
        return True
    return "unique" in str(exc.orig).lower()


def _to_lookup_failure(exc: Exception) -> LookupFailure:
    if isinstance(exc, PoolTimeoutError) or _sqlstate(exc) == _QUERY_CANCELED:
        return LookupTimeout(f"store query timed out: {exc}")
    if "statement timeout" in str(exc).lower():
        return LookupTimeout(f"store query timed out: {exc}")
    return LookupFailure(f"store unavailable: {exc}")


def _entry(row: LedgerTransaction) -> LedgerEntry:
    return LedgerEntry(
        id=row.id,
        user_id=row.user_id,
        date=row.date,
        description=row.description,
        amount=to_money(row.amount),
        type=row.type,
        account_type=row.account_type,
        bank_name=row.bank_name,
        source=row.source,
        statement_id=row.statement_id,
        external_ref=row.external_ref,
        category=row.category,
    )


def _checkpoint(row: LedgerBalanceCheckpoint) -> BalanceCheckpoint:
    return BalanceCheckpoint(
        id=row.id,
        account=AccountKey(row.account_type, row.bank_name),
        statement_label=row.statement_label,
        period=StatementMonth(row.statement_year, row.statement_month),
        closing_balance=None if row.closing_balance is None else to_money(row.closing_balance),
        credit_card_amount_due=(
            None if row.credit_card_amount_due is None else to_money(row.credit_card_amount_due)
        ),
        reward_points=row.reward_points,
        last_transaction_id=row.last_transaction_id,
        statement_id=row.statement_id,
    )


def _statement(row: LedgerStatement) -> StatementRecord:
    return StatementRecord(
        id=row.id,
        user_id=row.user_id,
        file_name=row.file_name,
        file_type=row.file_type,
        file_size=row.file_size,
        file_hash=row.file_hash,
        processed=bool(row.processed),
        uploaded_at=row.uploaded_at,
    )


class SqlTransactionStore:
    """Canonical store backed by the ``ledger_*`` tables."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        statement_timeout_ms: int = 5000,
    ) -> None:
        self._factory = session_factory
        self._timeout_ms = int(statement_timeout_ms)

    @contextmanager
    def _session(self) -> Iterator[Session]:
        try:
            with session_scope(self._factory) as session:
                if self._timeout_ms and session.get_bind().dialect.name == "postgresql":
                    session.execute(text(f"SET LOCAL statement_timeout = {self._timeout_ms}"))
                yield session
        except (OperationalError, InterfaceError, PoolTimeoutError) as e:
            failure = _to_lookup_failure(e)
            _logger.warning("store:lookup_failed kind=%s error=%s", type(failure).__name__, e)
            raise failure from e

    # -- transactions -------------------------------------------------------

    def _scoped_key(self, user_id: str, candidate: CandidateTransaction):
        return (
            LedgerTransaction.user_id == user_id,
            LedgerTransaction.date == candidate.date,
            LedgerTransaction.description == candidate.description,
            LedgerTransaction.amount == candidate.amount,
            LedgerTransaction.bank_name == candidate.bank_name,
        )

    def find_same_source(
        self, user_id: str, candidate: CandidateTransaction
    ) -> LedgerEntry | None:
        stmt = (
            select(LedgerTransaction)
            .where(*self._scoped_key(user_id, candidate))
            .where(LedgerTransaction.source == candidate.source)
            .where(LedgerTransaction.type == candidate.type)
            .order_by(LedgerTransaction.id)
            .limit(1)
        )
        with self._session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _entry(row) if row is not None else None

    def find_cross_source(
        self, user_id: str, candidate: CandidateTransaction
    ) -> LedgerEntry | None:
        stmt = (
            select(LedgerTransaction)
            .where(*self._scoped_key(user_id, candidate))
            .where(LedgerTransaction.source != candidate.source)
            .order_by(LedgerTransaction.id)
            .limit(1)
        )
        with self._session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _entry(row) if row is not None else None

    def insert_transaction(
        self,
        user_id: str,
        candidate: CandidateTransaction,
        *,
        statement_id: int | None = None,
    ) -> LedgerEntry:
        row = LedgerTransaction(
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
        try:
            with self._session() as session:
                session.add(row)
                session.flush()
                return _entry(row)
        except IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateTransaction(str(e.orig)) from e
            raise

    def get_transaction(self, user_id: str, transaction_id: int) -> LedgerEntry | None:
        stmt = select(LedgerTransaction).where(
            LedgerTransaction.user_id == user_id,
            LedgerTransaction.id == transaction_id,
        )
        with self._session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _entry(row) if row is not None else None

    def expense_amounts_after(
        self, user_id: str, account: AccountKey, after: date
    ) -> list[Decimal]:
        stmt = select(LedgerTransaction.amount).where(
            LedgerTransaction.user_id == user_id,
            LedgerTransaction.account_type == account.account_type,
            LedgerTransaction.bank_name == account.bank_name,
            LedgerTransaction.type == "expense",
            LedgerTransaction.date > after,
        )
        with self._session() as session:
            return [to_money(a) for a in session.execute(stmt).scalars().all()]

    def list_transactions(
        self, user_id: str, *, statement_id: int | None = None
    ) -> list[LedgerEntry]:
        stmt = (
            select(LedgerTransaction)
            .where(LedgerTransaction.user_id == user_id)
            .order_by(LedgerTransaction.id)
        )
        if statement_id is not None:
            stmt = stmt.where(LedgerTransaction.statement_id == statement_id)
        with self._session() as session:
            return [_entry(r) for r in session.execute(stmt).scalars().all()]

    def delete_transactions(self, user_id: str, ids: Sequence[int]) -> int:
        if not ids:
            return 0
        stmt = delete(LedgerTransaction).where(
            LedgerTransaction.user_id == user_id,
            LedgerTransaction.id.in_(list(ids)),
        )
        with self._session() as session:
            return session.execute(stmt).rowcount or 0

    # -- checkpoints --------------------------------------------------------

    def list_checkpoints(
        self,
        user_id: str,
        *,
        account_type: str | None = None,
        bank_name: str | None = None,
    ) -> list[BalanceCheckpoint]:
        stmt = select(LedgerBalanceCheckpoint).where(LedgerBalanceCheckpoint.user_id == user_id)
        if account_type is not None:
            stmt = stmt.where(LedgerBalanceCheckpoint.account_type == account_type)
        if bank_name is not None:
            stmt = stmt.where(LedgerBalanceCheckpoint.bank_name == bank_name)
        with self._session() as session:
            return [_checkpoint(r) for r in session.execute(stmt).scalars().all()]

    def add_checkpoint(self, user_id: str, checkpoint: BalanceCheckpoint) -> BalanceCheckpoint:
        if checkpoint.period is None:
            raise ValueError("persisted checkpoints require a resolved period")
        row = LedgerBalanceCheckpoint(
            user_id=user_id,
            account_type=checkpoint.account.account_type,
            bank_name=checkpoint.account.bank_name,
            statement_year=checkpoint.period.year,
            statement_month=checkpoint.period.month,
            statement_label=checkpoint.statement_label,
            closing_balance=checkpoint.closing_balance,
            credit_card_amount_due=checkpoint.credit_card_amount_due,
            reward_points=checkpoint.reward_points,
            last_transaction_id=checkpoint.last_transaction_id,
            statement_id=checkpoint.statement_id,
        )
        try:
            with self._session() as session:
                session.add(row)
                session.flush()
                return _checkpoint(row)
        except IntegrityError as e:
            if _is_unique_violation(e):
                raise DuplicateCheckpoint(str(e.orig)) from e
            raise

    # -- statements ---------------------------------------------------------

    def find_processed_statement(
        self, user_id: str, *, file_hash: str, file_name: str, file_size: int
    ) -> StatementRecord | None:
        stmt = (
            select(LedgerStatement)
            .where(LedgerStatement.user_id == user_id)
            .where(LedgerStatement.processed.is_(True))
            .where(
                or_(
                    LedgerStatement.file_hash == file_hash,
                    # Legacy rows predate hashing; fall back to name + size.
                    and_(
                        LedgerStatement.file_hash.is_(None),
                        LedgerStatement.file_name == file_name,
                        LedgerStatement.file_size == file_size,
                    ),
                )
            )
            .order_by(LedgerStatement.id)
            .limit(1)
        )
        with self._session() as session:
            row = session.execute(stmt).scalar_one_or_none()
            return _statement(row) if row is not None else None

    def create_statement(
        self,
        user_id: str,
        *,
        file_name: str,
        file_type: str | None,
        file_size: int,
        file_hash: str,
    ) -> StatementRecord:
        pending = (
            select(LedgerStatement)
            .where(LedgerStatement.user_id == user_id)
            .where(LedgerStatement.file_hash == file_hash)
            .where(LedgerStatement.processed.is_(False))
            .order_by(LedgerStatement.id)
            .limit(1)
        )
        row = LedgerStatement(
            user_id=user_id,
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
            file_hash=file_hash,
            processed=False,
        )
        with self._session() as session:
            existing = session.execute(pending).scalar_one_or_none()
            if existing is not None:
                return _statement(existing)
            session.add(row)
            session.flush()
            session.refresh(row)
            return _statement(row)

    def mark_statement_processed(self, user_id: str, statement_id: int) -> None:
        stmt = (
            update(LedgerStatement)
            .where(LedgerStatement.user_id == user_id, LedgerStatement.id == statement_id)
            .values(processed=True)
        )
        with self._session() as session:
            if not session.execute(stmt).rowcount:
                raise KeyError(f"statement {statement_id} not found")


__all__ = ["SqlTransactionStore"]
