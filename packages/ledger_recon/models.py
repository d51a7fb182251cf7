"""Data models and type aliases for ``ledger_recon``.

Two families of types live here:

- Input DTOs validated with pydantic (``CandidateTransaction``,
  ``CheckpointInput``): the shape handed over by extraction (statement
  parsing, Gmail parsing, manual entry). Validation is about type/shape only;
  semantic correctness of extracted data is the extractor's concern.
- Frozen dataclasses for records read back from a store (``LedgerEntry``,
  ``BalanceCheckpoint``) and the typed keys used for grouping
  (``AccountKey``, ``StatementMonth``).
"""

from __future__ import annotations

import calendar
import datetime as dt
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Closed vocabularies
# ---------------------------------------------------------------------------

TransactionType = Literal["expense", "income"]
AccountType = Literal["BankAccount", "CreditCard"]
Source = Literal["statement", "email", "manual"]

TRANSACTION_TYPES: tuple[str, ...] = ("expense", "income")
ACCOUNT_TYPES: tuple[str, ...] = ("BankAccount", "CreditCard")
SOURCES: tuple[str, ...] = ("statement", "email", "manual")

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce ``value`` to a 2dp ``Decimal`` (half-up), going through ``str``.

    Going through ``str`` keeps floats like ``450.1`` from dragging binary
    representation noise into the quantized value.
    """

    d = value if isinstance(value, Decimal) else Decimal(str(value))
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# Typed keys
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True, order=True)
class AccountKey:
    """One account within a user's ledger: the unit of balance projection."""

    account_type: str
    bank_name: str

    @property
    def is_credit_card(self) -> bool:
        return self.account_type == "CreditCard"


@dataclass(frozen=True, slots=True, order=True)
class StatementMonth:
    """A statement period. Ordering is chronological (year, then month)."""

    year: int
    month: int  # 1..12

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be within 1..12, got {self.month}")

    @property
    def month_index(self) -> int:
        """Zero-based month index (January == 0)."""

        return self.month - 1

    @property
    def label(self) -> str:
        return f"{calendar.month_name[self.month]} {self.year}"

    def __str__(self) -> str:  # pragma: no cover - trivial
        return self.label


# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


def _coerce_day(v: Any) -> Any:
    """Truncate datetimes (and ISO datetime strings) to their calendar day."""

    if isinstance(v, datetime):
        return v.date()
    if isinstance(v, str) and "T" in v:
        s = v.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        return datetime.fromisoformat(s).date()
    return v


class CandidateTransaction(BaseModel):
    """A transaction proposed for insertion into the canonical store.

    ``description`` and ``bank_name`` are compared exactly by the
    deduplication engine; any normalization must already have happened
    (see :mod:`ledger_recon.ingest.candidates`).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    date: dt.date
    description: str
    amount: Decimal
    type: TransactionType
    account_type: AccountType
    bank_name: str
    source: Source
    category: str | None = None
    external_ref: str | None = None

    @field_validator("date", mode="before")
    @classmethod
    def _truncate_to_day(cls, v: Any) -> Any:
        return _coerce_day(v)

    @field_validator("amount")
    @classmethod
    def _positive_magnitude(cls, v: Decimal) -> Decimal:
        if not v.is_finite():
            raise ValueError("amount must be a finite number")
        if v < 0:
            raise ValueError("amount must be a positive magnitude; the sign is carried by type")
        return to_money(v)

    @field_validator("description", "bank_name")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must be non-empty")
        return v

    @property
    def account(self) -> AccountKey:
        return AccountKey(self.account_type, self.bank_name)


class CheckpointInput(BaseModel):
    """A statement-derived balance snapshot for one account.

    ``statement_month`` is the human label as extracted ("May 2023", legacy
    "May"). ``last_transaction_id`` is usually resolved by statement ingestion
    from the transactions of the same statement; callers may supply it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    account_type: AccountType
    bank_name: str
    statement_month: str
    closing_balance: Decimal | None = None
    credit_card_amount_due: Decimal | None = None
    reward_points: int | None = None
    last_transaction_id: int | None = None

    @field_validator("closing_balance", "credit_card_amount_due")
    @classmethod
    def _money(cls, v: Decimal | None) -> Decimal | None:
        return None if v is None else to_money(v)

    @property
    def account(self) -> AccountKey:
        return AccountKey(self.account_type, self.bank_name)


# ---------------------------------------------------------------------------
# Store records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """A transaction as recorded in the canonical store."""

    id: int
    user_id: str
    date: dt.date
    description: str
    amount: Decimal
    type: str
    account_type: str
    bank_name: str
    source: str
    statement_id: int | None = None
    external_ref: str | None = None
    category: str | None = None

    @property
    def account(self) -> AccountKey:
        return AccountKey(self.account_type, self.bank_name)


@dataclass(frozen=True, slots=True)
class BalanceCheckpoint:
    """A persisted statement checkpoint.

    ``period`` is ``None`` only for records whose label could not be resolved
    (legacy data handed to :func:`ledger_recon.months.order_checkpoints`).
    """

    account: AccountKey
    statement_label: str
    period: StatementMonth | None
    closing_balance: Decimal | None = None
    credit_card_amount_due: Decimal | None = None
    last_transaction_id: int | None = None
    reward_points: int | None = None
    id: int | None = None
    statement_id: int | None = None

    @property
    def balance(self) -> Decimal | None:
        """The authoritative balance: amount due for cards, closing balance otherwise."""

        if self.account.is_credit_card:
            return self.credit_card_amount_due
        return self.closing_balance


@dataclass(frozen=True, slots=True)
class StatementRecord:
    id: int
    user_id: str
    file_name: str
    file_size: int
    file_hash: str | None
    file_type: str | None = None
    processed: bool = False
    uploaded_at: datetime | None = None


__all__ = [
    "TransactionType",
    "AccountType",
    "Source",
    "TRANSACTION_TYPES",
    "ACCOUNT_TYPES",
    "SOURCES",
    "CENT",
    "ZERO",
    "to_money",
    "AccountKey",
    "StatementMonth",
    "CandidateTransaction",
    "CheckpointInput",
    "LedgerEntry",
    "BalanceCheckpoint",
    "StatementRecord",
]
