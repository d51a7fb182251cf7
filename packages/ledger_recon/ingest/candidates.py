"""Extraction rows -> :class:`~ledger_recon.models.CandidateTransaction`.

Statement parsing and Gmail parsing hand over loosely shaped JSON rows
(camelCase or snake_case keys, ``debit``/``credit`` types, ``"Bank Account"``
account labels, ``"₹1,234.50"`` amounts, ``DD/MM/YYYY`` dates). This module is
the only place those rows are normalized; the deduplication engine compares
the resulting fields exactly.

Rows that cannot be normalized are returned as :class:`RowRejected` with
their input position instead of raising, so one malformed row never sinks a
batch.
"""

from __future__ import annotations

import unicodedata
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, NamedTuple

from ..logging_setup import get_logger
from ..models import CandidateTransaction, Source

_logger = get_logger("ledger_recon.ingest.candidates")

_TYPE_ALIASES: dict[str, str] = {
    "expense": "expense",
    "debit": "expense",
    "dr": "expense",
    "withdrawal": "expense",
    "income": "income",
    "credit": "income",
    "cr": "income",
    "deposit": "income",
}

_ACCOUNT_TYPE_ALIASES: dict[str, str] = {
    "bankaccount": "BankAccount",
    "bank": "BankAccount",
    "savings": "BankAccount",
    "savingsaccount": "BankAccount",
    "creditcard": "CreditCard",
    "card": "CreditCard",
}

_CURRENCY_MARKERS = ("₹", "rs.", "rs", "inr", "$")

_DAY_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d %b %Y", "%d %B %Y")

# First present key wins.
_FIELD_KEYS: dict[str, tuple[str, ...]] = {
    "date": ("date", "transaction_date", "transactionDate"),
    "description": ("description", "narration", "merchant"),
    "amount": ("amount",),
    "type": ("type", "transaction_type", "transactionType"),
    "account_type": ("account_type", "accountType"),
    "bank_name": ("bank_name", "bankName"),
    "category": ("category",),
    "external_ref": ("external_ref", "gmail_message_id", "reference", "ref_no"),
}


class RowRejected(NamedTuple):
    position: int
    error: str


def normalize_text(value: Any) -> str:
    """NFKC-normalize, collapse internal whitespace and strip."""

    s = unicodedata.normalize("NFKC", str(value))
    return " ".join(s.split())


def parse_amount(raw: Any) -> Decimal:
    """Parse an amount into a positive magnitude.

    The sign never carries meaning here; direction comes from ``type``.
    """

    if raw is None:
        raise ValueError("amount is required")
    if isinstance(raw, bool):
        raise ValueError(f"invalid amount: {raw!r}")
    if isinstance(raw, Decimal | int | float):
        d = Decimal(str(raw))
    else:
        s = normalize_text(raw).lower().lstrip("+-").strip()
        for marker in _CURRENCY_MARKERS:
            if s.startswith(marker):
                s = s[len(marker) :].strip()
        s = s.lstrip("+-").replace(",", "").replace(" ", "")
        if s.startswith("(") and s.endswith(")"):
            s = s[1:-1]
        if not s:
            raise ValueError("amount is empty")
        try:
            d = Decimal(s)
        except InvalidOperation as exc:
            raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"invalid amount: {raw!r}")
    return abs(d)


def parse_day(raw: Any) -> date:
    """Parse a transaction date, truncating any time of day."""

    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if raw is None:
        raise ValueError("date is required")
    s = str(raw).strip()
    if not s:
        raise ValueError("date is empty")
    if "T" in s or (len(s) > 10 and s[4] == "-"):
        iso = s[:-1] + "+00:00" if s.endswith("Z") else s
        try:
            return datetime.fromisoformat(iso).date()
        except ValueError:
            pass
    for fmt in _DAY_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"invalid date: {raw!r}")


def normalize_type(raw: Any) -> str:
    key = normalize_text(raw or "").lower()
    try:
        return _TYPE_ALIASES[key]
    except KeyError:
        raise ValueError(f"unknown transaction type: {raw!r}") from None


def normalize_account_type(raw: Any) -> str:
    key = "".join(ch for ch in normalize_text(raw or "").lower() if ch.isalnum())
    try:
        return _ACCOUNT_TYPE_ALIASES[key]
    except KeyError:
        raise ValueError(f"unknown account type: {raw!r}") from None


def _pick(row: Mapping[str, Any], field: str) -> Any:
    for key in _FIELD_KEYS[field]:
        value = row.get(key)
        if value is not None and not (isinstance(value, str) and not value.strip()):
            return value
    return None


def build_candidate(
    row: Mapping[str, Any],
    *,
    source: Source,
    defaults: Mapping[str, Any] | None = None,
) -> CandidateTransaction:
    """Normalize one extraction row.

    ``defaults`` fills fields the row leaves out (for example the bank and
    account type a whole statement belongs to).

    Raises ``ValueError`` (including pydantic ``ValidationError``) when the
    row cannot be normalized.
    """

    merged: dict[str, Any] = dict(defaults or {})
    for field in _FIELD_KEYS:
        value = _pick(row, field)
        if value is not None:
            merged[field] = value

    category = merged.get("category")
    external_ref = merged.get("external_ref")
    return CandidateTransaction(
        date=parse_day(merged.get("date")),
        description=normalize_text(merged.get("description") or ""),
        amount=parse_amount(merged.get("amount")),
        type=normalize_type(merged.get("type")),  # type: ignore[arg-type]
        account_type=normalize_account_type(merged.get("account_type")),  # type: ignore[arg-type]
        bank_name=normalize_text(merged.get("bank_name") or ""),
        source=source,
        category=normalize_text(category) if category else None,
        external_ref=str(external_ref).strip() if external_ref else None,
    )


def build_candidates(
    rows: Iterable[Mapping[str, Any]],
    *,
    source: Source,
    defaults: Mapping[str, Any] | None = None,
) -> tuple[list[tuple[int, CandidateTransaction]], list[RowRejected]]:
    """Normalize ``rows``; returns ``(position, candidate)`` pairs and rejects."""

    accepted: list[tuple[int, CandidateTransaction]] = []
    rejected: list[RowRejected] = []
    for pos, row in enumerate(rows):
        try:
            accepted.append((pos, build_candidate(row, source=source, defaults=defaults)))
        except ValueError as e:
            _logger.warning("candidates:row_rejected pos=%d source=%s error=%s", pos, source, e)
            rejected.append(RowRejected(position=pos, error=str(e)))
    return accepted, rejected


__all__ = [
    "RowRejected",
    "normalize_text",
    "parse_amount",
    "parse_day",
    "normalize_type",
    "normalize_account_type",
    "build_candidate",
    "build_candidates",
]
