"""Dashboard aggregations built on checkpoints and projections.

- :func:`monthly_summary`: one balance per statement month, most recent first
- :func:`balance_progression`: one row per month, oldest first, with a column
  per bank and a ``Total``
- :func:`key_metrics`: current bank balance, expenses since the latest bank
  statements, current card dues, latest reward points

Only the most recent month is projected; older months report the raw
checkpoint balances. The latest month's figure is the sum of per-account
projections for the accounts that have a checkpoint in that month. Accounts
that cannot be projected are left out of the figure and listed in
``unavailable``.

All three work for ``account_type="CreditCard"`` as well (card summary and
card progression), where the checkpoint balance is the amount due.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from .errors import UnparseableCheckpointLabel
from .logging_setup import get_logger
from .models import ZERO, AccountKey, BalanceCheckpoint, StatementMonth, to_money
from .months import OrderedCheckpoints
from .projection import (
    ProjectedBalance,
    ProjectionReport,
    load_ordered_checkpoints,
    project_accounts,
)
from .settings import ReconcileSettings

if TYPE_CHECKING:  # pragma: no cover
    from .store import TransactionStore

_logger = get_logger("ledger_recon.summaries")

TOTAL = "Total"


@dataclass(frozen=True, slots=True)
class MonthBalance:
    month: StatementMonth
    # ``None`` when no account of the month could be projected
    balance: Decimal | None
    projected: bool = False


@dataclass(frozen=True, slots=True)
class MonthlySummary:
    rows: list[MonthBalance]
    unavailable: list[ProjectedBalance] = field(default_factory=list)
    warnings: list[UnparseableCheckpointLabel] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ProgressionRow:
    month: StatementMonth
    # bank name -> balance; ``None`` when the bank has no checkpoint that month
    banks: dict[str, Decimal | None]
    total: Decimal | None
    projected: bool = False


@dataclass(frozen=True, slots=True)
class BalanceProgression:
    banks: list[str]
    rows: list[ProgressionRow]
    unavailable: list[ProjectedBalance] = field(default_factory=list)
    warnings: list[UnparseableCheckpointLabel] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class Metric:
    value: Decimal | int | None
    month: StatementMonth | None


@dataclass(frozen=True, slots=True)
class KeyMetrics:
    current_bank_balance: Metric
    current_month_expenses: Metric
    credit_card_dues: Metric
    reward_points: Metric
    unavailable: list[ProjectedBalance] = field(default_factory=list)
    warnings: list[UnparseableCheckpointLabel] = field(default_factory=list)


def _by_month(
    checkpoints: list[BalanceCheckpoint],
) -> dict[StatementMonth, dict[AccountKey, BalanceCheckpoint]]:
    grouped: dict[StatementMonth, dict[AccountKey, BalanceCheckpoint]] = defaultdict(dict)
    for cp in checkpoints:
        assert cp.period is not None
        # Most-recent-first input: the first checkpoint for an account wins.
        grouped[cp.period].setdefault(cp.account, cp)
    return grouped


def _raw_total(checkpoints: dict[AccountKey, BalanceCheckpoint]) -> Decimal:
    balances = (cp.balance for cp in checkpoints.values() if cp.balance is not None)
    return to_money(sum(balances, ZERO))


def _filtered(ordered: OrderedCheckpoints, bank: str) -> list[BalanceCheckpoint]:
    if bank == TOTAL:
        return ordered.ordered
    return [cp for cp in ordered.ordered if cp.account.bank_name == bank]


def monthly_summary(
    store: TransactionStore,
    *,
    user_id: str,
    settings: ReconcileSettings,
    account_type: str = "BankAccount",
    bank: str = TOTAL,
    today: date | None = None,
) -> MonthlySummary:
    """Balance per statement month, most recent first, for one bank or ``Total``."""

    ordered = load_ordered_checkpoints(
        store, user_id=user_id, settings=settings, account_type=account_type, today=today
    )
    grouped = _by_month(_filtered(ordered, bank))
    months = sorted(grouped, reverse=True)
    if not months:
        return MonthlySummary(rows=[], warnings=ordered.warnings)

    latest = months[0]
    report = project_accounts(
        store, user_id=user_id, checkpoints=grouped[latest], settings=settings
    )
    rows = [MonthBalance(month=latest, balance=report.total(), projected=True)]
    rows.extend(MonthBalance(month=m, balance=_raw_total(grouped[m])) for m in months[1:])
    _logger.info(
        "monthly_summary:done user_id=%s account_type=%s bank=%s months=%d %s",
        user_id,
        account_type,
        bank,
        len(rows),
        report.summary,
    )
    return MonthlySummary(rows=rows, unavailable=report.unavailable, warnings=ordered.warnings)


def balance_progression(
    store: TransactionStore,
    *,
    user_id: str,
    settings: ReconcileSettings,
    account_type: str = "BankAccount",
    today: date | None = None,
) -> BalanceProgression:
    """Per-bank balances per month, oldest first; the latest month is projected."""

    ordered = load_ordered_checkpoints(
        store, user_id=user_id, settings=settings, account_type=account_type, today=today
    )
    grouped = _by_month(ordered.ordered)
    banks = sorted({cp.account.bank_name for cp in ordered.ordered})
    months = sorted(grouped)
    if not months:
        return BalanceProgression(banks=banks, rows=[], warnings=ordered.warnings)

    rows: list[ProgressionRow] = []
    for m in months[:-1]:
        by_bank = {a.bank_name: cp.balance for a, cp in grouped[m].items()}
        rows.append(
            ProgressionRow(
                month=m,
                banks={b: by_bank.get(b) for b in banks},
                total=_raw_total(grouped[m]),
            )
        )

    latest = months[-1]
    report = project_accounts(
        store, user_id=user_id, checkpoints=grouped[latest], settings=settings
    )
    projected = {p.account.bank_name: p.balance for p in report.projected}
    rows.append(
        ProgressionRow(
            month=latest,
            banks={b: projected.get(b) for b in banks},
            total=report.total(),
            projected=True,
        )
    )
    return BalanceProgression(
        banks=banks, rows=rows, unavailable=report.unavailable, warnings=ordered.warnings
    )


def key_metrics(
    store: TransactionStore,
    *,
    user_id: str,
    settings: ReconcileSettings,
    today: date | None = None,
) -> KeyMetrics:
    """Headline figures for the dashboard.

    Bank balance and card dues come from the latest statement month of each
    account type, projected per account. Only accounts with a checkpoint in
    that month count: a bank whose newest statement is older is left out.
    Expenses are the bank expenses replayed on top of those checkpoints.
    Reward points are summed over the latest month that reports any.
    """

    ordered = load_ordered_checkpoints(store, user_id=user_id, settings=settings, today=today)
    unavailable: list[ProjectedBalance] = []

    def _latest_for(account_type: str) -> tuple[StatementMonth | None, ProjectionReport | None]:
        grouped = _by_month(
            [cp for cp in ordered.ordered if cp.account.account_type == account_type]
        )
        if not grouped:
            return None, None
        month = max(grouped)
        report = project_accounts(
            store, user_id=user_id, checkpoints=grouped[month], settings=settings
        )
        unavailable.extend(report.unavailable)
        return month, report

    bank_month, bank_report = _latest_for("BankAccount")
    card_month, card_report = _latest_for("CreditCard")

    points: dict[StatementMonth, int] = defaultdict(int)
    for cp in ordered.ordered:
        if cp.reward_points is not None:
            points[cp.period] += cp.reward_points  # type: ignore[index]
    points_month = max(points) if points else None

    return KeyMetrics(
        current_bank_balance=Metric(bank_report.total() if bank_report else None, bank_month),
        current_month_expenses=Metric(
            bank_report.replayed_total() if bank_report else None, bank_month
        ),
        credit_card_dues=Metric(card_report.total() if card_report else None, card_month),
        reward_points=Metric(
            points[points_month] if points_month is not None else None, points_month
        ),
        unavailable=unavailable,
        warnings=ordered.warnings,
    )


__all__ = [
    "TOTAL",
    "MonthBalance",
    "MonthlySummary",
    "ProgressionRow",
    "BalanceProgression",
    "Metric",
    "KeyMetrics",
    "monthly_summary",
    "balance_progression",
    "key_metrics",
]
