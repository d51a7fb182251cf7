"""Balance projection: checkpoint balance rolled forward by later expenses.

For one account ``(account_type, bank_name)`` with checkpoint ``cp``:

- no checkpoint: status ``insufficient_data`` (never a zero balance)
- ``cp.last_transaction_id`` is ``None``: the checkpoint balance is current
- otherwise the last transaction's date bounds the replay window and every
  expense of the same account dated strictly after it is summed:
  bank ``closing_balance - sum``, card ``credit_card_amount_due + sum``

A ``last_transaction_id`` that does not resolve raises
:class:`~ledger_recon.errors.ReferentialInconsistency`; the replay window is
never treated as unbounded.

Combined ("Total") views project each account on its own and sum the
projected balances. Projection reads are not transactional with concurrent
inserts; a balance is as of the last completed read.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Literal

from .errors import LookupFailure, ReferentialInconsistency, UnparseableCheckpointLabel
from .fanout import fan_out_settled
from .logging_setup import get_logger
from .models import ZERO, AccountKey, BalanceCheckpoint, to_money
from .months import OrderedCheckpoints, latest_per_account, order_checkpoints
from .retry import retry_lookup
from .settings import ReconcileSettings

if TYPE_CHECKING:  # pragma: no cover
    from .store import TransactionStore

_logger = get_logger("ledger_recon.projection")

ProjectionStatus = Literal[
    "projected",
    "insufficient_data",
    "referential_inconsistency",
    "lookup_failed",
]


@dataclass(frozen=True, slots=True)
class ProjectedBalance:
    account: AccountKey
    status: ProjectionStatus
    balance: Decimal | None = None
    checkpoint_balance: Decimal | None = None
    replayed_expenses: Decimal = ZERO
    replayed_since: date | None = None
    checkpoint: BalanceCheckpoint | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "projected"


def apply_expenses(account: AccountKey, checkpoint_balance: Decimal, expenses: Decimal) -> Decimal:
    """Roll ``checkpoint_balance`` forward: cards owe more, bank accounts hold less."""

    if account.is_credit_card:
        return to_money(checkpoint_balance + expenses)
    return to_money(checkpoint_balance - expenses)


def project_balance(
    store: TransactionStore,
    *,
    user_id: str,
    account: AccountKey,
    checkpoint: BalanceCheckpoint | None,
) -> ProjectedBalance:
    """Project the current balance of one account.

    Raises
    ------
    ReferentialInconsistency
        ``checkpoint.last_transaction_id`` does not resolve for this user.
    LookupFailure
        The store could not answer.
    """

    if checkpoint is None or checkpoint.balance is None:
        return ProjectedBalance(account=account, status="insufficient_data", checkpoint=checkpoint)

    base = checkpoint.balance
    if checkpoint.last_transaction_id is None:
        return ProjectedBalance(
            account=account,
            status="projected",
            balance=base,
            checkpoint_balance=base,
            checkpoint=checkpoint,
        )

    last = store.get_transaction(user_id, checkpoint.last_transaction_id)
    if last is None:
        raise ReferentialInconsistency(checkpoint.id, checkpoint.last_transaction_id)

    amounts = store.expense_amounts_after(user_id, account, last.date)
    replayed = to_money(sum(amounts, ZERO))
    return ProjectedBalance(
        account=account,
        status="projected",
        balance=apply_expenses(account, base, replayed),
        checkpoint_balance=base,
        replayed_expenses=replayed,
        replayed_since=last.date,
        checkpoint=checkpoint,
    )


@dataclass(frozen=True, slots=True)
class ProjectionReport:
    """Per-account projections in account order plus label warnings."""

    balances: list[ProjectedBalance]
    warnings: list[UnparseableCheckpointLabel] = field(default_factory=list)

    @property
    def projected(self) -> list[ProjectedBalance]:
        return [b for b in self.balances if b.ok]

    @property
    def unavailable(self) -> list[ProjectedBalance]:
        return [b for b in self.balances if not b.ok]

    def total(self, account_type: str | None = None) -> Decimal | None:
        """Sum of projected balances; ``None`` when nothing could be projected."""

        rows = [
            b
            for b in self.projected
            if account_type is None or b.account.account_type == account_type
        ]
        if not rows:
            return None
        return to_money(sum((b.balance for b in rows if b.balance is not None), ZERO))

    def replayed_total(self, account_type: str | None = None) -> Decimal:
        return to_money(
            sum(
                (
                    b.replayed_expenses
                    for b in self.projected
                    if account_type is None or b.account.account_type == account_type
                ),
                ZERO,
            )
        )

    def get(self, account: AccountKey) -> ProjectedBalance | None:
        return next((b for b in self.balances if b.account == account), None)

    @property
    def summary(self) -> str:
        return (
            f"{len(self.projected)} accounts projected, "
            f"{len(self.unavailable)} accounts unavailable"
        )


def project_accounts(
    store: TransactionStore,
    *,
    user_id: str,
    checkpoints: Mapping[AccountKey, BalanceCheckpoint | None],
    settings: ReconcileSettings,
    warnings: Iterable[UnparseableCheckpointLabel] = (),
) -> ProjectionReport:
    """Project every account in ``checkpoints`` with bounded concurrency.

    Failures are captured per account; one inconsistent or unreachable account
    never prevents the others from being reported.
    """

    accounts = sorted(checkpoints)

    def _one(account: AccountKey) -> ProjectedBalance:
        value, _ = retry_lookup(
            lambda: project_balance(
                store, user_id=user_id, account=account, checkpoint=checkpoints[account]
            ),
            max_attempts=settings.max_attempts,
            schedule=settings.backoff_schedule_sec,
            op="project_balance",
        )
        return value

    balances: list[ProjectedBalance] = []
    for res in fan_out_settled(accounts, _one, concurrency=settings.workers_for(len(accounts))):
        account = res.item
        if res.ok:
            balances.append(res.value)  # type: ignore[arg-type]
            continue
        err = res.error
        if isinstance(err, ReferentialInconsistency):
            status: ProjectionStatus = "referential_inconsistency"
        elif isinstance(err, LookupFailure):
            status = "lookup_failed"
        else:
            raise err  # type: ignore[misc]
        _logger.warning(
            "project_balance:unavailable account=%s/%s status=%s error=%s",
            account.account_type,
            account.bank_name,
            status,
            err,
        )
        balances.append(
            ProjectedBalance(
                account=account,
                status=status,
                checkpoint=checkpoints[account],
                error=str(err),
            )
        )

    report = ProjectionReport(balances=balances, warnings=list(warnings))
    _logger.info("project_balance:done user_id=%s %s", user_id, report.summary)
    return report


def load_ordered_checkpoints(
    store: TransactionStore,
    *,
    user_id: str,
    settings: ReconcileSettings,
    account_type: str | None = None,
    bank_name: str | None = None,
    today: date | None = None,
) -> OrderedCheckpoints:
    """List a user's checkpoints (with lookup retries) most recent first.

    Failing to list them raises ``LookupFailure``: without checkpoints no
    account can be reported.
    """

    rows, _ = retry_lookup(
        lambda: store.list_checkpoints(user_id, account_type=account_type, bank_name=bank_name),
        max_attempts=settings.max_attempts,
        schedule=settings.backoff_schedule_sec,
        op="list_checkpoints",
    )
    return order_checkpoints(rows, today=today)


def project_latest(
    store: TransactionStore,
    *,
    user_id: str,
    settings: ReconcileSettings,
    account_type: str | None = None,
    bank_name: str | None = None,
    today: date | None = None,
) -> ProjectionReport:
    """Project every account from its most recent checkpoint.

    When both ``account_type`` and ``bank_name`` are given, the account is
    reported as ``insufficient_data`` if it has no checkpoint at all.
    """

    ordered = load_ordered_checkpoints(
        store,
        user_id=user_id,
        settings=settings,
        account_type=account_type,
        bank_name=bank_name,
        today=today,
    )
    latest: dict[AccountKey, BalanceCheckpoint | None] = dict(latest_per_account(ordered.ordered))
    if account_type is not None and bank_name is not None:
        latest.setdefault(AccountKey(account_type, bank_name), None)
    return project_accounts(
        store,
        user_id=user_id,
        checkpoints=latest,
        settings=settings,
        warnings=ordered.warnings,
    )


__all__ = [
    "ProjectionStatus",
    "ProjectedBalance",
    "ProjectionReport",
    "apply_expenses",
    "project_balance",
    "project_accounts",
    "project_latest",
    "load_ordered_checkpoints",
]
