"""Request-shaped entry points for the HTTP layer and the CLI.

Every function returns ``(status_code, body)`` where ``body`` is JSON-ready.
Failures return ``{"error": message}``:

- 400: malformed input (validation errors, unsupported file types, bad labels)
- 401: no user
- 404: unknown record
- 503: the store could not answer (``LookupFailure``)
- 500: anything else (logged with traceback)

Money is rendered as a decimal string ("8000.00") so no precision is lost on
the way to the client. Months are rendered as "May 2024".
"""

from __future__ import annotations

import functools
from collections.abc import Callable, Mapping, Sequence
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, TypeAlias

from pydantic import ValidationError

from .cleanup import clear_duplicates as _clear_duplicates
from .errors import LookupFailure
from .ingest.batch import AccountLocks, CandidateOutcome, reconcile_batch
from .ingest.candidates import RowRejected, build_candidate, normalize_account_type
from .ingest.email import ingest_email_transactions
from .ingest.statement import StatementMetadata, ingest_statement
from .logging_setup import get_logger
from .models import StatementMonth
from .projection import ProjectedBalance, project_latest
from .settings import ReconcileSettings
from .summaries import TOTAL, Metric, balance_progression, key_metrics, monthly_summary

if TYPE_CHECKING:  # pragma: no cover
    from .store import TransactionStore

_logger = get_logger("ledger_recon.api")

Response: TypeAlias = tuple[int, dict[str, Any]]


# ---- Rendering ---------------------------------------------------------------


def _money(value: Decimal | None) -> str | None:
    return None if value is None else f"{value:.2f}"


def _month(value: StatementMonth | None) -> str | None:
    return None if value is None else value.label


def _balance(b: ProjectedBalance) -> dict[str, Any]:
    out: dict[str, Any] = {
        "accountType": b.account.account_type,
        "bankName": b.account.bank_name,
        "status": b.status,
        "balance": _money(b.balance),
    }
    if b.ok:
        out["checkpointBalance"] = _money(b.checkpoint_balance)
        out["replayedExpenses"] = _money(b.replayed_expenses)
        out["replayedSince"] = b.replayed_since.isoformat() if b.replayed_since else None
    if b.checkpoint is not None:
        out["statementMonth"] = _month(b.checkpoint.period) or b.checkpoint.statement_label
    if b.error:
        out["error"] = b.error
    return out


def _outcome(o: CandidateOutcome) -> dict[str, Any]:
    out: dict[str, Any] = {
        "position": o.position,
        "status": o.status,
        "transactionId": o.transaction_id,
        "attempts": o.attempts,
    }
    if o.error:
        out["error"] = o.error
    return out


def _rejected(rows: Sequence[RowRejected]) -> list[dict[str, Any]]:
    return [{"position": r.position, "error": r.error} for r in rows]


def _metadata(meta: StatementMetadata | None) -> dict[str, Any] | None:
    if meta is None:
        return None
    return {
        "bankName": meta.bank_name,
        "accountType": meta.account_type,
        "dateRange": {"start": meta.start.isoformat(), "end": meta.end.isoformat()},
    }


def _metric(m: Metric) -> dict[str, Any]:
    value = _money(m.value) if isinstance(m.value, Decimal) else m.value
    return {"value": value, "month": _month(m.month)}


def _unavailable(rows: Sequence[ProjectedBalance]) -> list[dict[str, Any]]:
    return [_balance(b) for b in rows]


# ---- Error boundary ----------------------------------------------------------


def _endpoint(op: str) -> Callable[[Callable[..., Response]], Callable[..., Response]]:
    """Authenticate, run and translate exceptions into ``(status, {"error"})``."""

    def deco(fn: Callable[..., Response]) -> Callable[..., Response]:
        @functools.wraps(fn)
        def wrapper(store: TransactionStore, *, user_id: str | None, **kwargs: Any) -> Response:
            if not user_id:
                return 401, {"error": "Authentication required"}
            try:
                return fn(store, user_id=user_id, **kwargs)
            except ValidationError as e:
                return 400, {"error": f"Invalid input: {e.error_count()} validation errors"}
            except LookupFailure as e:
                _logger.warning("api:%s store_unavailable error=%s", op, e)
                return 503, {"error": "Store unavailable, retry later"}
            except KeyError as e:
                return 404, {"error": f"Not found: {e.args[0] if e.args else op}"}
            except ValueError as e:
                return 400, {"error": str(e)}
            except Exception:
                _logger.exception("api:%s failed", op)
                return 500, {"error": f"Failed to {op.replace('_', ' ')}"}

        return wrapper

    return deco


def _account_type(raw: str | None) -> str | None:
    return None if raw is None else normalize_account_type(raw)


# ---- Ingestion ---------------------------------------------------------------


@_endpoint("process_statement")
def process_statement(
    store: TransactionStore,
    *,
    user_id: str,
    file_name: str,
    content: bytes,
    extracted: Mapping[str, Any],
    settings: ReconcileSettings,
    locks: AccountLocks | None = None,
    today: date | None = None,
) -> Response:
    """Ingest an uploaded statement.

    ``extracted`` is the extraction output:
    ``{"transactions": [...], "checkpoints": [...]}``.
    """

    result = ingest_statement(
        store,
        user_id=user_id,
        file_name=file_name,
        content=content,
        transactions=list(extracted.get("transactions") or []),
        checkpoints=list(extracted.get("checkpoints") or []),
        settings=settings,
        locks=locks,
        today=today,
    )
    body: dict[str, Any] = {
        "statementId": result.statement.id,
        "isDuplicate": result.duplicate_file,
        "processed": result.statement.processed,
        "duplicatesSkipped": result.duplicates_skipped,
        "metadata": _metadata(result.metadata),
    }
    if result.duplicate_file:
        body["message"] = "This statement has already been processed"
        return 200, body

    batch = result.batch
    assert batch is not None
    body.update(
        {
            "message": (
                f"Processed {batch.inserted} new transactions, "
                f"skipped {result.duplicates_skipped} duplicates"
            ),
            "counts": batch.counts(),
            "outcomes": [_outcome(o) for o in batch.outcomes],
            "rejected": _rejected(result.rejected),
            "checkpoints": [
                {
                    "id": cp.id,
                    "accountType": cp.account.account_type,
                    "bankName": cp.account.bank_name,
                    "statementMonth": _month(cp.period),
                    "lastTransactionId": cp.last_transaction_id,
                }
                for cp in result.checkpoints
            ],
            "warnings": result.warnings,
        }
    )
    return 200, body


@_endpoint("save_email_transactions")
def save_email_transactions(
    store: TransactionStore,
    *,
    user_id: str,
    transactions: Sequence[Mapping[str, Any]],
    settings: ReconcileSettings,
    locks: AccountLocks | None = None,
) -> Response:
    result = ingest_email_transactions(
        store, user_id=user_id, rows=transactions, settings=settings, locks=locks
    )
    batch = result.batch
    return 200, {
        "message": (
            f"Processed {len(transactions)} transactions "
            f"({batch.inserted} new, {batch.duplicates} duplicates, {batch.failed} failed)"
        ),
        "counts": batch.counts(),
        "outcomes": [_outcome(o) for o in batch.outcomes],
        "rejected": _rejected(result.rejected),
    }


@_endpoint("add_transaction")
def add_manual_transaction(
    store: TransactionStore,
    *,
    user_id: str,
    payload: Mapping[str, Any],
    settings: ReconcileSettings,
    locks: AccountLocks | None = None,
) -> Response:
    candidate = build_candidate(payload, source="manual")
    report = reconcile_batch(
        store, user_id=user_id, candidates=[candidate], settings=settings, locks=locks
    )
    outcome = report.outcomes[0]
    if outcome.status == "failed":
        return 503, {"error": "Store unavailable, retry later", **_outcome(outcome)}
    return (201 if outcome.status == "inserted" else 200), _outcome(outcome)


# ---- Reads -------------------------------------------------------------------


@_endpoint("project_balances")
def get_balances(
    store: TransactionStore,
    *,
    user_id: str,
    settings: ReconcileSettings,
    account_type: str | None = None,
    bank_name: str | None = None,
    today: date | None = None,
) -> Response:
    report = project_latest(
        store,
        user_id=user_id,
        settings=settings,
        account_type=_account_type(account_type),
        bank_name=bank_name,
        today=today,
    )
    return 200, {
        "balances": [_balance(b) for b in report.balances],
        "totals": {
            "BankAccount": _money(report.total("BankAccount")),
            "CreditCard": _money(report.total("CreditCard")),
        },
        "summary": report.summary,
        "warnings": [str(w) for w in report.warnings],
    }


@_endpoint("fetch_monthly_summary")
def get_monthly_summary(
    store: TransactionStore,
    *,
    user_id: str,
    settings: ReconcileSettings,
    account_type: str = "BankAccount",
    bank: str | None = TOTAL,
    today: date | None = None,
) -> Response:
    summary = monthly_summary(
        store,
        user_id=user_id,
        settings=settings,
        account_type=normalize_account_type(account_type),
        bank=bank or TOTAL,
        today=today,
    )
    return 200, {
        "months": [
            {"month": r.month.label, "accountBalance": _money(r.balance), "projected": r.projected}
            for r in summary.rows
        ],
        "unavailable": _unavailable(summary.unavailable),
        "warnings": [str(w) for w in summary.warnings],
    }


@_endpoint("fetch_balance_progression")
def get_balance_progression(
    store: TransactionStore,
    *,
    user_id: str,
    settings: ReconcileSettings,
    account_type: str = "BankAccount",
    today: date | None = None,
) -> Response:
    progression = balance_progression(
        store,
        user_id=user_id,
        settings=settings,
        account_type=normalize_account_type(account_type),
        today=today,
    )
    rows = []
    for r in progression.rows:
        row: dict[str, Any] = {"month": r.month.label}
        row.update({bank: _money(v) for bank, v in r.banks.items()})
        row[TOTAL] = _money(r.total)
        rows.append(row)
    return 200, {
        "banks": progression.banks,
        "rows": rows,
        "unavailable": _unavailable(progression.unavailable),
        "warnings": [str(w) for w in progression.warnings],
    }


@_endpoint("fetch_key_metrics")
def get_key_metrics(
    store: TransactionStore,
    *,
    user_id: str,
    settings: ReconcileSettings,
    today: date | None = None,
) -> Response:
    metrics = key_metrics(store, user_id=user_id, settings=settings, today=today)
    return 200, {
        "currentBankBalance": _metric(metrics.current_bank_balance),
        "currentMonthExpenses": _metric(metrics.current_month_expenses),
        "creditCardDues": _metric(metrics.credit_card_dues),
        "rewardPoints": _metric(metrics.reward_points),
        "unavailable": _unavailable(metrics.unavailable),
        "warnings": [str(w) for w in metrics.warnings],
    }


# ---- Maintenance -------------------------------------------------------------


@_endpoint("clear_duplicates")
def clear_duplicates(
    store: TransactionStore,
    *,
    user_id: str,
    dry_run: bool = False,
) -> Response:
    result = _clear_duplicates(store, user_id=user_id, dry_run=dry_run)
    return 200, {
        "success": True,
        "message": result.message,
        "duplicatesRemoved": result.removed,
        "duplicateIds": result.duplicate_ids,
        "dryRun": result.dry_run,
    }


__all__ = [
    "Response",
    "process_statement",
    "save_email_transactions",
    "add_manual_transaction",
    "get_balances",
    "get_monthly_summary",
    "get_balance_progression",
    "get_key_metrics",
    "clear_duplicates",
]
