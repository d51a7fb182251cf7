"""Statement upload ingestion.

Flow for one uploaded file plus the rows extracted from it:

1. reject file types other than csv/pdf/xls/xlsx
2. hash the bytes (sha256); a processed statement with the same hash, or a
   legacy one with the same name and size, is a duplicate upload and nothing
   is ingested
3. create the statement record
4. reconcile the extracted transactions with ``source="statement"``
5. record the extracted checkpoints; each one's ``last_transaction_id``
   defaults to the latest-dated transaction of its account in this statement
   (inserted or matched as a duplicate). Accounts with a failed candidate get
   no checkpoint until a rerun has all of their rows
6. mark the statement processed, unless some candidate failed: an
   unprocessed statement is re-ingested on the next upload, reusing its
   record, and the batch is idempotent
"""

from __future__ import annotations

import dataclasses
import hashlib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from pathlib import PurePath
from typing import TYPE_CHECKING, Any

from ..errors import DuplicateCheckpoint, UnsupportedStatementFile
from ..logging_setup import get_logger
from ..models import AccountKey, BalanceCheckpoint, CheckpointInput, LedgerEntry, StatementRecord
from ..months import parse_statement_month
from ..retry import retry_lookup
from ..settings import ReconcileSettings
from .batch import AccountLocks, BatchReport, CandidateOutcome, reconcile_batch
from .candidates import RowRejected, build_candidates

if TYPE_CHECKING:  # pragma: no cover
    from ..store import TransactionStore

_logger = get_logger("ledger_recon.ingest.statement")

ALLOWED_FILE_TYPES: frozenset[str] = frozenset({"csv", "pdf", "xls", "xlsx"})


def compute_file_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def file_type_of(file_name: str) -> str | None:
    suffix = PurePath(file_name).suffix.lower().lstrip(".")
    return suffix or None


@dataclass(frozen=True, slots=True)
class StatementMetadata:
    bank_name: str
    account_type: str
    start: date
    end: date


@dataclass(frozen=True, slots=True)
class StatementIngestResult:
    statement: StatementRecord
    duplicate_file: bool
    batch: BatchReport | None = None
    rejected: list[RowRejected] = field(default_factory=list)
    checkpoints: list[BalanceCheckpoint] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    metadata: StatementMetadata | None = None

    @property
    def duplicates_skipped(self) -> int:
        return self.batch.duplicates if self.batch else 0


def _metadata(rows: Sequence[Any]) -> StatementMetadata | None:
    """Bank, account type and date range of a statement's transactions."""

    if not rows:
        return None
    first = rows[0]
    days = [r.date for r in rows]
    return StatementMetadata(
        bank_name=first.bank_name,
        account_type=first.account_type,
        start=min(days),
        end=max(days),
    )


def _last_transaction_ids(outcomes: Sequence[CandidateOutcome]) -> dict[AccountKey, int]:
    """Latest-dated (then highest id) recorded transaction per account."""

    best: dict[AccountKey, tuple[date, int]] = {}
    for o in outcomes:
        if o.status == "failed" or o.transaction_id is None:
            continue
        key = (o.candidate.date, o.transaction_id)
        account = o.candidate.account
        if account not in best or key > best[account]:
            best[account] = key
    return {account: tx_id for account, (_, tx_id) in best.items()}


def _record_checkpoints(
    store: TransactionStore,
    *,
    user_id: str,
    statement: StatementRecord,
    inputs: Sequence[CheckpointInput | Mapping[str, Any]],
    last_ids: Mapping[AccountKey, int],
    pending: frozenset[AccountKey],
    today: date | None,
) -> tuple[list[BalanceCheckpoint], list[str]]:
    recorded: list[BalanceCheckpoint] = []
    warnings: list[str] = []
    for raw in inputs:
        try:
            cp_in = raw if isinstance(raw, CheckpointInput) else CheckpointInput.model_validate(raw)
            period = parse_statement_month(cp_in.statement_month, today=today)
        except ValueError as e:
            _logger.warning(
                "statement:checkpoint_rejected statement_id=%s error=%s", statement.id, e
            )
            warnings.append(f"checkpoint skipped: {e}")
            continue

        if cp_in.account in pending:
            # Recorded by the rerun, once the account's rows are all in.
            warnings.append(
                f"checkpoint for {cp_in.bank_name} {period.label} deferred: "
                "some of its transactions could not be checked"
            )
            continue

        checkpoint = BalanceCheckpoint(
            account=cp_in.account,
            statement_label=cp_in.statement_month.strip(),
            period=period,
            closing_balance=cp_in.closing_balance,
            credit_card_amount_due=cp_in.credit_card_amount_due,
            reward_points=cp_in.reward_points,
            last_transaction_id=(
                cp_in.last_transaction_id
                if cp_in.last_transaction_id is not None
                else last_ids.get(cp_in.account)
            ),
            statement_id=statement.id,
        )
        try:
            recorded.append(store.add_checkpoint(user_id, checkpoint))
        except DuplicateCheckpoint:
            warnings.append(
                f"checkpoint for {cp_in.bank_name} {period.label} already recorded; skipped"
            )
    return recorded, warnings


def ingest_statement(
    store: TransactionStore,
    *,
    user_id: str,
    file_name: str,
    content: bytes,
    transactions: Sequence[Mapping[str, Any]],
    settings: ReconcileSettings,
    checkpoints: Sequence[CheckpointInput | Mapping[str, Any]] = (),
    locks: AccountLocks | None = None,
    today: date | None = None,
) -> StatementIngestResult:
    """Ingest one uploaded statement and the rows extracted from it.

    Raises ``UnsupportedStatementFile`` for unsupported file types and
    ``LookupFailure`` when the store cannot be reached to dedup the file.
    Per-row and per-candidate problems are reported in the result.
    """

    file_type = file_type_of(file_name)
    if file_type not in ALLOWED_FILE_TYPES:
        raise UnsupportedStatementFile(
            f"unsupported file type {file_type!r}; expected one of "
            + ", ".join(sorted(ALLOWED_FILE_TYPES))
        )

    file_hash = compute_file_hash(content)
    existing, _ = retry_lookup(
        lambda: store.find_processed_statement(
            user_id, file_hash=file_hash, file_name=file_name, file_size=len(content)
        ),
        max_attempts=settings.max_attempts,
        schedule=settings.backoff_schedule_sec,
        op="find_processed_statement",
    )
    if existing is not None:
        prior: list[LedgerEntry] = store.list_transactions(user_id, statement_id=existing.id)
        _logger.info(
            "statement:duplicate_file user_id=%s statement_id=%s file_name=%s",
            user_id,
            existing.id,
            file_name,
        )
        return StatementIngestResult(
            statement=existing, duplicate_file=True, metadata=_metadata(prior)
        )

    statement = store.create_statement(
        user_id,
        file_name=file_name,
        file_type=file_type,
        file_size=len(content),
        file_hash=file_hash,
    )
    accepted, rejected = build_candidates(transactions, source="statement")
    batch = reconcile_batch(
        store,
        user_id=user_id,
        candidates=[c for _, c in accepted],
        positions=[p for p, _ in accepted],
        settings=settings,
        statement_id=statement.id,
        locks=locks,
    )
    recorded, warnings = _record_checkpoints(
        store,
        user_id=user_id,
        statement=statement,
        inputs=checkpoints,
        last_ids=_last_transaction_ids(batch.outcomes),
        pending=frozenset(o.candidate.account for o in batch.outcomes if o.status == "failed"),
        today=today,
    )

    if batch.failed:
        warnings.append(
            f"{batch.failed} transactions could not be checked; statement left unprocessed"
        )
    else:
        store.mark_statement_processed(user_id, statement.id)
        statement = dataclasses.replace(statement, processed=True)

    _logger.info(
        "statement:ingested user_id=%s statement_id=%s rows=%d rejected=%d %s checkpoints=%d",
        user_id,
        statement.id,
        len(transactions),
        len(rejected),
        " ".join(f"{k}={v}" for k, v in batch.counts().items()),
        len(recorded),
    )
    return StatementIngestResult(
        statement=statement,
        duplicate_file=False,
        batch=batch,
        rejected=rejected,
        checkpoints=recorded,
        warnings=warnings,
        metadata=_metadata([c for _, c in accepted]),
    )


__all__ = [
    "ALLOWED_FILE_TYPES",
    "StatementMetadata",
    "StatementIngestResult",
    "compute_file_hash",
    "file_type_of",
    "ingest_statement",
]
