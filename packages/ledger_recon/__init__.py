"""Public interface for the ``ledger_recon`` package.

Re-exports the reconciliation entry points and the record types they take and
return. There is no runtime logic here; only symbol re-exports.
"""

from .dedup import DedupDecision, check_candidate, find_duplicate
from .errors import (
    DuplicateCheckpoint,
    DuplicateTransaction,
    LookupFailure,
    LookupTimeout,
    ReconciliationError,
    ReferentialInconsistency,
    UnparseableCheckpointLabel,
    UnsupportedStatementFile,
)
from .ingest.batch import AccountLocks, BatchReport, CandidateOutcome, reconcile_batch
from .ingest.email import ingest_email_transactions
from .ingest.statement import ingest_statement
from .models import (
    AccountKey,
    BalanceCheckpoint,
    CandidateTransaction,
    CheckpointInput,
    LedgerEntry,
    StatementMonth,
)
from .months import order_checkpoints, order_month_labels, parse_statement_month
from .projection import (
    ProjectedBalance,
    ProjectionReport,
    project_accounts,
    project_balance,
    project_latest,
)
from .settings import ReconcileSettings
from .store import InMemoryTransactionStore, TransactionStore

__all__ = [
    # Dedup
    "DedupDecision",
    "find_duplicate",
    "check_candidate",
    # Ingestion
    "AccountLocks",
    "BatchReport",
    "CandidateOutcome",
    "reconcile_batch",
    "ingest_statement",
    "ingest_email_transactions",
    # Projection and ordering
    "ProjectedBalance",
    "ProjectionReport",
    "project_balance",
    "project_accounts",
    "project_latest",
    "parse_statement_month",
    "order_checkpoints",
    "order_month_labels",
    # Models / types
    "AccountKey",
    "StatementMonth",
    "CandidateTransaction",
    "CheckpointInput",
    "LedgerEntry",
    "BalanceCheckpoint",
    # Store / settings
    "TransactionStore",
    "InMemoryTransactionStore",
    "ReconcileSettings",
    # Errors
    "ReconciliationError",
    "LookupFailure",
    "LookupTimeout",
    "ReferentialInconsistency",
    "UnparseableCheckpointLabel",
    "DuplicateTransaction",
    "DuplicateCheckpoint",
    "UnsupportedStatementFile",
]
