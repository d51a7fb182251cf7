"""Exception taxonomy for the reconciliation core.

Per-candidate and per-account failures are raised as these types and captured
into batch/projection reports by the callers; they never abort a whole batch.
"""

from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for reconciliation failures."""


class LookupFailure(ReconciliationError):
    """The store could not answer a query (unreachable, locked, errored).

    Retryable. Must never be interpreted as "no duplicate" or "duplicate".
    ``attempts`` is set by :func:`ledger_recon.retry.retry_lookup` when the
    failure is re-raised after the last attempt.
    """

    attempts: int = 1


class LookupTimeout(LookupFailure):
    """A store query exceeded its statement timeout."""


class ReferentialInconsistency(ReconciliationError):
    """A checkpoint's ``last_transaction_id`` does not resolve to a transaction."""

    def __init__(self, checkpoint_id: int | str | None, last_transaction_id: int | str) -> None:
        self.checkpoint_id = checkpoint_id
        self.last_transaction_id = last_transaction_id
        super().__init__(
            f"checkpoint {checkpoint_id!r} references missing transaction "
            f"{last_transaction_id!r}"
        )


class UnparseableCheckpointLabel(ReconciliationError, ValueError):
    """A statement-month label cannot be parsed into ``(year, month)``."""

    def __init__(self, label: str | None, reason: str = "unrecognized format") -> None:
        self.label = label
        self.reason = reason
        super().__init__(f"cannot parse statement month {label!r}: {reason}")


class DuplicateTransaction(ReconciliationError):
    """Insert rejected by the store's same-source uniqueness constraint."""


class DuplicateCheckpoint(ReconciliationError):
    """A checkpoint already exists for the account and statement period."""


class UnsupportedStatementFile(ReconciliationError, ValueError):
    """An uploaded statement is not one of the accepted file types."""


__all__ = [
    "ReconciliationError",
    "LookupFailure",
    "LookupTimeout",
    "ReferentialInconsistency",
    "UnparseableCheckpointLabel",
    "DuplicateTransaction",
    "DuplicateCheckpoint",
    "UnsupportedStatementFile",
]
