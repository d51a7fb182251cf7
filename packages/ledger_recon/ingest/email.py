"""Ingestion of transactions parsed from Gmail transaction alerts.

Rows carry ``debit``/``credit`` types, snake_case account labels and a
``gmail_message_id``, which is kept as ``external_ref``. A row without a bank
name is recorded against ``"Unknown"``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..logging_setup import get_logger
from ..settings import ReconcileSettings
from .batch import AccountLocks, BatchReport, reconcile_batch
from .candidates import RowRejected, build_candidates

if TYPE_CHECKING:  # pragma: no cover
    from ..store import TransactionStore

_logger = get_logger("ledger_recon.ingest.email")

_EMAIL_DEFAULTS: Mapping[str, Any] = {"bank_name": "Unknown"}


@dataclass(frozen=True, slots=True)
class EmailIngestResult:
    batch: BatchReport
    rejected: list[RowRejected] = field(default_factory=list)


def ingest_email_transactions(
    store: TransactionStore,
    *,
    user_id: str,
    rows: Sequence[Mapping[str, Any]],
    settings: ReconcileSettings,
    locks: AccountLocks | None = None,
) -> EmailIngestResult:
    accepted, rejected = build_candidates(rows, source="email", defaults=_EMAIL_DEFAULTS)
    batch = reconcile_batch(
        store,
        user_id=user_id,
        candidates=[c for _, c in accepted],
        positions=[p for p, _ in accepted],
        settings=settings,
        locks=locks,
    )
    _logger.info(
        "email:ingested user_id=%s rows=%d rejected=%d inserted=%d duplicates=%d failed=%d",
        user_id,
        len(rows),
        len(rejected),
        batch.inserted,
        batch.duplicates,
        batch.failed,
    )
    return EmailIngestResult(batch=batch, rejected=rejected)


__all__ = ["EmailIngestResult", "ingest_email_transactions"]
