"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models used by ``ledger_recon``.
"""

from .ledger import Base, LedgerBalanceCheckpoint, LedgerStatement, LedgerTransaction

__all__ = [
    "Base",
    "LedgerBalanceCheckpoint",
    "LedgerStatement",
    "LedgerTransaction",
]
