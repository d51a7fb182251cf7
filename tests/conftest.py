"""Pytest configuration shared by the ledger reconciliation tests.

Puts the workspace ``packages/`` and ``libs/db/src`` directories on
``sys.path`` so ``ledger_recon`` and ``db`` import without installation, and
provides both store implementations as fixtures. Tests that touch the store
take the parametrized ``store`` fixture and run against each of them.
"""

# ruff: noqa: E402, I001
from __future__ import annotations

import sys
from pathlib import Path

_ROOT = Path(__file__).resolve().parents[1]
sys.path[:0] = [
    p
    for p in [str(_ROOT / "packages"), str(_ROOT / "libs" / "db" / "src"), str(_ROOT)]
    if p not in sys.path
]

import pytest

from db.client import make_session_factory
from ledger_recon.persistence import SqlTransactionStore
from ledger_recon.settings import ReconcileSettings
from ledger_recon.store import InMemoryTransactionStore
from tests.helpers.db import bootstrap_sqlite_db


@pytest.fixture
def memory_store() -> InMemoryTransactionStore:
    return InMemoryTransactionStore()


@pytest.fixture
def sqlite_engine(tmp_path: Path):
    engine = bootstrap_sqlite_db(tmp_path / "ledger.db")
    yield engine
    engine.dispose()


@pytest.fixture
def sql_store(sqlite_engine) -> SqlTransactionStore:
    return SqlTransactionStore(make_session_factory(sqlite_engine), statement_timeout_ms=0)


@pytest.fixture(params=["memory", "sql"])
def store(request: pytest.FixtureRequest):
    """Each store implementation in turn."""

    if request.param == "memory":
        return request.getfixturevalue("memory_store")
    return request.getfixturevalue("sql_store")


@pytest.fixture
def settings() -> ReconcileSettings:
    """Small pool and no backoff sleeps, so retry paths run instantly."""

    return ReconcileSettings(max_workers=4, max_attempts=3, backoff_schedule_sec=(0.0,))
