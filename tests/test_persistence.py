from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import text

from db.client import create_db_engine, make_session_factory
from db.models.ledger import LedgerStatement
from ledger_recon.errors import DuplicateCheckpoint, DuplicateTransaction, LookupFailure
from ledger_recon.persistence import SqlTransactionStore
from tests.helpers.ledger import HDFC_BANK, HDFC_CARD, USER, candidate, checkpoint


def test_same_source_key_is_unique(store):
    store.insert_transaction(USER, candidate())
    with pytest.raises(DuplicateTransaction):
        store.insert_transaction(USER, candidate(amount=Decimal("450")))
    # Another source or another user is a different key.
    store.insert_transaction(USER, candidate(source="email"))
    store.insert_transaction("someone-else", candidate())


def test_checkpoint_period_is_unique_per_account(store):
    store.add_checkpoint(USER, checkpoint(HDFC_BANK, 2024, 3, "1"))
    store.add_checkpoint(USER, checkpoint(HDFC_CARD, 2024, 3, "1"))
    with pytest.raises(DuplicateCheckpoint):
        store.add_checkpoint(USER, checkpoint(HDFC_BANK, 2024, 3, "2"))


def test_round_trip_keeps_day_and_money(store):
    entry = store.insert_transaction(
        USER, candidate(amount=Decimal("1234.5"), external_ref="ref-1", category="Food")
    )

    fetched = store.get_transaction(USER, entry.id)

    assert fetched == entry
    assert fetched.date == date(2024, 3, 5)
    assert fetched.amount == Decimal("1234.50")
    assert store.get_transaction("someone-else", entry.id) is None


def test_expense_amounts_after_is_strict_and_scoped(store):
    store.insert_transaction(USER, candidate(date=date(2024, 3, 5), description="a"))
    store.insert_transaction(USER, candidate(date=date(2024, 3, 6), description="b"))
    store.insert_transaction(USER, candidate(date=date(2024, 3, 7), description="c", type="income"))
    store.insert_transaction(USER, candidate(date=date(2024, 3, 7), description="d", bank_name="X"))

    amounts = store.expense_amounts_after(USER, HDFC_BANK, date(2024, 3, 5))

    assert amounts == [Decimal("450.00")]


def test_statement_lookup_matches_processed_hash_only(store):
    stmt = store.create_statement(
        USER, file_name="a.csv", file_type="csv", file_size=10, file_hash="h" * 64
    )
    lookup = {"file_hash": "h" * 64, "file_name": "a.csv", "file_size": 10}

    assert not stmt.processed
    assert store.find_processed_statement(USER, **lookup) is None

    store.mark_statement_processed(USER, stmt.id)

    assert store.find_processed_statement(USER, **lookup).id == stmt.id
    assert store.find_processed_statement("someone-else", **lookup) is None


def test_pending_statement_is_reused_for_the_same_hash(store):
    args = {"file_name": "a.csv", "file_type": "csv", "file_size": 10, "file_hash": "p" * 64}
    first = store.create_statement(USER, **args)

    assert store.create_statement(USER, **args).id == first.id
    assert store.create_statement("someone-else", **args).id != first.id

    store.mark_statement_processed(USER, first.id)
    assert store.create_statement(USER, **args).id != first.id


def test_mark_unknown_statement_raises(store):
    with pytest.raises(KeyError):
        store.mark_statement_processed(USER, 404)


def test_legacy_statement_matches_by_name_and_size(sqlite_engine, sql_store):
    factory = make_session_factory(sqlite_engine)
    with factory.begin() as session:
        session.add(
            LedgerStatement(
                user_id=USER, file_name="old.pdf", file_type="pdf", file_size=42, processed=True
            )
        )

    found = sql_store.find_processed_statement(
        USER, file_hash="0" * 64, file_name="old.pdf", file_size=42
    )
    assert found is not None and found.file_hash is None
    assert (
        sql_store.find_processed_statement(
            USER, file_hash="0" * 64, file_name="old.pdf", file_size=43
        )
        is None
    )


def test_unreachable_database_is_a_lookup_failure(tmp_path: Path):
    engine = create_db_engine(
        database_url=f"sqlite+pysqlite:///{tmp_path / 'missing' / 'nope.db'}"
    )
    store = SqlTransactionStore(make_session_factory(engine))

    with pytest.raises(LookupFailure):
        store.find_same_source(USER, candidate())


def test_missing_schema_is_a_lookup_failure(tmp_path: Path):
    engine = create_db_engine(database_url=f"sqlite+pysqlite:///{tmp_path / 'empty.db'}")
    with engine.begin() as conn:
        conn.execute(text("SELECT 1"))
    store = SqlTransactionStore(make_session_factory(engine))

    with pytest.raises(LookupFailure):
        store.list_checkpoints(USER)
