from __future__ import annotations

from dataclasses import replace
from datetime import date
from decimal import Decimal

from sqlalchemy import text

from ledger_recon.cleanup import clear_duplicates, find_duplicate_ids
from ledger_recon.models import LedgerEntry
from tests.helpers.ledger import OTHER_USER, USER, candidate

BASE = LedgerEntry(
    id=1,
    user_id=USER,
    date=date(2024, 3, 5),
    description="Swiggy",
    amount=Decimal("450.00"),
    type="expense",
    account_type="BankAccount",
    bank_name="HDFC",
    source="statement",
)


class _LegacyStore:
    """Rows written before the same-source constraint existed."""

    def __init__(self, rows: list[LedgerEntry]) -> None:
        self.rows = list(rows)

    def list_transactions(self, user_id, *, statement_id=None):
        return [r for r in self.rows if r.user_id == user_id]

    def delete_transactions(self, user_id, ids):
        before = len(self.rows)
        self.rows = [r for r in self.rows if not (r.user_id == user_id and r.id in set(ids))]
        return before - len(self.rows)


def _legacy_rows() -> list[LedgerEntry]:
    return [
        BASE,
        replace(BASE, id=4),
        replace(BASE, id=2),
        # Cross-source copy: a different key, kept.
        replace(BASE, id=3, source="email"),
        replace(BASE, id=5, description="Zomato"),
        replace(BASE, id=6, description="Zomato"),
        replace(BASE, id=7, user_id=OTHER_USER),
    ]


def test_find_duplicate_ids_keeps_lowest_id_per_key():
    rows = [r for r in _legacy_rows() if r.user_id == USER]
    assert find_duplicate_ids(rows) == [2, 4, 6]


def test_clear_duplicates_removes_extras():
    store = _LegacyStore(_legacy_rows())

    result = clear_duplicates(store, user_id=USER)

    assert result.duplicate_ids == [2, 4, 6]
    assert result.removed == 3
    assert result.message == "Removed 3 duplicate transactions"
    assert sorted(r.id for r in store.rows) == [1, 3, 5, 7]


def test_dry_run_deletes_nothing():
    store = _LegacyStore(_legacy_rows())

    result = clear_duplicates(store, user_id=USER, dry_run=True)

    assert result.removed == 0
    assert result.message == "Found 3 duplicate transactions"
    assert len(store.rows) == 7


def test_clean_ledger_is_untouched(store):
    store.insert_transaction(USER, candidate(description="A"))
    store.insert_transaction(USER, candidate(description="B"))

    result = clear_duplicates(store, user_id=USER)

    assert result.duplicate_ids == []
    assert len(store.list_transactions(USER)) == 2


def test_clear_duplicates_on_sql_rows_without_constraint(sqlite_engine, sql_store):
    # Simulate a database migrated from before the uniqueness constraint.
    with sqlite_engine.begin() as conn:
        conn.execute(text("ALTER TABLE ledger_transactions RENAME TO ledger_transactions_old"))
        conn.execute(
            text(
                "CREATE TABLE ledger_transactions AS SELECT * FROM ledger_transactions_old WHERE 0"
            )
        )
        conn.execute(text("DROP TABLE ledger_transactions_old"))
        for tx_id in (1, 2, 3):
            conn.execute(
                text(
                    "INSERT INTO ledger_transactions (id, user_id, date, description, amount, "
                    "type, account_type, bank_name, source, created_at) VALUES "
                    "(:id, :u, '2024-03-05', 'Swiggy', 450, 'expense', 'BankAccount', 'HDFC', "
                    "'statement', '2024-03-06 00:00:00')"
                ),
                {"id": tx_id, "u": USER},
            )

    result = clear_duplicates(sql_store, user_id=USER)

    assert result.duplicate_ids == [2, 3]
    assert result.removed == 2
    assert [t.id for t in sql_store.list_transactions(USER)] == [1]