from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ledger_recon.errors import UnsupportedStatementFile
from ledger_recon.ingest.email import ingest_email_transactions
from ledger_recon.ingest.statement import compute_file_hash, file_type_of, ingest_statement
from ledger_recon.models import StatementMonth
from ledger_recon.projection import project_latest
from tests.helpers.ledger import HDFC_BANK, USER, FlakyStore

CONTENT = b"date,description,amount\n2024-03-05,Swiggy,450.00\n"


def _row(day: str, description: str, amount: str, type_: str = "debit") -> dict:
    return {
        "date": day,
        "description": description,
        "amount": amount,
        "type": type_,
        "accountType": "Bank Account",
        "bankName": "HDFC",
    }


TRANSACTIONS = [
    _row("2024-03-01", "Rent", "15000"),
    _row("2024-03-05", "Swiggy", "450.00"),
    _row("2024-03-28", "Salary", "50000", "credit"),
    _row("2024-03-28", "ATM", "2000"),
    _row("not a date", "Broken", "1"),
]

CHECKPOINTS = [
    {
        "account_type": "BankAccount",
        "bank_name": "HDFC",
        "statement_month": "Mar 2024",
        "closing_balance": "10000",
    }
]


def _ingest(store, settings, **overrides):
    kwargs = {
        "user_id": USER,
        "file_name": "hdfc_march.csv",
        "content": CONTENT,
        "transactions": TRANSACTIONS,
        "checkpoints": CHECKPOINTS,
        "settings": settings,
    }
    kwargs.update(overrides)
    return ingest_statement(store, **kwargs)


def test_statement_ingest_records_transactions_and_checkpoint(store, settings):
    result = _ingest(store, settings)

    assert not result.duplicate_file
    assert result.statement.processed
    assert result.statement.file_hash == compute_file_hash(CONTENT)
    assert result.batch.inserted == 4
    assert [r.position for r in result.rejected] == [4]
    assert result.metadata.bank_name == "HDFC"
    assert result.metadata.account_type == "BankAccount"
    assert (result.metadata.start, result.metadata.end) == (date(2024, 3, 1), date(2024, 3, 28))

    rows = store.list_transactions(USER, statement_id=result.statement.id)
    assert len(rows) == 4
    assert {r.source for r in rows} == {"statement"}

    (cp,) = result.checkpoints
    assert cp.period == StatementMonth(2024, 3)
    # Latest-dated transaction of the account, highest id on ties.
    assert cp.last_transaction_id == max(r.id for r in rows if r.date == date(2024, 3, 28))


def test_reuploading_the_same_file_is_a_duplicate(store, settings):
    first = _ingest(store, settings)
    second = _ingest(store, settings, file_name="renamed.csv")

    assert second.duplicate_file
    assert second.statement.id == first.statement.id
    assert second.batch is None
    assert second.metadata.start == date(2024, 3, 1)
    assert len(store.list_transactions(USER)) == 4


def test_overlapping_statement_skips_known_rows(store, settings):
    _ingest(store, settings)
    overlapping = [
        _row("2024-03-28", "ATM", "2000"),
        _row("2024-04-03", "Zomato", "300"),
    ]

    result = _ingest(
        store,
        settings,
        file_name="hdfc_overlap.csv",
        content=CONTENT + b"2024-04-03,Zomato,300\n",
        transactions=overlapping,
        checkpoints=[],
    )

    assert result.duplicates_skipped == 1
    assert result.batch.inserted == 1


def test_email_rows_before_the_statement_are_not_double_counted(store, settings):
    email = ingest_email_transactions(
        store,
        user_id=USER,
        rows=[
            {
                "date": "2024-03-05T09:00:00Z",
                "description": "Swiggy",
                "amount": 450,
                "type": "debit",
                "account_type": "bank_account",
                "bank_name": "HDFC",
                "gmail_message_id": "abc123",
            }
        ],
        settings=settings,
    )
    assert email.batch.inserted == 1

    result = _ingest(store, settings)

    assert result.batch.duplicates_cross_source == 1
    assert result.batch.inserted == 3


def test_projection_after_statement_and_new_expenses(store, settings):
    _ingest(store, settings)
    ingest_email_transactions(
        store,
        user_id=USER,
        rows=[
            {"date": "2024-04-02", "description": "Swiggy", "amount": 500, "type": "debit",
             "account_type": "BankAccount", "bank_name": "HDFC"},
            {"date": "2024-04-10", "description": "Rent", "amount": 1500, "type": "debit",
             "account_type": "BankAccount", "bank_name": "HDFC"},
        ],
        settings=settings,
    )

    report = project_latest(store, user_id=USER, settings=settings)

    assert report.get(HDFC_BANK).balance == Decimal("8000.00")


def test_unsupported_file_type_is_rejected(store, settings):
    with pytest.raises(UnsupportedStatementFile):
        _ingest(store, settings, file_name="statement.docx")
    assert store.list_transactions(USER) == []


def test_bare_month_label_is_resolved_at_ingestion(store, settings):
    result = _ingest(
        store,
        settings,
        checkpoints=[{**CHECKPOINTS[0], "statement_month": "March"}],
        today=date(2024, 4, 2),
    )
    assert result.checkpoints[0].period == StatementMonth(2024, 3)


def test_bad_checkpoints_become_warnings(store, settings):
    result = _ingest(
        store,
        settings,
        checkpoints=[
            {**CHECKPOINTS[0], "statement_month": "Someday"},
            CHECKPOINTS[0],
            CHECKPOINTS[0],
        ],
    )

    assert len(result.checkpoints) == 1
    assert len(result.warnings) == 2
    assert "already recorded" in result.warnings[1]


def test_failed_candidates_leave_statement_unprocessed(memory_store, settings):
    flaky = FlakyStore(
        memory_store,
        {"find_same_source": -1},
        predicate=lambda user_id, c: c.description == "Rent",
    )

    first = _ingest(flaky, settings)
    assert not first.statement.processed
    assert first.batch.failed == 1
    assert "left unprocessed" in first.warnings[-1]

    retry = _ingest(memory_store, settings, checkpoints=[])
    assert not retry.duplicate_file
    assert retry.statement.id == first.statement.id
    assert retry.batch.inserted == 1
    assert retry.batch.duplicates_same_source == 3
    assert retry.statement.processed


def test_checkpoint_waits_for_the_accounts_failed_rows(memory_store, settings):
    flaky = FlakyStore(
        memory_store,
        {"find_same_source": -1},
        predicate=lambda user_id, c: c.date == date(2024, 3, 28),
    )

    first = _ingest(flaky, settings)
    assert first.batch.failed == 2
    assert first.checkpoints == []
    assert any("deferred" in w for w in first.warnings)
    assert memory_store.list_checkpoints(USER) == []

    rerun = _ingest(memory_store, settings)
    assert rerun.batch.inserted == 2
    [cp] = rerun.checkpoints
    last = {t.id: t for t in memory_store.list_transactions(USER)}[cp.last_transaction_id]
    assert last.date == date(2024, 3, 28)

    # The closing balance already covers the 28 Mar ATM withdrawal.
    report = project_latest(memory_store, user_id=USER, settings=settings)
    assert report.get(HDFC_BANK).balance == Decimal("10000.00")


def test_file_type_of():
    assert file_type_of("Statement.PDF") == "pdf"
    assert file_type_of("noext") is None
