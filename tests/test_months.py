from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ledger_recon.errors import UnparseableCheckpointLabel
from ledger_recon.models import AccountKey, BalanceCheckpoint, StatementMonth
from ledger_recon.months import (
    latest_per_account,
    order_checkpoints,
    order_month_labels,
    parse_statement_month,
)
from tests.helpers.ledger import HDFC_BANK, HDFC_CARD, ICICI_BANK, checkpoint


@pytest.mark.parametrize(
    "label, expected",
    [
        ("May 2023", StatementMonth(2023, 5)),
        ("may 2023", StatementMonth(2023, 5)),
        ("Sep 2023", StatementMonth(2023, 9)),
        ("Sept 2023", StatementMonth(2023, 9)),
        ("September, 2023", StatementMonth(2023, 9)),
        ("  DEC 2021 ", StatementMonth(2021, 12)),
        ("2024-02", StatementMonth(2024, 2)),
    ],
)
def test_parse_statement_month_accepts_common_labels(label, expected):
    assert parse_statement_month(label) == expected


def test_bare_month_takes_year_of_today():
    assert parse_statement_month("May", today=date(2025, 1, 3)) == StatementMonth(2025, 5)
    # Same label, different reference year: a different period.
    assert parse_statement_month("May", today=date(2026, 1, 3)) == StatementMonth(2026, 5)


def test_bare_month_rejected_when_year_required():
    with pytest.raises(UnparseableCheckpointLabel) as ei:
        parse_statement_month("May", require_year=True)
    assert ei.value.reason == "year is required"


@pytest.mark.parametrize(
    "label", [None, "", "   ", ",", " , ", "Foo 2023", "May 23", "2024-13", "May 1 2023"]
)
def test_unparseable_labels_raise(label):
    with pytest.raises(UnparseableCheckpointLabel):
        parse_statement_month(label)


def test_unparseable_label_is_a_value_error():
    with pytest.raises(ValueError):
        parse_statement_month("Smarch 2024")


def test_order_month_labels_most_recent_first():
    ordered, warnings = order_month_labels(["Jan 2024", "Dec 2023", "Feb 2024"])
    assert ordered == ["Feb 2024", "Jan 2024", "Dec 2023"]
    assert warnings == []


def test_order_month_labels_excludes_unparseable_labels():
    ordered, warnings = order_month_labels(["Jan 2024", "garbage", "Mar 2023"])
    assert ordered == ["Jan 2024", "Mar 2023"]
    assert [w.label for w in warnings] == ["garbage"]


def test_order_checkpoints_breaks_ties_by_account():
    cps = [
        checkpoint(ICICI_BANK, 2024, 1, "100"),
        checkpoint(HDFC_CARD, 2024, 1, "50"),
        checkpoint(HDFC_BANK, 2023, 12, "10"),
        checkpoint(HDFC_BANK, 2024, 1, "200"),
    ]
    result = order_checkpoints(cps)
    assert [(cp.account, cp.period) for cp in result.ordered] == [
        (HDFC_BANK, StatementMonth(2024, 1)),
        (ICICI_BANK, StatementMonth(2024, 1)),
        (HDFC_CARD, StatementMonth(2024, 1)),
        (HDFC_BANK, StatementMonth(2023, 12)),
    ]
    assert result.warnings == []


def test_order_checkpoints_resolves_legacy_labels_and_reports_bad_ones():
    legacy = BalanceCheckpoint(
        account=HDFC_BANK, statement_label="Mar", period=None, closing_balance=Decimal("1")
    )
    broken = BalanceCheckpoint(
        account=ICICI_BANK, statement_label="Q1 totals", period=None, closing_balance=Decimal("2")
    )
    punctuation = BalanceCheckpoint(
        account=HDFC_CARD, statement_label=",", period=None, closing_balance=Decimal("4")
    )
    dated = checkpoint(HDFC_BANK, 2023, 11, "3")

    result = order_checkpoints([broken, dated, punctuation, legacy], today=date(2024, 6, 1))

    assert [cp.period for cp in result.ordered] == [
        StatementMonth(2024, 3),
        StatementMonth(2023, 11),
    ]
    assert [w.label for w in result.warnings] == ["Q1 totals", ","]


def test_latest_per_account_picks_first_seen_in_ordered_input():
    cps = order_checkpoints(
        [
            checkpoint(HDFC_BANK, 2024, 1, "1"),
            checkpoint(HDFC_BANK, 2024, 3, "3"),
            checkpoint(ICICI_BANK, 2023, 7, "7"),
        ]
    ).ordered

    latest = latest_per_account(cps)

    assert set(latest) == {HDFC_BANK, ICICI_BANK}
    assert latest[HDFC_BANK].period == StatementMonth(2024, 3)
    assert latest[AccountKey("BankAccount", "ICICI")].period == StatementMonth(2023, 7)
