from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ledger_recon.errors import DuplicateTransaction
from ledger_recon.ingest.batch import AccountLocks, reconcile_batch
from tests.helpers.ledger import USER, FlakyStore, candidate, insert


def _statement_rows():
    return [
        candidate(date=date(2024, 3, 1), description="Rent", amount=Decimal("15000")),
        candidate(date=date(2024, 3, 5), description="Swiggy", amount=Decimal("450.00")),
        candidate(date=date(2024, 3, 9), description="Salary", type="income"),
        candidate(date=date(2024, 3, 9), description="Uber", bank_name="ICICI"),
    ]


def test_fresh_batch_inserts_everything(store, settings):
    report = reconcile_batch(store, user_id=USER, candidates=_statement_rows(), settings=settings)

    assert report.counts() == {
        "inserted": 4,
        "duplicateSameSource": 0,
        "duplicateCrossSource": 0,
        "failed": 0,
        "total": 4,
    }
    assert [o.position for o in report.outcomes] == [0, 1, 2, 3]
    assert len(store.list_transactions(USER)) == 4


def test_rerunning_a_batch_inserts_nothing(store, settings):
    first = reconcile_batch(store, user_id=USER, candidates=_statement_rows(), settings=settings)
    second = reconcile_batch(store, user_id=USER, candidates=_statement_rows(), settings=settings)

    assert second.inserted == 0
    assert second.duplicates_same_source == 4
    # Duplicates point at the rows written by the first run.
    assert [o.transaction_id for o in second.outcomes] == [
        o.transaction_id for o in first.outcomes
    ]
    assert len(store.list_transactions(USER)) == 4


def test_email_first_suppresses_statement_copy(store, settings):
    email_id = insert(store, source="email", amount=Decimal("450"))

    report = reconcile_batch(
        store,
        user_id=USER,
        candidates=[candidate(source="statement", amount=Decimal("450.00"))],
        settings=settings,
    )

    outcome = report.outcomes[0]
    assert outcome.status == "duplicate_cross_source"
    assert outcome.transaction_id == email_id
    assert len(store.list_transactions(USER)) == 1


def test_duplicates_inside_one_batch_insert_once(store, settings):
    rows = [candidate() for _ in range(6)] + [candidate(source="email") for _ in range(3)]

    report = reconcile_batch(store, user_id=USER, candidates=rows, settings=settings)

    assert report.inserted == 1
    assert report.duplicates == 8
    assert len(store.list_transactions(USER)) == 1


def test_lookup_failure_marks_only_that_candidate_failed(memory_store, settings):
    flaky = FlakyStore(
        memory_store,
        {"find_same_source": -1},
        predicate=lambda user_id, c: c.description == "Rent",
    )

    report = reconcile_batch(flaky, user_id=USER, candidates=_statement_rows(), settings=settings)

    failed = [o for o in report.outcomes if o.status == "failed"]
    assert [o.position for o in failed] == [0]
    assert failed[0].attempts == settings.max_attempts
    assert "unavailable" in failed[0].error
    assert report.inserted == 3
    assert {t.description for t in memory_store.list_transactions(USER)} == {
        "Swiggy",
        "Salary",
        "Uber",
    }


def test_transient_lookup_failure_is_retried(memory_store, settings):
    flaky = FlakyStore(memory_store, {"find_cross_source": 1})
    sleeps: list[float] = []

    report = reconcile_batch(
        flaky,
        user_id=USER,
        candidates=[candidate()],
        settings=settings,
        sleep=sleeps.append,
    )

    assert report.outcomes[0].status == "inserted"
    assert report.outcomes[0].attempts == 2
    assert sleeps == [0.0]


def test_failed_candidates_are_picked_up_by_a_rerun(memory_store, settings):
    down = FlakyStore(memory_store, {"find_same_source": -1})
    failed = reconcile_batch(down, user_id=USER, candidates=_statement_rows(), settings=settings)
    assert failed.failed == 4

    rerun = reconcile_batch(
        memory_store, user_id=USER, candidates=_statement_rows(), settings=settings
    )
    assert rerun.inserted == 4


class _RacingStore:
    """Check sees nothing, insert hits the uniqueness constraint (another writer won)."""

    def __init__(self, inner) -> None:
        self._inner = inner
        self._checked = False

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def find_same_source(self, user_id, c):
        if not self._checked:
            self._checked = True
            return None
        return self._inner.find_same_source(user_id, c)

    def insert_transaction(self, user_id, c, *, statement_id=None):
        raise DuplicateTransaction("uq_ledger_tx_same_source_key")


def test_constraint_violation_on_insert_is_a_same_source_duplicate(memory_store, settings):
    winner = insert(memory_store)

    report = reconcile_batch(
        _RacingStore(memory_store), user_id=USER, candidates=[candidate()], settings=settings
    )

    assert report.outcomes[0].status == "duplicate_same_source"
    assert report.outcomes[0].transaction_id == winner


def test_shared_locks_serialize_concurrent_batches(store, settings):
    from concurrent.futures import ThreadPoolExecutor

    locks = AccountLocks()
    rows = [candidate(description=f"Shop {i % 5}") for i in range(20)]

    with ThreadPoolExecutor(max_workers=3) as pool:
        reports = list(
            pool.map(
                lambda _: reconcile_batch(
                    store, user_id=USER, candidates=rows, settings=settings, locks=locks
                ),
                range(3),
            )
        )

    assert sum(r.inserted for r in reports) == 5
    assert len(store.list_transactions(USER)) == 5


def test_positions_must_align(store, settings):
    with pytest.raises(ValueError):
        reconcile_batch(
            store, user_id=USER, candidates=[candidate()], positions=[0, 1], settings=settings
        )


def test_unexpected_errors_propagate(memory_store, settings):
    class Broken:
        def __getattr__(self, name):
            return getattr(memory_store, name)

        def find_same_source(self, user_id, c):
            raise RuntimeError("bug")

    with pytest.raises(RuntimeError):
        reconcile_batch(Broken(), user_id=USER, candidates=[candidate()], settings=settings)
