"""Statement-month parsing and chronological ordering of checkpoints.

Labels arrive from extraction as "May 2023", "Sep 2023", "May, 2023",
"2023-05" or, in legacy data, a bare "May". A bare month resolves to the
calendar year of ``today`` at parse time, so the same label resolves
differently after a year boundary. Persisted checkpoints therefore always
store the resolved ``(year, month)``; bare labels are accepted only on the
way in.

Ordering is most-recent-first by ``(year, month)``. Labels that cannot be
parsed are excluded from the ordering and surfaced as warnings; they are
never sorted as oldest or newest.
"""

from __future__ import annotations

import calendar
import dataclasses
import re
from collections.abc import Iterable, Sequence
from datetime import date
from typing import NamedTuple

from .errors import UnparseableCheckpointLabel
from .logging_setup import get_logger
from .models import AccountKey, BalanceCheckpoint, StatementMonth

_logger = get_logger("ledger_recon.months")

_MONTH_NAMES: dict[str, int] = {}
for _i in range(1, 13):
    _MONTH_NAMES[calendar.month_name[_i].lower()] = _i
    _MONTH_NAMES[calendar.month_abbr[_i].lower()] = _i
_MONTH_NAMES["sept"] = 9

_ISO_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")
_YEAR_RE = re.compile(r"^\d{4}$")


def parse_statement_month(
    label: str | None,
    *,
    today: date | None = None,
    require_year: bool = False,
) -> StatementMonth:
    """Parse a statement-month label into a :class:`StatementMonth`.

    Month names are matched case-insensitively (full or three-letter). A bare
    month name takes the year of ``today`` (default: the current date) unless
    ``require_year`` is set, in which case it is rejected.

    Raises
    ------
    UnparseableCheckpointLabel
        When the label is empty or not in a recognized format.
    """

    if label is None or not label.strip():
        raise UnparseableCheckpointLabel(label, "empty label")

    text = label.strip()
    iso = _ISO_MONTH_RE.match(text)
    if iso:
        month = int(iso.group(2))
        if not 1 <= month <= 12:
            raise UnparseableCheckpointLabel(label, "month out of range")
        return StatementMonth(int(iso.group(1)), month)

    parts = text.replace(",", " ").split()
    if not parts:
        raise UnparseableCheckpointLabel(label)
    month_no = _MONTH_NAMES.get(parts[0].lower().rstrip("."))
    if month_no is None:
        raise UnparseableCheckpointLabel(label, f"unknown month name {parts[0]!r}")

    if len(parts) == 2:
        if not _YEAR_RE.match(parts[1]):
            raise UnparseableCheckpointLabel(label, f"invalid year {parts[1]!r}")
        return StatementMonth(int(parts[1]), month_no)
    if len(parts) == 1:
        if require_year:
            raise UnparseableCheckpointLabel(label, "year is required")
        return StatementMonth((today or date.today()).year, month_no)
    raise UnparseableCheckpointLabel(label)


def _descending_key(period: StatementMonth) -> tuple[int, int]:
    return (-period.year, -period.month)


class OrderedCheckpoints(NamedTuple):
    """Checkpoints ordered most-recent-first plus the ones that were excluded."""

    ordered: list[BalanceCheckpoint]
    """Checkpoints with a resolved ``period``, most recent first."""

    warnings: list[UnparseableCheckpointLabel]
    """Data-quality warnings for checkpoints whose label could not be parsed."""


def order_checkpoints(
    checkpoints: Iterable[BalanceCheckpoint],
    *,
    today: date | None = None,
) -> OrderedCheckpoints:
    """Order checkpoints most-recent-first.

    A checkpoint without a stored ``period`` has its label parsed (legacy
    bare months resolve against ``today``). Ties within a period are broken by
    ``(account_type, bank_name)`` and then by checkpoint id so the result is
    deterministic.
    """

    resolved: list[BalanceCheckpoint] = []
    warnings: list[UnparseableCheckpointLabel] = []
    for cp in checkpoints:
        if cp.period is not None:
            resolved.append(cp)
            continue
        try:
            period = parse_statement_month(cp.statement_label, today=today)
        except UnparseableCheckpointLabel as e:
            _logger.warning(
                "months:unparseable_label checkpoint_id=%s account=%s/%s label=%r",
                cp.id,
                cp.account.account_type,
                cp.account.bank_name,
                cp.statement_label,
            )
            warnings.append(e)
            continue
        resolved.append(dataclasses.replace(cp, period=period))

    resolved.sort(
        key=lambda cp: (
            _descending_key(cp.period),  # type: ignore[arg-type]
            cp.account,
            cp.id if cp.id is not None else -1,
        )
    )
    return OrderedCheckpoints(ordered=resolved, warnings=warnings)


def order_month_labels(
    labels: Sequence[str],
    *,
    today: date | None = None,
) -> tuple[list[str], list[UnparseableCheckpointLabel]]:
    """Order raw labels most-recent-first; unparseable labels are excluded.

    Labels resolving to the same period keep their input order.
    """

    keyed: list[tuple[StatementMonth, int, str]] = []
    warnings: list[UnparseableCheckpointLabel] = []
    for pos, label in enumerate(labels):
        try:
            keyed.append((parse_statement_month(label, today=today), pos, label))
        except UnparseableCheckpointLabel as e:
            warnings.append(e)
    keyed.sort(key=lambda t: (_descending_key(t[0]), t[1]))
    return [label for _, _, label in keyed], warnings


def latest_per_account(
    ordered: Iterable[BalanceCheckpoint],
) -> dict[AccountKey, BalanceCheckpoint]:
    """Pick the most recent checkpoint per account from a most-recent-first sequence."""

    latest: dict[AccountKey, BalanceCheckpoint] = {}
    for cp in ordered:
        latest.setdefault(cp.account, cp)
    return latest


__all__ = [
    "parse_statement_month",
    "order_checkpoints",
    "order_month_labels",
    "latest_per_account",
    "OrderedCheckpoints",
]
