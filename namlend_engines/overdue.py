"""
Module: namlend_engines.overdue
Responsibility:
    Decide which installments are overdue as of a given date and how many
    days late each one is.

Architecture position:
    Engines -- pure calculation layer. ``as_of`` is always passed in.

Invariants enforced:
    - Only pending/partially_paid entries with balance > 0 and
      due_date < as_of become overdue.
    - Entries already overdue are refreshed, never re-counted.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from namlend_kernel.domain.schedule import ScheduleStatus
from namlend_kernel.domain.values import ZERO
from namlend_engines.tracer import traced_engine

_FLIPPABLE = frozenset({ScheduleStatus.PENDING, ScheduleStatus.PARTIALLY_PAID})


@dataclass(frozen=True)
class OverdueCandidate:
    schedule_id: str
    status: ScheduleStatus
    due_date: date
    balance: Decimal


@dataclass(frozen=True)
class OverdueScan:
    newly_overdue: tuple[str, ...]
    # schedule_id -> days overdue, for every entry that is overdue after the scan
    days_by_schedule: dict[str, int]


def days_overdue(due_date: date, as_of: date) -> int:
    return max((as_of - due_date).days, 0)


def is_past_due(status: ScheduleStatus, balance: Decimal, due_date: date, as_of: date) -> bool:
    return status in _FLIPPABLE and balance > ZERO and due_date < as_of


@traced_engine("overdue", "1.0", fingerprint_fields=("as_of",))
def scan_overdue(*, candidates: Sequence[OverdueCandidate], as_of: date) -> OverdueScan:
    newly: list[str] = []
    days: dict[str, int] = {}
    for c in candidates:
        if is_past_due(c.status, c.balance, c.due_date, as_of):
            newly.append(c.schedule_id)
            days[c.schedule_id] = days_overdue(c.due_date, as_of)
        elif c.status == ScheduleStatus.OVERDUE and c.balance > ZERO:
            days[c.schedule_id] = days_overdue(c.due_date, as_of)
    return OverdueScan(newly_overdue=tuple(newly), days_by_schedule=days)
