"""Calendar unit model: the addressable cell of the planning grid.

A cell is ``(employee, date, slot, column_start, column_span)``. Each
half-day slot holds ``COLUMNS_PER_SLOT`` quarter columns, and the column
ranges occupied inside one ``(employee, date, slot)`` never intersect.

Everything here is pure and synchronous; the resolver and the placement
engine feed it rows loaded from the database. A requested range is
checked unit against unit with ``overlaps``; first fit works on the set
of occupied columns, which is the same test folded over all siblings.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Iterator, Optional

from planner.common.constants import (
    COLUMNS_PER_SLOT,
    MAX_COLUMN_SPAN,
    MIN_COLUMN_SPAN,
    WEEKEND_DAYS,
    Slot,
)
from planner.common.exceptions import InvalidSpanError


@dataclass(frozen=True)
class CalendarUnit:
    employee_id: uuid.UUID
    date: date
    slot: Slot
    column_start: int
    column_span: int

    @property
    def column_end(self) -> int:
        """Exclusive end column."""
        return self.column_start + self.column_span

    @property
    def columns(self) -> range:
        return range(self.column_start, self.column_end)

    @property
    def slot_key(self) -> tuple[uuid.UUID, date, Slot]:
        return (self.employee_id, self.date, self.slot)


def check_geometry(column_start: Optional[int], column_span: int) -> None:
    """Raise InvalidSpanError unless the range fits inside one slot.

    ``column_start`` may be ``None`` when the engine is free to choose it;
    only the span is checked then.
    """
    if not MIN_COLUMN_SPAN <= column_span <= MAX_COLUMN_SPAN:
        raise InvalidSpanError(column_start, column_span)
    if column_start is None:
        return
    if not 0 <= column_start < COLUMNS_PER_SLOT:
        raise InvalidSpanError(column_start, column_span)
    if column_start + column_span > COLUMNS_PER_SLOT:
        raise InvalidSpanError(column_start, column_span)


def validate_unit(unit: CalendarUnit) -> CalendarUnit:
    check_geometry(unit.column_start, unit.column_span)
    return unit


def overlaps(a: CalendarUnit, b: CalendarUnit) -> bool:
    """True when both units sit in the same slot and share a column."""
    if a.slot_key != b.slot_key:
        return False
    return a.column_start < b.column_end and b.column_start < a.column_end


def occupied_columns(units: Iterable[CalendarUnit]) -> set[int]:
    taken: set[int] = set()
    for unit in units:
        taken.update(unit.columns)
    return taken


def fits(taken: set[int], column_start: int, column_span: int) -> bool:
    """True when ``[column_start, column_start + span)`` is inside the slot and free."""
    if column_start < 0 or column_start + column_span > COLUMNS_PER_SLOT:
        return False
    return not any(c in taken for c in range(column_start, column_start + column_span))


def first_fit(taken: set[int], column_span: int) -> Optional[int]:
    """Lowest column start with ``column_span`` free adjacent columns, or None."""
    for start in range(0, COLUMNS_PER_SLOT - column_span + 1):
        if fits(taken, start, column_span):
            return start
    return None


def free_columns(taken: set[int]) -> list[int]:
    return [c for c in range(COLUMNS_PER_SLOT) if c not in taken]


# ── Dates ───────────────────────────────────────────────────────────

def is_business_day(day: date) -> bool:
    return day.weekday() not in WEEKEND_DAYS


def iter_days(start: date, end: date) -> Iterator[date]:
    """Every date in ``[start, end]``, inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def iter_business_days(start: date, end: date) -> Iterator[date]:
    return (d for d in iter_days(start, end) if is_business_day(d))
