"""Availability resolver — read-only view of the planning grid.

Answers three questions for the placement engine and the API:
  - which columns of a slot are taken, and by what
  - whether an approved absence blocks a slot outright
  - what a date range looks like, slot by slot, for one employee

Absences reach the grid two ways. Calendar-placed blocks are Assignments
(``kind = absence``) and occupy columns like tasks. Approved leave requests
are AbsenceRecords without an assignment link and block whole slots over
their date range.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from planner.common.constants import AbsenceStatus, AssignmentKind, Slot
from planner.leave.models import AbsenceRecord
from planner.schedule.models import Assignment
from planner.schedule.units import free_columns, iter_business_days, occupied_columns


# ═════════════════════════════════════════════════════════════════════
# Result types
# ═════════════════════════════════════════════════════════════════════


@dataclass
class SlotState:
    slot: Slot
    assignments: list[Assignment] = field(default_factory=list)
    blocked: bool = False

    @property
    def taken(self) -> set[int]:
        return occupied_columns(a.unit for a in self.assignments)

    @property
    def free(self) -> list[int]:
        if self.blocked:
            return []
        return free_columns(self.taken)


@dataclass
class DayAvailability:
    day: date
    slots: dict[Slot, SlotState]


# ═════════════════════════════════════════════════════════════════════
# Coverage rules
# ═════════════════════════════════════════════════════════════════════


def record_covers(record: AbsenceRecord, day: date, slot: Slot) -> bool:
    """True when ``record`` takes ``slot`` of ``day`` off.

    The first day loses its morning only when the record starts in the
    morning; the last day loses its afternoon only when the record does not
    end in the morning.
    """
    if not record.start_date <= day <= record.end_date:
        return False
    if record.slot is not None:
        return record.slot == slot
    if day == record.start_date and not record.is_start_am and slot == Slot.morning:
        return False
    if day == record.end_date and record.is_end_am and slot == Slot.afternoon:
        return False
    return True


# ═════════════════════════════════════════════════════════════════════
# AvailabilityResolver
# ═════════════════════════════════════════════════════════════════════


class AvailabilityResolver:
    """Read-only queries over assignments and approved absences."""

    @staticmethod
    async def _active_assignments(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
    ) -> Sequence[Assignment]:
        result = await db.execute(
            select(Assignment)
            .where(
                Assignment.employee_id == employee_id,
                Assignment.assigned_date >= start,
                Assignment.assigned_date <= end,
                Assignment.is_active.is_(True),
            )
            .order_by(Assignment.assigned_date, Assignment.slot, Assignment.column_start)
        )
        return result.scalars().all()

    @staticmethod
    async def _blocking_records(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
    ) -> Sequence[AbsenceRecord]:
        """Approved leave not represented by a calendar assignment."""
        result = await db.execute(
            select(AbsenceRecord).where(
                AbsenceRecord.employee_id == employee_id,
                AbsenceRecord.status == AbsenceStatus.approved,
                AbsenceRecord.assignment_id.is_(None),
                AbsenceRecord.start_date <= end,
                AbsenceRecord.end_date >= start,
            )
        )
        return result.scalars().all()

    # ── Occupancy ───────────────────────────────────────────────────

    @staticmethod
    async def get_occupied(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
    ) -> dict[Slot, list[Assignment]]:
        """Active assignments of both kinds for one day, partitioned by slot."""
        occupied: dict[Slot, list[Assignment]] = {s: [] for s in Slot}
        for assignment in await AvailabilityResolver._active_assignments(
            db, employee_id, day, day
        ):
            occupied[assignment.slot].append(assignment)
        return occupied

    @staticmethod
    async def slot_occupancy(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
        slot: Slot,
        exclude_assignment_id: Optional[uuid.UUID] = None,
    ) -> list[Assignment]:
        stmt = (
            select(Assignment)
            .where(
                Assignment.employee_id == employee_id,
                Assignment.assigned_date == day,
                Assignment.slot == slot,
                Assignment.is_active.is_(True),
            )
            .order_by(Assignment.column_start)
        )
        if exclude_assignment_id is not None:
            stmt = stmt.where(Assignment.id != exclude_assignment_id)
        result = await db.execute(stmt)
        return list(result.scalars().all())

    # ── Blocking ────────────────────────────────────────────────────

    @staticmethod
    async def is_date_fully_blocked(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
        slot: Slot,
        exclude_assignment_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """True when an approved absence removes every column of ``slot``."""
        for record in await AvailabilityResolver._blocking_records(db, employee_id, day, day):
            if record_covers(record, day, slot):
                return True

        siblings = await AvailabilityResolver.slot_occupancy(
            db, employee_id, day, slot, exclude_assignment_id
        )
        return any(a.is_full_slot_absence for a in siblings)

    @staticmethod
    async def has_task_occupancy(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
        slot: Slot,
        exclude_assignment_id: Optional[uuid.UUID] = None,
    ) -> bool:
        siblings = await AvailabilityResolver.slot_occupancy(
            db, employee_id, day, slot, exclude_assignment_id
        )
        return any(a.kind == AssignmentKind.task for a in siblings)

    # ── Range view ──────────────────────────────────────────────────

    @staticmethod
    async def get_availability(
        db: AsyncSession,
        employee_id: uuid.UUID,
        start: date,
        end: date,
    ) -> list[DayAvailability]:
        """Business-day grid for ``[start, end]`` with per-slot free columns."""
        assignments = await AvailabilityResolver._active_assignments(
            db, employee_id, start, end
        )
        records = await AvailabilityResolver._blocking_records(db, employee_id, start, end)

        days: list[DayAvailability] = []
        for day in iter_business_days(start, end):
            slots = {s: SlotState(slot=s) for s in Slot}
            for assignment in assignments:
                if assignment.assigned_date == day:
                    slots[assignment.slot].assignments.append(assignment)
            for state in slots.values():
                state.blocked = any(
                    a.is_full_slot_absence for a in state.assignments
                ) or any(record_covers(r, day, state.slot) for r in records)
            days.append(DayAvailability(day=day, slots=slots))
        return days
