"""Availability resolver — occupancy partition, blocking rules and the
range view."""

from __future__ import annotations

import uuid
from datetime import date

import pytest

from planner.common.constants import AbsenceStatus, AbsenceType, AssignmentKind, Slot
from planner.leave.models import AbsenceRecord
from planner.leave.service import LeaveService
from planner.schedule.availability import AvailabilityResolver, record_covers
from planner.schedule.placement import PlacementEngine
from planner.schedule.schemas import AbsencePlacement, TaskPlacement

MONDAY = date(2025, 1, 6)
WEDNESDAY = date(2025, 1, 8)


def _record(start: date, end: date, *, is_start_am: bool = True, is_end_am: bool = False,
            slot: Slot | None = None) -> AbsenceRecord:
    return AbsenceRecord(
        employee_id=uuid.uuid4(),
        absence_type=AbsenceType.annual,
        start_date=start,
        end_date=end,
        is_start_am=is_start_am,
        is_end_am=is_end_am,
        slot=slot,
        status=AbsenceStatus.approved,
    )


class TestRecordCovers:

    def test_full_range_covers_both_halves(self):
        record = _record(MONDAY, WEDNESDAY)
        for day in (MONDAY, date(2025, 1, 7), WEDNESDAY):
            assert record_covers(record, day, Slot.morning)
            assert record_covers(record, day, Slot.afternoon)

    def test_afternoon_start_frees_first_morning(self):
        record = _record(MONDAY, WEDNESDAY, is_start_am=False)
        assert not record_covers(record, MONDAY, Slot.morning)
        assert record_covers(record, MONDAY, Slot.afternoon)

    def test_morning_end_frees_last_afternoon(self):
        record = _record(MONDAY, WEDNESDAY, is_end_am=True)
        assert record_covers(record, WEDNESDAY, Slot.morning)
        assert not record_covers(record, WEDNESDAY, Slot.afternoon)

    def test_outside_range(self):
        record = _record(MONDAY, WEDNESDAY)
        assert not record_covers(record, date(2025, 1, 9), Slot.morning)

    def test_slot_pinned_record(self):
        record = _record(MONDAY, MONDAY, slot=Slot.afternoon)
        assert record_covers(record, MONDAY, Slot.afternoon)
        assert not record_covers(record, MONDAY, Slot.morning)


class TestOccupancy:

    async def test_partitioned_by_slot(self, db, employee_id, task_id):
        await PlacementEngine.place(
            db,
            TaskPlacement(
                employee_id=employee_id, task_id=task_id,
                assigned_date=MONDAY, slot=Slot.morning, column_span=2,
            ),
        )
        await PlacementEngine.place(
            db,
            AbsencePlacement(
                employee_id=employee_id, absence_type=AbsenceType.other,
                assigned_date=MONDAY, slot=Slot.afternoon, column_span=1,
            ),
        )

        occupied = await AvailabilityResolver.get_occupied(db, employee_id, MONDAY)

        assert [a.kind for a in occupied[Slot.morning]] == [AssignmentKind.task]
        assert [a.kind for a in occupied[Slot.afternoon]] == [AssignmentKind.absence]

    async def test_empty_day(self, db, employee_id):
        occupied = await AvailabilityResolver.get_occupied(db, employee_id, MONDAY)
        assert occupied == {Slot.morning: [], Slot.afternoon: []}

    async def test_unscheduled_assignment_not_counted(self, db, employee_id, task_id):
        assignment = await PlacementEngine.place(
            db,
            TaskPlacement(
                employee_id=employee_id, task_id=task_id,
                assigned_date=MONDAY, slot=Slot.morning, column_span=4,
            ),
        )
        await PlacementEngine.unschedule(db, assignment.id)

        occupied = await AvailabilityResolver.get_occupied(db, employee_id, MONDAY)
        assert occupied[Slot.morning] == []


class TestBlocking:

    async def test_full_calendar_absence_blocks(self, db, employee_id):
        await PlacementEngine.place(
            db,
            AbsencePlacement(
                employee_id=employee_id, absence_type=AbsenceType.sick,
                assigned_date=MONDAY, slot=Slot.morning,
            ),
        )

        assert await AvailabilityResolver.is_date_fully_blocked(
            db, employee_id, MONDAY, Slot.morning,
        )
        assert not await AvailabilityResolver.is_date_fully_blocked(
            db, employee_id, MONDAY, Slot.afternoon,
        )

    async def test_partial_calendar_absence_does_not_block(self, db, employee_id):
        await PlacementEngine.place(
            db,
            AbsencePlacement(
                employee_id=employee_id, absence_type=AbsenceType.sick,
                assigned_date=MONDAY, slot=Slot.morning, column_span=3,
            ),
        )

        assert not await AvailabilityResolver.is_date_fully_blocked(
            db, employee_id, MONDAY, Slot.morning,
        )

    async def test_excluded_assignment_ignored(self, db, employee_id):
        assignment = await PlacementEngine.place(
            db,
            AbsencePlacement(
                employee_id=employee_id, absence_type=AbsenceType.sick,
                assigned_date=MONDAY, slot=Slot.morning,
            ),
        )

        assert not await AvailabilityResolver.is_date_fully_blocked(
            db, employee_id, MONDAY, Slot.morning, exclude_assignment_id=assignment.id,
        )

    async def test_approved_request_blocks_range(self, db, employee_id):
        await LeaveService.request_leave(
            db, employee_id, AbsenceType.sick, MONDAY, WEDNESDAY, is_end_am=True,
        )

        assert await AvailabilityResolver.is_date_fully_blocked(
            db, employee_id, date(2025, 1, 7), Slot.afternoon,
        )
        assert await AvailabilityResolver.is_date_fully_blocked(
            db, employee_id, WEDNESDAY, Slot.morning,
        )
        assert not await AvailabilityResolver.is_date_fully_blocked(
            db, employee_id, WEDNESDAY, Slot.afternoon,
        )

    async def test_pending_request_does_not_block(self, db, employee_id):
        await LeaveService.request_leave(
            db, employee_id, AbsenceType.annual, MONDAY, MONDAY,
        )

        assert not await AvailabilityResolver.is_date_fully_blocked(
            db, employee_id, MONDAY, Slot.morning,
        )

    async def test_task_occupancy(self, db, employee_id, task_id):
        assert not await AvailabilityResolver.has_task_occupancy(
            db, employee_id, MONDAY, Slot.morning,
        )
        await PlacementEngine.place(
            db,
            TaskPlacement(
                employee_id=employee_id, task_id=task_id,
                assigned_date=MONDAY, slot=Slot.morning, column_span=1,
            ),
        )
        assert await AvailabilityResolver.has_task_occupancy(
            db, employee_id, MONDAY, Slot.morning,
        )


class TestRangeView:

    async def test_weekends_skipped(self, db, employee_id):
        # Fri 2025-01-10 .. Mon 2025-01-13
        days = await AvailabilityResolver.get_availability(
            db, employee_id, date(2025, 1, 10), date(2025, 1, 13),
        )
        assert [d.day for d in days] == [date(2025, 1, 10), date(2025, 1, 13)]

    async def test_free_columns_per_slot(self, db, employee_id, task_id):
        await PlacementEngine.place(
            db,
            TaskPlacement(
                employee_id=employee_id, task_id=task_id,
                assigned_date=MONDAY, slot=Slot.morning, column_span=2, preferred_column=1,
            ),
        )
        await LeaveService.request_leave(
            db, employee_id, AbsenceType.other, WEDNESDAY, WEDNESDAY,
            is_start_am=False, is_end_am=False,
        )

        days = await AvailabilityResolver.get_availability(db, employee_id, MONDAY, WEDNESDAY)
        by_day = {d.day: d for d in days}

        assert by_day[MONDAY].slots[Slot.morning].free == [0, 3]
        assert by_day[MONDAY].slots[Slot.afternoon].free == [0, 1, 2, 3]
        assert by_day[WEDNESDAY].slots[Slot.morning].blocked is False
        assert by_day[WEDNESDAY].slots[Slot.afternoon].blocked is True
        assert by_day[WEDNESDAY].slots[Slot.afternoon].free == []

    @pytest.mark.parametrize("slot", list(Slot))
    async def test_blocked_slot_has_no_free_columns(self, db, employee_id, slot):
        await PlacementEngine.place(
            db,
            AbsencePlacement(
                employee_id=employee_id, absence_type=AbsenceType.sick,
                assigned_date=MONDAY, slot=slot,
            ),
        )

        days = await AvailabilityResolver.get_availability(db, employee_id, MONDAY, MONDAY)

        assert days[0].slots[slot].blocked is True
        assert days[0].slots[slot].free == []
