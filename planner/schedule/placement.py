"""Placement engine — puts tasks and absence blocks on the grid.

Check order for a placement:
  1. column geometry            → InvalidSpanError (before any read)
  2. employee / task lookup     → NotFoundException
  3. approved absence on slot   → DateBlockedError
  4. full-slot absence vs tasks → CapacityConflictError
  5. requested column range     → CapacityConflictError / SlotFullError
  6. leave request on the slot  → CapacityConflictError (absence blocks)
  7. annual allowance (absence) → BalanceExceededError

Steps 2-7 and the write run inside the consistency guard, so concurrent
writers to the same slot are serialised and a losing writer sees the
winner's row on its own read. Absence blocks also take the employee's
balance key, which orders them against leave requests and decisions.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from planner.common.constants import (
    COLUMNS_PER_SLOT,
    AbsenceStatus,
    AbsenceType,
    AssignmentKind,
    Slot,
)
from planner.common.exceptions import (
    CapacityConflictError,
    DateBlockedError,
    InvalidSpanError,
    NotFoundException,
    SlotFullError,
)
from planner.config import settings
from planner.directory.service import DirectoryService
from planner.leave.models import AbsenceRecord
from planner.leave.service import LeaveService
from planner.schedule.availability import AvailabilityResolver
from planner.schedule.guard import LockKey, balance_key, guard, slot_key
from planner.schedule.models import Assignment
from planner.schedule.schemas import AbsencePlacement, TaskPlacement
from planner.schedule.units import (
    CalendarUnit,
    check_geometry,
    first_fit,
    occupied_columns,
    overlaps,
    validate_unit,
)

logger = logging.getLogger(__name__)


def span_from_estimate(estimated_hours: Optional[Decimal]) -> int:
    """Columns a task takes by default: its estimate in hours, clamped to 1-4."""
    if estimated_hours is None:
        return 1
    return max(1, min(COLUMNS_PER_SLOT, math.ceil(float(estimated_hours))))


def _check_preferred(preferred_column: Optional[int], column_span: Optional[int]) -> None:
    if preferred_column is not None and not 0 <= preferred_column < COLUMNS_PER_SLOT:
        raise InvalidSpanError(preferred_column, column_span)


def _leave_days(hours: int) -> Decimal:
    return Decimal(hours) / Decimal(settings.HOURS_PER_LEAVE_DAY)


# ═════════════════════════════════════════════════════════════════════
# PlacementEngine
# ═════════════════════════════════════════════════════════════════════


class PlacementEngine:
    """Async placement, resize, move and unschedule operations."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _load_assignment(db: AsyncSession, assignment_id: uuid.UUID) -> Assignment:
        """Fresh read of an active assignment."""
        result = await db.execute(
            select(Assignment)
            .where(Assignment.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        assignment = result.scalar_one_or_none()
        if assignment is None or not assignment.is_active:
            raise NotFoundException("Assignment", assignment_id)
        return assignment

    @staticmethod
    async def _linked_records(
        db: AsyncSession, assignment_id: uuid.UUID
    ) -> Sequence[AbsenceRecord]:
        result = await db.execute(
            select(AbsenceRecord).where(AbsenceRecord.assignment_id == assignment_id)
        )
        return result.scalars().all()

    @staticmethod
    def _keys_for(assignment: Assignment) -> list[LockKey]:
        keys = [slot_key(assignment.employee_id, assignment.assigned_date, assignment.slot)]
        if assignment.kind == AssignmentKind.absence:
            keys.append(balance_key(assignment.employee_id, assignment.assigned_date.year))
        return keys

    @staticmethod
    def _keys_for_request(request: TaskPlacement | AbsencePlacement) -> list[LockKey]:
        keys = [slot_key(request.employee_id, request.assigned_date, request.slot)]
        if isinstance(request, AbsencePlacement):
            keys.append(balance_key(request.employee_id, request.assigned_date.year))
        return keys

    @staticmethod
    def _check_request_geometry(request: TaskPlacement | AbsencePlacement) -> None:
        if request.column_span is not None:
            check_geometry(request.preferred_column, request.column_span)
        else:
            _check_preferred(request.preferred_column, request.column_span)

    @staticmethod
    async def _ensure_no_leave_overlap(
        db: AsyncSession,
        employee_id: uuid.UUID,
        absence_type: AbsenceType,
        day: date,
        slot: Slot,
    ) -> None:
        """An absence block may not cover a half-day that a leave request
        already claims."""
        is_morning = slot == Slot.morning
        candidate = AbsenceRecord(
            employee_id=employee_id,
            absence_type=absence_type,
            start_date=day,
            end_date=day,
            is_start_am=is_morning,
            is_end_am=is_morning,
            slot=slot,
        )
        clash = await LeaveService.find_overlap(db, candidate, unlinked_only=True)
        if clash is not None:
            raise CapacityConflictError(
                f"The {slot.value} of {day.isoformat()} is already claimed by a "
                f"{clash.status.value} {clash.absence_type.value} leave request "
                f"({clash.start_date.isoformat()} to {clash.end_date.isoformat()}). "
                "Decide or delete that request first."
            )

    @staticmethod
    def _ensure_unchanged(current: Assignment, day: date, slot: Slot) -> None:
        if current.assigned_date != day or current.slot != slot:
            raise CapacityConflictError(
                f"Assignment '{current.id}' was moved by another change. "
                "Reload the calendar and try again."
            )

    @staticmethod
    def _resolve_column(
        siblings: Sequence[Assignment],
        employee_id: uuid.UUID,
        day: date,
        slot: Slot,
        column_span: int,
        preferred_column: Optional[int],
    ) -> int:
        if preferred_column is not None:
            candidate = validate_unit(
                CalendarUnit(employee_id, day, slot, preferred_column, column_span)
            )
            if any(overlaps(candidate, a.unit) for a in siblings):
                last = preferred_column + column_span - 1
                raise CapacityConflictError(
                    f"Columns {preferred_column}-{last} of the {slot.value} of "
                    f"{day.isoformat()} overlap an existing placement. "
                    "Pick a free column or leave it empty to use the first fit."
                )
            return preferred_column
        start = first_fit(occupied_columns(a.unit for a in siblings), column_span)
        if start is None:
            raise SlotFullError(day, slot.value, column_span)
        return start

    @staticmethod
    async def _check_target(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
        slot: Slot,
        kind: AssignmentKind,
        column_span: int,
        exclude_assignment_id: Optional[uuid.UUID] = None,
    ) -> list[Assignment]:
        """Blocked / exclusivity checks shared by place, resize and move.

        Returns the live siblings in the target slot.
        """
        if await AvailabilityResolver.is_date_fully_blocked(
            db, employee_id, day, slot, exclude_assignment_id
        ):
            raise DateBlockedError(day, slot.value)

        if (
            kind == AssignmentKind.absence
            and column_span == COLUMNS_PER_SLOT
            and await AvailabilityResolver.has_task_occupancy(
                db, employee_id, day, slot, exclude_assignment_id
            )
        ):
            raise CapacityConflictError(
                f"The {slot.value} of {day.isoformat()} already has scheduled tasks. "
                "A full half-day absence needs the slot empty; move the tasks first."
            )
        return await AvailabilityResolver.slot_occupancy(
            db, employee_id, day, slot, exclude_assignment_id
        )

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def find_position(
        db: AsyncSession,
        employee_id: uuid.UUID,
        day: date,
        slot: Slot,
        column_span: int,
    ) -> Optional[int]:
        """Lowest column start that can take ``column_span``, or None."""
        check_geometry(None, column_span)
        if await AvailabilityResolver.is_date_fully_blocked(db, employee_id, day, slot):
            return None
        siblings = await AvailabilityResolver.slot_occupancy(db, employee_id, day, slot)
        return first_fit(occupied_columns(a.unit for a in siblings), column_span)

    # ─────────────────────────────────────────────────────────────────
    # Place
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _place_one(
        db: AsyncSession,
        request: TaskPlacement | AbsencePlacement,
    ) -> Assignment:
        """Validate and write one placement. Caller holds its keys."""
        await DirectoryService.get_employee(db, request.employee_id)

        is_absence = isinstance(request, AbsencePlacement)
        column_span = request.column_span
        if isinstance(request, TaskPlacement):
            task = await DirectoryService.get_task(db, request.task_id)
            if column_span is None:
                column_span = span_from_estimate(task.estimated_hours)
                check_geometry(request.preferred_column, column_span)
            kind = AssignmentKind.task
        else:
            kind = AssignmentKind.absence

        siblings = await PlacementEngine._check_target(
            db, request.employee_id, request.assigned_date, request.slot, kind, column_span,
        )
        column_start = PlacementEngine._resolve_column(
            siblings,
            request.employee_id,
            request.assigned_date,
            request.slot,
            column_span,
            request.preferred_column,
        )

        if is_absence:
            await PlacementEngine._ensure_no_leave_overlap(
                db, request.employee_id, request.absence_type,
                request.assigned_date, request.slot,
            )
            await LeaveService.ensure_within_allowance(
                db,
                request.employee_id,
                request.assigned_date.year,
                request.absence_type,
                Decimal(column_span),
            )

        assignment = Assignment(
            kind=kind,
            task_id=request.task_id if not is_absence else None,
            absence_type=request.absence_type if is_absence else None,
            employee_id=request.employee_id,
            assigned_date=request.assigned_date,
            slot=request.slot,
            column_start=column_start,
            column_span=column_span,
            notes=request.notes,
        )
        db.add(assignment)
        await db.flush()

        if is_absence:
            is_morning = request.slot == Slot.morning
            db.add(
                AbsenceRecord(
                    employee_id=request.employee_id,
                    absence_type=request.absence_type,
                    start_date=request.assigned_date,
                    end_date=request.assigned_date,
                    is_start_am=is_morning,
                    is_end_am=is_morning,
                    slot=request.slot,
                    leave_days=_leave_days(column_span),
                    hours=Decimal(column_span),
                    status=AbsenceStatus.approved,
                    approved_at=datetime.now(timezone.utc),
                    reason=request.notes,
                    assignment_id=assignment.id,
                )
            )
            await db.flush()
        return assignment

    @staticmethod
    def _log_placed(assignment: Assignment, label: str = "assignment placed") -> None:
        logger.info(
            label,
            extra={
                "assignment_id": str(assignment.id),
                "employee_id": str(assignment.employee_id),
                "kind": assignment.kind.value,
                "date": assignment.assigned_date.isoformat(),
                "slot": assignment.slot.value,
                "column_start": assignment.column_start,
                "column_span": assignment.column_span,
            },
        )

    @staticmethod
    async def place(
        db: AsyncSession,
        request: TaskPlacement | AbsencePlacement,
    ) -> Assignment:
        """Put a task or absence block on the grid and commit it."""
        PlacementEngine._check_request_geometry(request)

        async def _place() -> Assignment:
            return await PlacementEngine._place_one(db, request)

        assignment = await guard.run(
            db, PlacementEngine._keys_for_request(request), _place, label="place",
        )
        PlacementEngine._log_placed(assignment)
        return assignment

    @staticmethod
    async def place_many(
        db: AsyncSession,
        requests: Sequence[TaskPlacement | AbsencePlacement],
    ) -> list[Assignment]:
        """Place several items as one unit of work: all of them or none.

        Items are placed in order, so later first-fit items see the columns
        taken by earlier ones.
        """
        for request in requests:
            PlacementEngine._check_request_geometry(request)

        keys: list[LockKey] = []
        for request in requests:
            keys.extend(PlacementEngine._keys_for_request(request))

        async def _place_all() -> list[Assignment]:
            return [await PlacementEngine._place_one(db, r) for r in requests]

        placed = await guard.run(db, keys, _place_all, label="place_many")
        for assignment in placed:
            PlacementEngine._log_placed(assignment)
        logger.info("bulk placement committed", extra={"count": len(placed)})
        return placed

    # ─────────────────────────────────────────────────────────────────
    # Resize
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def resize(
        db: AsyncSession,
        assignment_id: uuid.UUID,
        new_span: int,
        new_column_start: Optional[int] = None,
    ) -> Assignment:
        """Change the width (and optionally the start column) in place."""
        check_geometry(new_column_start, new_span)
        source = await PlacementEngine._load_assignment(db, assignment_id)
        day, slot = source.assigned_date, source.slot

        async def _resize() -> Assignment:
            current = await PlacementEngine._load_assignment(db, assignment_id)
            PlacementEngine._ensure_unchanged(current, day, slot)

            column_start = (
                new_column_start if new_column_start is not None else current.column_start
            )
            check_geometry(column_start, new_span)

            siblings = await PlacementEngine._check_target(
                db, current.employee_id, day, slot, current.kind, new_span,
                exclude_assignment_id=current.id,
            )
            PlacementEngine._resolve_column(
                siblings, current.employee_id, day, slot, new_span, column_start,
            )

            records = await PlacementEngine._linked_records(db, current.id)
            for record in records:
                await LeaveService.ensure_within_allowance(
                    db,
                    record.employee_id,
                    record.year,
                    record.absence_type,
                    Decimal(new_span),
                    exclude_record_id=record.id,
                )
                record.hours = Decimal(new_span)
                record.leave_days = _leave_days(new_span)

            current.column_start = column_start
            current.column_span = new_span
            await db.flush()
            return current

        resized = await guard.run(
            db, PlacementEngine._keys_for(source), _resize, label="resize",
        )
        logger.info(
            "assignment resized",
            extra={
                "assignment_id": str(assignment_id),
                "column_start": resized.column_start,
                "column_span": resized.column_span,
            },
        )
        return resized

    # ─────────────────────────────────────────────────────────────────
    # Move
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def move(
        db: AsyncSession,
        assignment_id: uuid.UUID,
        new_date: date,
        new_slot: Slot,
        new_column_start: Optional[int] = None,
    ) -> Assignment:
        """Relocate an assignment; on any failure the source stays as it was."""
        _check_preferred(new_column_start, None)
        source = await PlacementEngine._load_assignment(db, assignment_id)
        day, slot = source.assigned_date, source.slot
        if new_column_start is not None:
            check_geometry(new_column_start, source.column_span)

        keys = PlacementEngine._keys_for(source)
        keys.append(slot_key(source.employee_id, new_date, new_slot))
        if source.kind == AssignmentKind.absence:
            keys.append(balance_key(source.employee_id, new_date.year))

        async def _move() -> Assignment:
            current = await PlacementEngine._load_assignment(db, assignment_id)
            PlacementEngine._ensure_unchanged(current, day, slot)

            siblings = await PlacementEngine._check_target(
                db, current.employee_id, new_date, new_slot, current.kind, current.column_span,
                exclude_assignment_id=current.id,
            )
            column_start = PlacementEngine._resolve_column(
                siblings, current.employee_id, new_date, new_slot,
                current.column_span, new_column_start,
            )
            if current.kind == AssignmentKind.absence:
                await PlacementEngine._ensure_no_leave_overlap(
                    db, current.employee_id, current.absence_type, new_date, new_slot,
                )

            records = await PlacementEngine._linked_records(db, current.id)
            if new_date.year != day.year:
                for record in records:
                    await LeaveService.ensure_within_allowance(
                        db,
                        record.employee_id,
                        new_date.year,
                        record.absence_type,
                        Decimal(current.column_span),
                        exclude_record_id=record.id,
                    )

            is_morning = new_slot == Slot.morning
            for record in records:
                record.start_date = new_date
                record.end_date = new_date
                record.slot = new_slot
                record.is_start_am = is_morning
                record.is_end_am = is_morning

            current.assigned_date = new_date
            current.slot = new_slot
            current.column_start = column_start
            await db.flush()
            return current

        moved = await guard.run(db, keys, _move, label="move")
        logger.info(
            "assignment moved",
            extra={
                "assignment_id": str(assignment_id),
                "from": f"{day.isoformat()}/{slot.value}",
                "to": f"{new_date.isoformat()}/{new_slot.value}",
                "column_start": moved.column_start,
            },
        )
        return moved

    # ─────────────────────────────────────────────────────────────────
    # Unschedule
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def unschedule(db: AsyncSession, assignment_id: uuid.UUID) -> Assignment:
        """Deactivate an assignment; a linked absence record is removed."""
        source = await PlacementEngine._load_assignment(db, assignment_id)
        day, slot = source.assigned_date, source.slot

        async def _unschedule() -> Assignment:
            current = await PlacementEngine._load_assignment(db, assignment_id)
            PlacementEngine._ensure_unchanged(current, day, slot)
            for record in await PlacementEngine._linked_records(db, current.id):
                await db.delete(record)
            current.is_active = False
            await db.flush()
            return current

        removed = await guard.run(
            db, PlacementEngine._keys_for(source), _unschedule, label="unschedule",
        )
        logger.info("assignment unscheduled", extra={"assignment_id": str(assignment_id)})
        return removed
