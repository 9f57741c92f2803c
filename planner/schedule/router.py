"""Schedule router — place, resize, move and unschedule; grid views."""

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from planner.common.constants import Slot
from planner.common.exceptions import ValidationException
from planner.common.rate_limit import limiter
from planner.config import settings
from planner.database import get_db
from planner.directory.service import DirectoryService
from planner.schedule.availability import AvailabilityResolver, SlotState
from planner.schedule.placement import PlacementEngine
from planner.schedule.schemas import (
    AssignmentMove,
    AssignmentOut,
    AssignmentResize,
    AvailabilityOut,
    BulkPlacementRequest,
    DayAvailabilityOut,
    DayOccupancyOut,
    PlacementRequest,
    PositionOut,
    SlotOut,
)

router = APIRouter(prefix="", tags=["schedule"])

MAX_RANGE_DAYS = 366


def _slot_out(state: SlotState) -> SlotOut:
    return SlotOut(
        slot=state.slot,
        blocked=state.blocked,
        free_columns=state.free,
        assignments=[AssignmentOut.model_validate(a) for a in state.assignments],
    )


# ── POST /assignments ───────────────────────────────────────────────

@router.post(
    "/assignments",
    response_model=AssignmentOut,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def place_assignment(
    request: Request,
    body: PlacementRequest,
    db: AsyncSession = Depends(get_db),
):
    """Place a task or absence block. Omit preferred_column for first fit."""
    return await PlacementEngine.place(db, body)


# ── POST /assignments/bulk ──────────────────────────────────────────

@router.post(
    "/assignments/bulk",
    response_model=list[AssignmentOut],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def place_assignments_bulk(
    request: Request,
    body: BulkPlacementRequest,
    db: AsyncSession = Depends(get_db),
):
    """Place several items in order. Any failure rejects the whole batch."""
    return await PlacementEngine.place_many(db, body.assignments)


# ── PATCH /assignments/{id}/resize ──────────────────────────────────

@router.patch("/assignments/{assignment_id}/resize", response_model=AssignmentOut)
async def resize_assignment(
    assignment_id: uuid.UUID,
    body: AssignmentResize,
    db: AsyncSession = Depends(get_db),
):
    return await PlacementEngine.resize(
        db, assignment_id, body.column_span, body.column_start,
    )


# ── PATCH /assignments/{id}/move ────────────────────────────────────

@router.patch("/assignments/{assignment_id}/move", response_model=AssignmentOut)
async def move_assignment(
    assignment_id: uuid.UUID,
    body: AssignmentMove,
    db: AsyncSession = Depends(get_db),
):
    """Move to another date / slot. The source is untouched if the target is full."""
    return await PlacementEngine.move(
        db, assignment_id, body.assigned_date, body.slot, body.column_start,
    )


# ── DELETE /assignments/{id} ────────────────────────────────────────

@router.delete("/assignments/{assignment_id}", response_model=AssignmentOut)
async def unschedule_assignment(
    assignment_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Unschedule an assignment. Linked absence records are removed."""
    return await PlacementEngine.unschedule(db, assignment_id)


# ── GET /occupancy ──────────────────────────────────────────────────

@router.get("/occupancy", response_model=DayOccupancyOut)
async def day_occupancy(
    employee_id: uuid.UUID = Query(...),
    day: date = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Occupied units for one employee and date, per half-day slot."""
    await DirectoryService.get_employee(db, employee_id)
    occupied = await AvailabilityResolver.get_occupied(db, employee_id, day)
    slots = []
    for slot in Slot:
        state = SlotState(
            slot=slot,
            assignments=occupied[slot],
            blocked=await AvailabilityResolver.is_date_fully_blocked(db, employee_id, day, slot),
        )
        slots.append(_slot_out(state))
    return DayOccupancyOut(employee_id=employee_id, day=day, slots=slots)


# ── GET /position ───────────────────────────────────────────────────

@router.get("/position", response_model=PositionOut)
async def find_position(
    employee_id: uuid.UUID = Query(...),
    day: date = Query(...),
    slot: Slot = Query(...),
    column_span: int = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """First free column that can take the span, or null."""
    await DirectoryService.get_employee(db, employee_id)
    column_start = await PlacementEngine.find_position(db, employee_id, day, slot, column_span)
    return PositionOut(
        employee_id=employee_id,
        day=day,
        slot=slot,
        column_span=column_span,
        column_start=column_start,
    )


# ── GET /availability ───────────────────────────────────────────────

@router.get("/availability", response_model=AvailabilityOut)
async def availability(
    employee_id: uuid.UUID = Query(...),
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Working-day grid: free, blocked and occupied columns per slot."""
    if end_date < start_date:
        raise ValidationException({"end_date": ["end_date must not be before start_date."]})
    if (end_date - start_date).days >= MAX_RANGE_DAYS:
        raise ValidationException(
            {"end_date": [f"Range is limited to {MAX_RANGE_DAYS} days."]}
        )

    await DirectoryService.get_employee(db, employee_id)
    days = await AvailabilityResolver.get_availability(db, employee_id, start_date, end_date)
    return AvailabilityOut(
        employee_id=employee_id,
        start_date=start_date,
        end_date=end_date,
        days=[
            DayAvailabilityOut(
                day=d.day,
                slots=[_slot_out(d.slots[s]) for s in Slot],
            )
            for d in days
        ],
    )
