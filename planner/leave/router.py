"""Leave router — requests, decisions, records, balances, allocations."""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from planner.common.constants import AbsenceStatus, AbsenceType
from planner.common.rate_limit import limiter
from planner.config import settings
from planner.database import get_db
from planner.leave.schemas import (
    AbsenceClearOut,
    AbsenceRecordOut,
    AllocationOut,
    AllocationUpdate,
    LeaveBalanceOut,
    LeaveDecisionRequest,
    LeaveRequestCreate,
)
from planner.leave.service import LeaveService

router = APIRouter(prefix="", tags=["leave"])


# ── POST /requests ──────────────────────────────────────────────────

@router.post(
    "/requests",
    response_model=AbsenceRecordOut,
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(settings.RATE_LIMIT_DEFAULT)
async def request_leave(
    request: Request,
    body: LeaveRequestCreate,
    db: AsyncSession = Depends(get_db),
):
    """Request leave. Annual leave waits for a decision; sick and other are approved at once."""
    return await LeaveService.request_leave(
        db,
        body.employee_id,
        body.absence_type,
        body.start_date,
        body.end_date,
        is_start_am=body.is_start_am,
        is_end_am=body.is_end_am,
        reason=body.reason,
    )


# ── PUT /requests/{id}/decision ─────────────────────────────────────

@router.put("/requests/{record_id}/decision", response_model=AbsenceRecordOut)
async def decide_leave(
    record_id: uuid.UUID,
    body: LeaveDecisionRequest,
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject a pending request. Approval re-checks the balance."""
    return await LeaveService.decide_leave(
        db, record_id, body.approve, approver_id=body.approver_id, notes=body.notes,
    )


# ── GET /records ────────────────────────────────────────────────────

@router.get("/records", response_model=list[AbsenceRecordOut])
async def list_records(
    employee_id: Optional[uuid.UUID] = Query(None),
    status: Optional[AbsenceStatus] = Query(None),
    absence_type: Optional[AbsenceType] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.list_records(
        db,
        employee_id=employee_id,
        status=status,
        absence_type=absence_type,
        from_date=from_date,
        to_date=to_date,
    )


# ── DELETE /records/{id} ────────────────────────────────────────────

@router.delete("/records/{record_id}", status_code=204)
async def delete_record(
    record_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Delete an absence record and unschedule its calendar block, if any."""
    await LeaveService.delete_absence(db, record_id)
    return Response(status_code=204)


# ── DELETE /days/{day} ──────────────────────────────────────────────

@router.delete("/days/{day}", response_model=AbsenceClearOut)
async def clear_day(
    day: date,
    employee_id: Optional[uuid.UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Clear a day: delete absence records starting on it and unschedule absence blocks."""
    return await LeaveService.clear_absences_on(db, day, employee_id=employee_id)


# ── GET /balances/{employee_id} ─────────────────────────────────────

@router.get("/balances/{employee_id}", response_model=list[LeaveBalanceOut])
async def balances(
    employee_id: uuid.UUID,
    year: int = Query(..., ge=1900, le=9999),
    db: AsyncSession = Depends(get_db),
):
    """Per-type balance for the year, derived from absence records."""
    return await LeaveService.get_balance(db, employee_id, year)


# ── PUT /allocations/{employee_id}/{year} ───────────────────────────

@router.put("/allocations/{employee_id}/{year}", response_model=AllocationOut)
async def set_allocation(
    employee_id: uuid.UUID,
    year: int,
    body: AllocationUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.set_allocation(
        db,
        employee_id,
        year,
        annual_leave_days=body.annual_leave_days,
        sick_days_allowed=body.sick_days_allowed,
        other_leave_days_allowed=body.other_leave_days_allowed,
    )
