"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from planner.common.constants import AbsenceStatus, AbsenceType, Slot


# ═════════════════════════════════════════════════════════════════════
# Requests
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Submit a leave request for one employee."""

    employee_id: uuid.UUID
    absence_type: AbsenceType
    start_date: date
    end_date: date
    is_start_am: bool = Field(True, description="False when the first day starts in the afternoon")
    is_end_am: bool = Field(False, description="True when the last day ends at midday")
    reason: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def _check_range(self) -> "LeaveRequestCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.start_date == self.end_date and not self.is_start_am and self.is_end_am:
            raise ValueError("a single-day request cannot start in the afternoon and end in the morning")
        return self


class LeaveDecisionRequest(BaseModel):
    approve: bool
    approver_id: Optional[uuid.UUID] = None
    notes: Optional[str] = Field(None, max_length=2000)


class AllocationUpdate(BaseModel):
    annual_leave_days: Optional[int] = Field(None, ge=0)
    sick_days_allowed: Optional[int] = Field(None, ge=0, description="0 means unlimited")
    other_leave_days_allowed: Optional[int] = Field(None, ge=0)


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class AbsenceRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    employee_id: uuid.UUID
    absence_type: AbsenceType
    start_date: date
    end_date: date
    is_start_am: bool
    is_end_am: bool
    slot: Optional[Slot] = None
    leave_days: float
    hours: float
    status: AbsenceStatus
    reason: Optional[str] = None
    assignment_id: Optional[uuid.UUID] = None
    approved_by: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    created_at: Optional[datetime] = None


class LeaveBalanceOut(BaseModel):
    """Derived balance for one absence type in one year (in days)."""

    absence_type: AbsenceType
    year: int
    total: float
    used: float
    pending: float
    remaining: Optional[float] = Field(None, description="total - used; null when unlimited")
    available: Optional[float] = Field(None, description="remaining - pending; null when unlimited")
    unlimited: bool = False


class AbsenceClearOut(BaseModel):
    """Result of clearing every absence on one day."""

    day: date
    employee_id: Optional[uuid.UUID] = None
    records_deleted: int = 0
    blocks_cleared: int = 0


class AllocationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: uuid.UUID
    year: int
    annual_leave_days: int
    sick_days_allowed: int
    other_leave_days_allowed: int
