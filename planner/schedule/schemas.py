"""Schedule Pydantic v2 schemas — placements, resize/move, grid views.

Column geometry is deliberately not range-checked here: the placement
engine reports it as ``invalid-span`` so every entry point shares one
error shape.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from planner.common.constants import COLUMNS_PER_SLOT, AbsenceType, AssignmentKind, Slot


# ═════════════════════════════════════════════════════════════════════
# Placement requests
# ═════════════════════════════════════════════════════════════════════


class _PlacementBase(BaseModel):
    employee_id: uuid.UUID
    assigned_date: date
    slot: Slot
    preferred_column: Optional[int] = Field(
        None, description="Leftmost column to occupy; omitted means first fit"
    )
    notes: Optional[str] = Field(None, max_length=2000)


class TaskPlacement(_PlacementBase):
    """Schedule project work."""

    kind: Literal["task"] = "task"
    task_id: uuid.UUID
    column_span: Optional[int] = Field(
        None, description="Columns to occupy; defaults to the task estimate (1-4)"
    )


class AbsencePlacement(_PlacementBase):
    """Block calendar time as an absence; approved on placement."""

    kind: Literal["absence"] = "absence"
    absence_type: AbsenceType
    column_span: int = Field(COLUMNS_PER_SLOT, description="Columns to occupy (1-4)")


PlacementRequest = Annotated[
    Union[TaskPlacement, AbsencePlacement],
    Field(discriminator="kind"),
]


class BulkPlacementRequest(BaseModel):
    """Several placements committed together or not at all."""

    assignments: list[PlacementRequest] = Field(..., min_length=1, max_length=100)


class AssignmentResize(BaseModel):
    column_span: int
    column_start: Optional[int] = None


class AssignmentMove(BaseModel):
    assigned_date: date
    slot: Slot
    column_start: Optional[int] = None


# ═════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════


class AssignmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    kind: AssignmentKind
    task_id: Optional[uuid.UUID] = None
    absence_type: Optional[AbsenceType] = None
    employee_id: uuid.UUID
    assigned_date: date
    slot: Slot
    column_start: int
    column_span: int
    is_active: bool
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SlotOut(BaseModel):
    slot: Slot
    blocked: bool
    free_columns: list[int]
    assignments: list[AssignmentOut]


class DayOccupancyOut(BaseModel):
    employee_id: uuid.UUID
    day: date
    slots: list[SlotOut]


class PositionOut(BaseModel):
    employee_id: uuid.UUID
    day: date
    slot: Slot
    column_span: int
    column_start: Optional[int] = Field(None, description="Null when the slot cannot take the span")


class DayAvailabilityOut(BaseModel):
    day: date
    slots: list[SlotOut]


class AvailabilityOut(BaseModel):
    employee_id: uuid.UUID
    start_date: date
    end_date: date
    days: list[DayAvailabilityOut]
