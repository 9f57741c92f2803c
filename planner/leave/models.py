"""Leave ORM models: AbsenceAllocation, AbsenceRecord."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from planner.common.constants import AbsenceStatus, AbsenceType, Slot
from planner.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AbsenceAllocation(Base):
    """Yearly leave quota for one employee."""

    __tablename__ = "absence_allocations"
    __table_args__ = (
        sa.UniqueConstraint("employee_id", "year", name="uq_absence_allocation"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    year: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    annual_leave_days: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    sick_days_allowed: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    other_leave_days_allowed: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=sa.func.now(),
    )

    def allowance_for(self, absence_type: AbsenceType) -> int:
        if absence_type == AbsenceType.annual:
            return self.annual_leave_days
        if absence_type == AbsenceType.sick:
            return self.sick_days_allowed
        return self.other_leave_days_allowed


class AbsenceRecord(Base):
    """A date range of absence for one employee.

    ``slot`` is set only for records placed directly on the calendar; those
    cover a single half-day and are linked to their Assignment.
    """

    __tablename__ = "absence_records"
    __table_args__ = (
        sa.Index("idx_absence_records_employee_status", "employee_id", "status"),
        sa.Index("idx_absence_records_range", "start_date", "end_date"),
        sa.CheckConstraint("end_date >= start_date", name="ck_absence_record_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"), nullable=False,
    )
    absence_type: Mapped[AbsenceType] = mapped_column(
        sa.Enum(AbsenceType, name="absence_type", create_type=False), nullable=False,
    )

    # ── Range ───────────────────────────────────────────────────────
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_start_am: Mapped[bool] = mapped_column(sa.Boolean, default=True, nullable=False)
    is_end_am: Mapped[bool] = mapped_column(sa.Boolean, default=False, nullable=False)
    slot: Mapped[Optional[Slot]] = mapped_column(
        sa.Enum(Slot, name="half_day_slot", create_type=False),
    )

    # ── Amount ──────────────────────────────────────────────────────
    leave_days: Mapped[Decimal] = mapped_column(sa.Numeric(6, 3), nullable=False)
    hours: Mapped[Decimal] = mapped_column(sa.Numeric(6, 2), nullable=False)

    # ── Workflow ────────────────────────────────────────────────────
    status: Mapped[AbsenceStatus] = mapped_column(
        sa.Enum(AbsenceStatus, name="absence_status", create_type=False),
        nullable=False,
        default=AbsenceStatus.draft,
    )
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    approval_notes: Mapped[Optional[str]] = mapped_column(sa.Text)

    assignment_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("assignments.id", ondelete="SET NULL"),
    )

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=_utcnow, server_default=sa.func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=sa.func.now(),
    )

    @property
    def year(self) -> int:
        return self.start_date.year
