"""Schedule ORM model: Assignment (one task or absence block on the grid)."""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from planner.common.constants import COLUMNS_PER_SLOT, AbsenceType, AssignmentKind, Slot
from planner.database import Base
from planner.schedule.units import CalendarUnit

if TYPE_CHECKING:
    from planner.directory.models import Task


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Assignment(Base):
    __tablename__ = "assignments"
    __table_args__ = (
        # One placement per starting column among live rows
        sa.Index(
            "uq_assignment_active_cell",
            "employee_id",
            "assigned_date",
            "slot",
            "column_start",
            unique=True,
            postgresql_where=sa.text("is_active"),
            sqlite_where=sa.text("is_active = 1"),
        ),
        sa.Index("idx_assignments_employee_date", "employee_id", "assigned_date"),
        sa.CheckConstraint(
            "column_start >= 0 AND column_span >= 1 AND column_start + column_span <= 4",
            name="ck_assignment_geometry",
        ),
        sa.CheckConstraint(
            "(kind = 'task' AND task_id IS NOT NULL AND absence_type IS NULL) OR "
            "(kind = 'absence' AND task_id IS NULL AND absence_type IS NOT NULL)",
            name="ck_assignment_kind",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    kind: Mapped[AssignmentKind] = mapped_column(
        sa.Enum(AssignmentKind, name="assignment_kind", create_type=False),
        nullable=False,
    )
    task_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("tasks.id", ondelete="CASCADE"),
    )
    absence_type: Mapped[Optional[AbsenceType]] = mapped_column(
        sa.Enum(AbsenceType, name="absence_type", create_type=False),
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("employees.id", ondelete="RESTRICT"),
        nullable=False,
    )

    # ── Grid coordinates ────────────────────────────────────────────
    assigned_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    slot: Mapped[Slot] = mapped_column(
        sa.Enum(Slot, name="half_day_slot", create_type=False), nullable=False,
    )
    column_start: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    column_span: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)

    notes: Mapped[Optional[str]] = mapped_column(sa.Text)
    is_active: Mapped[bool] = mapped_column(
        sa.Boolean, default=True, server_default=sa.text("TRUE"), nullable=False,
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

    task: Mapped[Optional["Task"]] = relationship(back_populates="assignments")

    @property
    def unit(self) -> CalendarUnit:
        return CalendarUnit(
            employee_id=self.employee_id,
            date=self.assigned_date,
            slot=self.slot,
            column_start=self.column_start,
            column_span=self.column_span,
        )

    @property
    def is_full_slot_absence(self) -> bool:
        return self.kind == AssignmentKind.absence and self.column_span == COLUMNS_PER_SLOT
