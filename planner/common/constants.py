"""Enums and constants for the planner — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum


# ── Calendar grid ───────────────────────────────────────────────────

class Slot(str, enum.Enum):
    morning = "morning"
    afternoon = "afternoon"


class AssignmentKind(str, enum.Enum):
    task = "task"
    absence = "absence"


# A half-day slot is split into four quarter columns.
COLUMNS_PER_SLOT = 4
MIN_COLUMN_SPAN = 1
MAX_COLUMN_SPAN = COLUMNS_PER_SLOT

# datetime.date.weekday(): Saturday, Sunday
WEEKEND_DAYS = frozenset({5, 6})


# ── Leave ───────────────────────────────────────────────────────────

class AbsenceType(str, enum.Enum):
    annual = "annual"
    sick = "sick"
    other = "other"


class AbsenceStatus(str, enum.Enum):
    draft = "draft"
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


# Absence types that skip the approval queue.
AUTO_APPROVED_TYPES = frozenset({AbsenceType.sick, AbsenceType.other})

# Record states that count against the calendar and the overlap check.
ACTIVE_ABSENCE_STATUSES = (AbsenceStatus.pending, AbsenceStatus.approved)
