"""Absence record state machine.

    draft ──submit──▶ pending ──approve──▶ approved
      │                  └─────reject───▶ rejected
      └──auto-approve (sick / other)───▶ approved
"""

from __future__ import annotations

from planner.common.constants import AUTO_APPROVED_TYPES, AbsenceStatus, AbsenceType
from planner.common.exceptions import InvalidTransitionError

TRANSITIONS: dict[AbsenceStatus, frozenset[AbsenceStatus]] = {
    AbsenceStatus.draft: frozenset({AbsenceStatus.pending, AbsenceStatus.approved}),
    AbsenceStatus.pending: frozenset({AbsenceStatus.approved, AbsenceStatus.rejected}),
    AbsenceStatus.approved: frozenset(),
    AbsenceStatus.rejected: frozenset(),
}


def can_transition(current: AbsenceStatus, target: AbsenceStatus) -> bool:
    return target in TRANSITIONS[current]


def transition(current: AbsenceStatus, target: AbsenceStatus) -> AbsenceStatus:
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    return target


def initial_status(absence_type: AbsenceType) -> AbsenceStatus:
    """State a freshly submitted record lands in."""
    if absence_type in AUTO_APPROVED_TYPES:
        return transition(AbsenceStatus.draft, AbsenceStatus.approved)
    return transition(AbsenceStatus.draft, AbsenceStatus.pending)
