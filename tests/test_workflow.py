"""Absence record state machine."""

from __future__ import annotations

import pytest

from planner.common.constants import AbsenceStatus, AbsenceType
from planner.common.exceptions import InvalidTransitionError
from planner.leave.workflow import can_transition, initial_status, transition


class TestTransitions:

    def test_annual_enters_pending(self):
        assert initial_status(AbsenceType.annual) == AbsenceStatus.pending

    @pytest.mark.parametrize("absence_type", [AbsenceType.sick, AbsenceType.other])
    def test_sick_and_other_skip_pending(self, absence_type):
        assert initial_status(absence_type) == AbsenceStatus.approved

    def test_pending_can_be_decided(self):
        assert can_transition(AbsenceStatus.pending, AbsenceStatus.approved)
        assert can_transition(AbsenceStatus.pending, AbsenceStatus.rejected)

    @pytest.mark.parametrize(
        "current,target",
        [
            (AbsenceStatus.approved, AbsenceStatus.rejected),
            (AbsenceStatus.rejected, AbsenceStatus.approved),
            (AbsenceStatus.approved, AbsenceStatus.pending),
            (AbsenceStatus.draft, AbsenceStatus.rejected),
        ],
    )
    def test_terminal_and_skipping_moves_rejected(self, current, target):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(current, target)
        assert exc_info.value.status_code == 409
