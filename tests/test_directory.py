"""Directory lookups and delete rules for employees and tasks."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from planner.common.constants import AbsenceType, Slot
from planner.common.exceptions import ConflictError, NotFoundException
from planner.directory.models import Employee, Task
from planner.directory.service import DirectoryService
from planner.leave.models import AbsenceRecord
from planner.leave.service import LeaveService
from planner.schedule.models import Assignment
from planner.schedule.placement import PlacementEngine
from planner.schedule.schemas import TaskPlacement
from tests.conftest import seed_employee, seed_task

MONDAY = date(2025, 1, 6)


async def _count(db, model, *criteria) -> int:
    return await db.scalar(select(func.count()).select_from(model).where(*criteria))


class TestLookups:

    async def test_active_employee_found(self, db, employee_id):
        employee = await DirectoryService.get_employee(db, employee_id)
        assert employee.display_name == "Test Designer"

    async def test_inactive_employee_hidden(self, db):
        inactive = await seed_employee(db, is_active=False)
        with pytest.raises(NotFoundException) as exc_info:
            await DirectoryService.get_employee(db, inactive)
        assert exc_info.value.status_code == 404

    async def test_inactive_task_hidden(self, db):
        inactive = await seed_task(db, is_active=False)
        with pytest.raises(NotFoundException):
            await DirectoryService.get_task(db, inactive)

    async def test_task_with_estimate(self, db):
        task_id = await seed_task(db, title="Brand refresh", estimated_hours=Decimal("3.5"))
        task = await DirectoryService.get_task(db, task_id)
        assert task.title == "Brand refresh"


class TestDeleteEmployee:

    async def test_refused_with_active_assignments(self, db, employee_id, task_id):
        await PlacementEngine.place(
            db,
            TaskPlacement(
                employee_id=employee_id, task_id=task_id,
                assigned_date=MONDAY, slot=Slot.morning, column_span=1,
            ),
        )

        with pytest.raises(ConflictError):
            await DirectoryService.delete_employee(db, employee_id)

    async def test_allowed_after_unschedule(self, db, employee_id, task_id):
        assignment = await PlacementEngine.place(
            db,
            TaskPlacement(
                employee_id=employee_id, task_id=task_id,
                assigned_date=MONDAY, slot=Slot.morning, column_span=1,
            ),
        )
        await PlacementEngine.unschedule(db, assignment.id)
        await LeaveService.request_leave(
            db, employee_id, AbsenceType.sick, date(2025, 1, 7), date(2025, 1, 7),
        )

        await DirectoryService.delete_employee(db, employee_id)

        assert await _count(db, Employee, Employee.id == employee_id) == 0
        assert await _count(db, Assignment, Assignment.employee_id == employee_id) == 0
        assert await _count(db, AbsenceRecord, AbsenceRecord.employee_id == employee_id) == 0

    async def test_unknown_employee(self, db):
        with pytest.raises(NotFoundException):
            await DirectoryService.delete_employee(db, uuid.uuid4())


class TestDeleteTask:

    async def test_cascades_to_assignments(self, db, employee_id, task_id):
        for slot in Slot:
            await PlacementEngine.place(
                db,
                TaskPlacement(
                    employee_id=employee_id, task_id=task_id,
                    assigned_date=MONDAY, slot=slot, column_span=2,
                ),
            )

        removed = await DirectoryService.delete_task(db, task_id)

        assert removed == 2
        assert await _count(db, Task, Task.id == task_id) == 0
        assert await _count(db, Assignment, Assignment.task_id == task_id) == 0

    async def test_frees_the_grid(self, db, employee_id, task_id):
        await PlacementEngine.place(
            db,
            TaskPlacement(
                employee_id=employee_id, task_id=task_id,
                assigned_date=MONDAY, slot=Slot.morning, column_span=4,
            ),
        )
        await DirectoryService.delete_task(db, task_id)

        other = await seed_task(db, title="Icon set")
        assignment = await PlacementEngine.place(
            db,
            TaskPlacement(
                employee_id=employee_id, task_id=other,
                assigned_date=MONDAY, slot=Slot.morning, column_span=4,
            ),
        )
        assert assignment.column_start == 0

    async def test_unknown_task(self, db):
        with pytest.raises(NotFoundException):
            await DirectoryService.delete_task(db, uuid.uuid4())
