"""Directory lookups used by the scheduling engine.

Employees and tasks are administered elsewhere; the planner only needs to
know that they exist and are active, and must keep calendar rows consistent
when one of them is removed.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from planner.common.exceptions import ConflictError, NotFoundException
from planner.directory.models import Employee, Task
from planner.leave.models import AbsenceAllocation, AbsenceRecord
from planner.schedule.models import Assignment

logger = logging.getLogger(__name__)


class DirectoryService:
    """Lookups and delete rules for employees and tasks."""

    @staticmethod
    async def get_employee(db: AsyncSession, employee_id: uuid.UUID) -> Employee:
        """Return an active employee or raise NotFoundException."""
        employee = await db.get(Employee, employee_id)
        if employee is None or not employee.is_active:
            raise NotFoundException("Employee", employee_id)
        return employee

    @staticmethod
    async def get_task(db: AsyncSession, task_id: uuid.UUID) -> Task:
        """Return an active task or raise NotFoundException."""
        task = await db.get(Task, task_id)
        if task is None or not task.is_active:
            raise NotFoundException("Task", task_id)
        return task

    @staticmethod
    async def delete_employee(db: AsyncSession, employee_id: uuid.UUID) -> None:
        """Hard-delete an employee.

        Refused while the employee still holds active assignments. Their
        calendar history, absence records and allocations go with them.
        """
        employee = await db.get(Employee, employee_id)
        if employee is None:
            raise NotFoundException("Employee", employee_id)

        active = await db.scalar(
            select(func.count())
            .select_from(Assignment)
            .where(
                Assignment.employee_id == employee_id,
                Assignment.is_active.is_(True),
            )
        )
        if active:
            raise ConflictError(
                f"Employee '{employee_id}' still has {active} active assignment(s). "
                "Unschedule them before deleting the employee.",
                errors={"employee_id": [str(employee_id)]},
            )

        await db.execute(delete(AbsenceRecord).where(AbsenceRecord.employee_id == employee_id))
        await db.execute(delete(Assignment).where(Assignment.employee_id == employee_id))
        await db.execute(
            delete(AbsenceAllocation).where(AbsenceAllocation.employee_id == employee_id)
        )
        await db.delete(employee)
        await db.commit()
        logger.info("employee deleted", extra={"employee_id": str(employee_id)})

    @staticmethod
    async def delete_task(db: AsyncSession, task_id: uuid.UUID) -> int:
        """Hard-delete a task together with every assignment that references it.

        Returns the number of assignments removed.
        """
        result = await db.execute(
            select(Task)
            .options(selectinload(Task.assignments))
            .where(Task.id == task_id)
        )
        task = result.scalar_one_or_none()
        if task is None:
            raise NotFoundException("Task", task_id)

        removed = len(task.assignments)
        await db.delete(task)
        await db.commit()
        logger.info(
            "task deleted",
            extra={"task_id": str(task_id), "assignments_removed": removed},
        )
        return removed
