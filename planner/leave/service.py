"""Leave ledger — allocations, balances, requests and approvals.

Business logic:
  - Half-day aware day counting with weekend exclusion
  - Balances derived from absence records on every read (never stored)
  - Soft balance check on request, hard check on approval
  - Sick / other leave auto-approved; annual leave waits for a decision
  - Lazy per-year allocation from organisation defaults
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from planner.common.constants import (
    ACTIVE_ABSENCE_STATUSES,
    AbsenceStatus,
    AbsenceType,
    AssignmentKind,
    Slot,
)
from planner.common.exceptions import (
    BalanceExceededError,
    InsufficientBalanceError,
    NotFoundException,
    ValidationException,
)
from planner.config import settings
from planner.directory.service import DirectoryService
from planner.leave.models import AbsenceAllocation, AbsenceRecord
from planner.leave.schemas import AbsenceClearOut, LeaveBalanceOut
from planner.leave.workflow import initial_status, transition
from planner.schedule.availability import record_covers
from planner.schedule.guard import balance_key, guard, slot_key
from planner.schedule.models import Assignment
from planner.schedule.units import is_business_day, iter_business_days

logger = logging.getLogger(__name__)

HALF_DAY = Decimal("0.5")
ZERO = Decimal("0")


def _hours_per_day() -> Decimal:
    return Decimal(settings.HOURS_PER_LEAVE_DAY)


def _as_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


# ═════════════════════════════════════════════════════════════════════
# LeaveService
# ═════════════════════════════════════════════════════════════════════


class LeaveService:
    """Async leave ledger operations."""

    # ─────────────────────────────────────────────────────────────────
    # Day arithmetic
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    def calculate_leave_days(
        start_date: date,
        end_date: date,
        is_start_am: bool = True,
        is_end_am: bool = False,
    ) -> Decimal:
        """Working days requested between ``start_date`` and ``end_date``.

        Weekends are skipped. A first day starting in the afternoon and a
        last day ending in the morning each count half. A single day counts
        in full only when it runs from the morning through the afternoon.
        """
        if end_date < start_date:
            raise ValidationException({"end_date": ["End date must not be before start date."]})

        if start_date == end_date:
            if not is_start_am and is_end_am:
                raise ValidationException(
                    {"is_end_am": ["A single-day absence cannot start in the afternoon "
                                   "and end in the morning."]}
                )
            if not is_business_day(start_date):
                return ZERO
            return Decimal("1") if is_start_am and not is_end_am else HALF_DAY

        total = ZERO
        for day in iter_business_days(start_date, end_date):
            if day == start_date and not is_start_am:
                total += HALF_DAY
            elif day == end_date and is_end_am:
                total += HALF_DAY
            else:
                total += 1
        return total

    # ─────────────────────────────────────────────────────────────────
    # Allocations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _find_allocation(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> Optional[AbsenceAllocation]:
        result = await db.execute(
            select(AbsenceAllocation).where(
                AbsenceAllocation.employee_id == employee_id,
                AbsenceAllocation.year == year,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _insert_default_allocation(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> bool:
        """Insert the defaults row unless one already exists.

        Returns False when another writer created the row first.
        """
        if db.get_bind().dialect.name == "postgresql":
            insert = pg_insert
        else:
            insert = sqlite_insert
        stmt = (
            insert(AbsenceAllocation)
            .values(
                id=uuid.uuid4(),
                employee_id=employee_id,
                year=year,
                annual_leave_days=settings.DEFAULT_ANNUAL_LEAVE_DAYS,
                sick_days_allowed=settings.DEFAULT_SICK_DAYS,
                other_leave_days_allowed=settings.DEFAULT_OTHER_LEAVE_DAYS,
            )
            .on_conflict_do_nothing(index_elements=["employee_id", "year"])
        )
        result = await db.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    async def _get_or_create_allocation(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> AbsenceAllocation:
        """Return the employee's allocation for ``year``, creating it from
        organisation defaults on first use.

        Concurrent first reads race on the insert; the loser keeps the
        winner's row instead of failing.
        """
        allocation = await LeaveService._find_allocation(db, employee_id, year)
        if allocation is not None:
            return allocation

        if await LeaveService._insert_default_allocation(db, employee_id, year):
            logger.info(
                "allocation created from defaults",
                extra={"employee_id": str(employee_id), "year": year},
            )
        return await LeaveService._find_allocation(db, employee_id, year)

    @staticmethod
    async def set_allocation(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        *,
        annual_leave_days: Optional[int] = None,
        sick_days_allowed: Optional[int] = None,
        other_leave_days_allowed: Optional[int] = None,
    ) -> AbsenceAllocation:
        """Create or update the allocation row for ``(employee, year)``."""

        async def _apply() -> AbsenceAllocation:
            await DirectoryService.get_employee(db, employee_id)
            allocation = await LeaveService._get_or_create_allocation(db, employee_id, year)
            if annual_leave_days is not None:
                allocation.annual_leave_days = annual_leave_days
            if sick_days_allowed is not None:
                allocation.sick_days_allowed = sick_days_allowed
            if other_leave_days_allowed is not None:
                allocation.other_leave_days_allowed = other_leave_days_allowed
            await db.flush()
            return allocation

        return await guard.run(
            db, [balance_key(employee_id, year)], _apply, label="set_allocation",
        )

    # ─────────────────────────────────────────────────────────────────
    # Balances
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def _records_in_year(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        statuses: Sequence[AbsenceStatus],
        absence_type: Optional[AbsenceType] = None,
        exclude_record_id: Optional[uuid.UUID] = None,
    ) -> Sequence[AbsenceRecord]:
        stmt = select(AbsenceRecord).where(
            AbsenceRecord.employee_id == employee_id,
            AbsenceRecord.start_date >= date(year, 1, 1),
            AbsenceRecord.start_date <= date(year, 12, 31),
            AbsenceRecord.status.in_(statuses),
        )
        if absence_type is not None:
            stmt = stmt.where(AbsenceRecord.absence_type == absence_type)
        if exclude_record_id is not None:
            stmt = stmt.where(AbsenceRecord.id != exclude_record_id)
        result = await db.execute(stmt)
        return result.scalars().all()

    @staticmethod
    def _days(records: Sequence[AbsenceRecord]) -> Decimal:
        hours = sum((_as_decimal(r.hours) for r in records), ZERO)
        return hours / _hours_per_day()

    @staticmethod
    async def get_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
    ) -> list[LeaveBalanceOut]:
        """Per-type balance for one employee and year.

        ``used`` counts approved records, ``pending`` counts records still
        awaiting a decision. A sick allowance of zero means unlimited.
        """
        await DirectoryService.get_employee(db, employee_id)
        allocation = await LeaveService._get_or_create_allocation(db, employee_id, year)
        records = await LeaveService._records_in_year(
            db, employee_id, year, ACTIVE_ABSENCE_STATUSES,
        )

        balances: list[LeaveBalanceOut] = []
        for absence_type in AbsenceType:
            of_type = [r for r in records if r.absence_type == absence_type]
            used = LeaveService._days([r for r in of_type if r.status == AbsenceStatus.approved])
            pending = LeaveService._days([r for r in of_type if r.status == AbsenceStatus.pending])
            total = Decimal(allocation.allowance_for(absence_type))
            unlimited = absence_type == AbsenceType.sick and total == 0
            remaining = None if unlimited else total - used
            balances.append(
                LeaveBalanceOut(
                    absence_type=absence_type,
                    year=year,
                    total=total,
                    used=used,
                    pending=pending,
                    remaining=remaining,
                    available=None if remaining is None else remaining - pending,
                    unlimited=unlimited,
                )
            )
        return balances

    @staticmethod
    async def get_type_balance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        absence_type: AbsenceType,
    ) -> LeaveBalanceOut:
        balances = await LeaveService.get_balance(db, employee_id, year)
        return next(b for b in balances if b.absence_type == absence_type)

    @staticmethod
    async def ensure_within_allowance(
        db: AsyncSession,
        employee_id: uuid.UUID,
        year: int,
        absence_type: AbsenceType,
        hours: Decimal,
        exclude_record_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Raise BalanceExceededError if booking ``hours`` more of annual
        leave as approved would push ``used`` past the allocation.

        Only annual leave is capped; sick and other leave are not.
        Callers must hold the balance key for ``(employee_id, year)``.
        """
        if absence_type != AbsenceType.annual:
            return
        allocation = await LeaveService._get_or_create_allocation(db, employee_id, year)
        approved = await LeaveService._records_in_year(
            db,
            employee_id,
            year,
            (AbsenceStatus.approved,),
            absence_type=AbsenceType.annual,
            exclude_record_id=exclude_record_id,
        )
        used = LeaveService._days(approved)
        requested = _as_decimal(hours) / _hours_per_day()
        total = Decimal(allocation.annual_leave_days)
        if used + requested > total:
            raise BalanceExceededError(requested.normalize(), (total - used).normalize())

    # ─────────────────────────────────────────────────────────────────
    # Requests
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def find_overlap(
        db: AsyncSession,
        candidate: AbsenceRecord,
        exclude_record_id: Optional[uuid.UUID] = None,
        unlinked_only: bool = False,
    ) -> Optional[AbsenceRecord]:
        """First non-rejected record sharing a half-day with ``candidate``.

        ``unlinked_only`` skips records backed by a calendar block; the
        grid already keeps those apart column by column.
        """
        stmt = select(AbsenceRecord).where(
            AbsenceRecord.employee_id == candidate.employee_id,
            AbsenceRecord.status != AbsenceStatus.rejected,
            AbsenceRecord.start_date <= candidate.end_date,
            AbsenceRecord.end_date >= candidate.start_date,
        )
        if exclude_record_id is not None:
            stmt = stmt.where(AbsenceRecord.id != exclude_record_id)
        if unlinked_only:
            stmt = stmt.where(AbsenceRecord.assignment_id.is_(None))
        result = await db.execute(stmt)
        for existing in result.scalars().all():
            first = max(existing.start_date, candidate.start_date)
            last = min(existing.end_date, candidate.end_date)
            for day in iter_business_days(first, last):
                for slot in Slot:
                    if record_covers(candidate, day, slot) and record_covers(existing, day, slot):
                        return existing
        return None

    @staticmethod
    def _overlap_error(clash: AbsenceRecord) -> ValidationException:
        return ValidationException(
            {"start_date": [
                f"Overlaps existing {clash.absence_type.value} absence "
                f"{clash.start_date.isoformat()} to {clash.end_date.isoformat()} "
                f"({clash.status.value})."
            ]}
        )

    @staticmethod
    async def request_leave(
        db: AsyncSession,
        employee_id: uuid.UUID,
        absence_type: AbsenceType,
        start_date: date,
        end_date: date,
        is_start_am: bool = True,
        is_end_am: bool = False,
        reason: Optional[str] = None,
    ) -> AbsenceRecord:
        """Submit a leave request.

        Annual leave enters the approval queue after a soft balance check
        against ``remaining - pending``; sick and other leave are approved
        on creation.
        """
        leave_days = LeaveService.calculate_leave_days(
            start_date, end_date, is_start_am, is_end_am,
        )
        if leave_days <= 0:
            raise ValidationException(
                {"start_date": ["The requested range contains no working days."]}
            )

        async def _submit() -> AbsenceRecord:
            await DirectoryService.get_employee(db, employee_id)

            record = AbsenceRecord(
                employee_id=employee_id,
                absence_type=absence_type,
                start_date=start_date,
                end_date=end_date,
                is_start_am=is_start_am,
                is_end_am=is_end_am,
                leave_days=leave_days,
                hours=leave_days * _hours_per_day(),
                status=AbsenceStatus.draft,
                reason=reason,
            )

            clash = await LeaveService.find_overlap(db, record)
            if clash is not None:
                raise LeaveService._overlap_error(clash)

            if absence_type == AbsenceType.annual:
                balance = await LeaveService.get_type_balance(
                    db, employee_id, start_date.year, AbsenceType.annual,
                )
                available = Decimal(str(balance.available))
                if leave_days > available:
                    raise InsufficientBalanceError(leave_days, available)

            record.status = initial_status(absence_type)
            if record.status == AbsenceStatus.approved:
                record.approved_at = datetime.now(timezone.utc)

            db.add(record)
            await db.flush()
            return record

        record = await guard.run(
            db,
            [balance_key(employee_id, start_date.year)],
            _submit,
            label="request_leave",
        )
        logger.info(
            "leave requested",
            extra={
                "record_id": str(record.id),
                "employee_id": str(employee_id),
                "absence_type": absence_type.value,
                "leave_days": str(leave_days),
                "status": record.status.value,
            },
        )
        return record

    @staticmethod
    async def _load_record(db: AsyncSession, record_id: uuid.UUID) -> AbsenceRecord:
        result = await db.execute(
            select(AbsenceRecord)
            .where(AbsenceRecord.id == record_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundException("AbsenceRecord", record_id)
        return record

    @staticmethod
    async def decide_leave(
        db: AsyncSession,
        record_id: uuid.UUID,
        approve: bool,
        approver_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> AbsenceRecord:
        """Approve or reject a pending record.

        Approval re-checks overlap and the hard cap under the balance key;
        on failure the record stays pending.
        """
        record = await LeaveService._load_record(db, record_id)
        employee_id, year = record.employee_id, record.year
        target = AbsenceStatus.approved if approve else AbsenceStatus.rejected

        async def _decide() -> AbsenceRecord:
            current = await LeaveService._load_record(db, record_id)
            transition(current.status, target)
            if approve:
                clash = await LeaveService.find_overlap(
                    db, current, exclude_record_id=current.id,
                )
                if clash is not None:
                    raise LeaveService._overlap_error(clash)
                await LeaveService.ensure_within_allowance(
                    db,
                    current.employee_id,
                    current.year,
                    current.absence_type,
                    current.hours,
                    exclude_record_id=current.id,
                )
            current.status = target
            current.approved_by = approver_id
            current.approved_at = datetime.now(timezone.utc)
            current.approval_notes = notes
            await db.flush()
            return current

        decided = await guard.run(
            db, [balance_key(employee_id, year)], _decide, label="decide_leave",
        )
        logger.info(
            "leave decided",
            extra={
                "record_id": str(record_id),
                "status": decided.status.value,
                "approver_id": str(approver_id) if approver_id else None,
            },
        )
        return decided

    @staticmethod
    async def delete_absence(db: AsyncSession, record_id: uuid.UUID) -> None:
        """Remove an absence record; a linked calendar block is unscheduled too."""
        record = await LeaveService._load_record(db, record_id)
        keys = [balance_key(record.employee_id, record.year)]
        if record.assignment_id is not None and record.slot is not None:
            keys.append(slot_key(record.employee_id, record.start_date, record.slot))

        async def _delete() -> None:
            current = await LeaveService._load_record(db, record_id)
            if current.assignment_id is not None:
                assignment = await db.get(Assignment, current.assignment_id)
                if assignment is not None:
                    assignment.is_active = False
            await db.delete(current)
            await db.flush()

        await guard.run(db, keys, _delete, label="delete_absence")
        logger.info("absence deleted", extra={"record_id": str(record_id)})

    @staticmethod
    async def _employees_with_absences_on(db: AsyncSession, day: date) -> list[uuid.UUID]:
        records = await db.execute(
            select(AbsenceRecord.employee_id).where(AbsenceRecord.start_date == day)
        )
        blocks = await db.execute(
            select(Assignment.employee_id).where(
                Assignment.assigned_date == day,
                Assignment.kind == AssignmentKind.absence,
                Assignment.is_active.is_(True),
            )
        )
        return sorted(set(records.scalars().all()) | set(blocks.scalars().all()), key=str)

    @staticmethod
    async def clear_absences_on(
        db: AsyncSession,
        day: date,
        employee_id: Optional[uuid.UUID] = None,
    ) -> AbsenceClearOut:
        """Wipe absences for one day: records starting on ``day`` are deleted
        and absence blocks on the grid are unscheduled.

        Without ``employee_id`` every employee with an absence that day is
        cleared.
        """
        if employee_id is not None:
            await DirectoryService.get_employee(db, employee_id)
            employee_ids = [employee_id]
        else:
            employee_ids = await LeaveService._employees_with_absences_on(db, day)

        keys = []
        for emp in employee_ids:
            keys.append(balance_key(emp, day.year))
            keys.extend(slot_key(emp, day, slot) for slot in Slot)

        async def _clear() -> AbsenceClearOut:
            if not employee_ids:
                return AbsenceClearOut(day=day, employee_id=employee_id)

            result = await db.execute(
                select(Assignment).where(
                    Assignment.employee_id.in_(employee_ids),
                    Assignment.assigned_date == day,
                    Assignment.kind == AssignmentKind.absence,
                    Assignment.is_active.is_(True),
                )
            )
            blocks = result.scalars().all()
            block_ids = [a.id for a in blocks]
            for assignment in blocks:
                assignment.is_active = False

            conditions = [AbsenceRecord.start_date == day]
            if block_ids:
                conditions.append(AbsenceRecord.assignment_id.in_(block_ids))
            result = await db.execute(
                select(AbsenceRecord).where(
                    AbsenceRecord.employee_id.in_(employee_ids),
                    or_(*conditions),
                )
            )
            records = result.scalars().all()
            for record in records:
                await db.delete(record)

            await db.flush()
            return AbsenceClearOut(
                day=day,
                employee_id=employee_id,
                records_deleted=len(records),
                blocks_cleared=len(blocks),
            )

        cleared = await guard.run(db, keys, _clear, label="clear_absences")
        logger.info(
            "absences cleared",
            extra={
                "date": day.isoformat(),
                "employee_id": str(employee_id) if employee_id else None,
                "records_deleted": cleared.records_deleted,
                "blocks_cleared": cleared.blocks_cleared,
            },
        )
        return cleared

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def list_records(
        db: AsyncSession,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[AbsenceStatus] = None,
        absence_type: Optional[AbsenceType] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> Sequence[AbsenceRecord]:
        """Absence records intersecting ``[from_date, to_date]``."""
        stmt = select(AbsenceRecord)
        if employee_id is not None:
            stmt = stmt.where(AbsenceRecord.employee_id == employee_id)
        if status is not None:
            stmt = stmt.where(AbsenceRecord.status == status)
        if absence_type is not None:
            stmt = stmt.where(AbsenceRecord.absence_type == absence_type)
        if from_date is not None:
            stmt = stmt.where(AbsenceRecord.end_date >= from_date)
        if to_date is not None:
            stmt = stmt.where(AbsenceRecord.start_date <= to_date)
        result = await db.execute(stmt.order_by(AbsenceRecord.start_date))
        return result.scalars().all()
