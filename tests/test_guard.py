"""Write guard — key ordering, lock visibility and commit conflict replay."""

from __future__ import annotations

import asyncio
import uuid
from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from planner.common.constants import Slot
from planner.common.exceptions import CapacityConflictError, SlotFullError
from planner.config import settings
from planner.schedule.guard import ConsistencyGuard, balance_key, slot_key

EMP = uuid.uuid4()
MONDAY = date(2025, 1, 6)


def _unique_violation() -> IntegrityError:
    return IntegrityError(
        "INSERT INTO assignments ...", {}, Exception("UNIQUE constraint failed"),
    )


class TestKeys:

    def test_slot_key_normalises_slot(self):
        assert slot_key(EMP, MONDAY, "morning") == slot_key(EMP, MONDAY, Slot.morning)
        assert slot_key(EMP, MONDAY, Slot.morning) != slot_key(EMP, MONDAY, Slot.afternoon)

    def test_balance_key_per_year(self):
        assert balance_key(EMP, 2025) != balance_key(EMP, 2026)
        assert balance_key(EMP, 2025) == ("balance", str(EMP), "2025")


class TestRun:

    async def test_success_commits_once(self, db):
        guard = ConsistencyGuard()
        calls = 0

        async def _op():
            nonlocal calls
            calls += 1
            return "ok"

        assert await guard.run(db, [slot_key(EMP, MONDAY, Slot.morning)], _op) == "ok"
        assert calls == 1

    async def test_write_conflict_replayed_once(self, db):
        guard = ConsistencyGuard(attempts=2)
        calls = 0

        async def _op():
            nonlocal calls
            calls += 1
            if calls == 1:
                raise _unique_violation()
            return calls

        assert await guard.run(db, [slot_key(EMP, MONDAY, Slot.morning)], _op) == 2
        assert calls == 2

    async def test_persistent_conflict_surfaces_as_capacity_conflict(self, db):
        guard = ConsistencyGuard()
        calls = 0

        async def _op():
            nonlocal calls
            calls += 1
            raise _unique_violation()

        with pytest.raises(CapacityConflictError) as exc_info:
            await guard.run(db, [slot_key(EMP, MONDAY, Slot.morning)], _op)

        assert calls == settings.COMMIT_ATTEMPTS
        assert exc_info.value.status_code == 409

    async def test_domain_error_not_replayed(self, db):
        guard = ConsistencyGuard()
        calls = 0

        async def _op():
            nonlocal calls
            calls += 1
            raise SlotFullError(MONDAY, "morning", 2)

        with pytest.raises(SlotFullError):
            await guard.run(db, [slot_key(EMP, MONDAY, Slot.morning)], _op)
        assert calls == 1

    async def test_keys_held_during_operation(self, db):
        guard = ConsistencyGuard()
        key = slot_key(EMP, MONDAY, Slot.morning)
        seen = []

        async def _op():
            seen.append(guard.is_locked(key))

        await guard.run(db, [key], _op)

        assert seen == [True]
        assert not guard.is_locked(key)

    async def test_lock_released_after_error(self, db):
        guard = ConsistencyGuard()
        key = balance_key(EMP, 2025)

        async def _op():
            raise SlotFullError(MONDAY, "morning", 1)

        with pytest.raises(SlotFullError):
            await guard.run(db, [key], _op)
        assert not guard.is_locked(key)


class TestHold:

    async def test_same_key_serialises(self):
        guard = ConsistencyGuard()
        key = slot_key(EMP, MONDAY, Slot.morning)
        order = []

        async def _writer(name: str):
            async with guard.hold([key]):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        await asyncio.gather(_writer("a"), _writer("b"))

        assert order == ["a-in", "a-out", "b-in", "b-out"]

    async def test_opposite_key_order_does_not_deadlock(self):
        guard = ConsistencyGuard()
        morning = slot_key(EMP, MONDAY, Slot.morning)
        afternoon = slot_key(EMP, MONDAY, Slot.afternoon)

        async def _writer(keys):
            async with guard.hold(keys):
                await asyncio.sleep(0)

        await asyncio.wait_for(
            asyncio.gather(_writer([morning, afternoon]), _writer([afternoon, morning])),
            timeout=1,
        )

    async def test_unrelated_keys_do_not_wait(self):
        guard = ConsistencyGuard()
        first = slot_key(EMP, MONDAY, Slot.morning)
        second = slot_key(uuid.uuid4(), MONDAY, Slot.morning)

        async with guard.hold([first]):
            async with guard.hold([second]):
                assert guard.is_locked(first)
                assert guard.is_locked(second)
