"""Write guard for calendar cells and leave balances.

Every mutating scheduling or leave operation runs as one unit of work:

    acquire keys (sorted) → read → validate → write → commit → release

Keys are per ``(employee, date, slot)`` for grid cells and per
``(employee, year)`` for leave balances, so unrelated writers never wait on
each other. The partial unique index on ``assignments`` is the backstop for
writers that bypass this process; if a commit trips it, the whole unit is
rolled back and replayed once against fresh state before the caller gets a
``CapacityConflictError``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date
from typing import AsyncIterator, Awaitable, Callable, Hashable, Iterable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from planner.common.constants import Slot
from planner.common.exceptions import CapacityConflictError
from planner.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")
LockKey = tuple[Hashable, ...]


class WriteConflict(Exception):
    """Commit rejected by a storage uniqueness constraint."""


def slot_key(employee_id: uuid.UUID, day: date, slot: Slot | str) -> LockKey:
    return ("slot", str(employee_id), day.isoformat(), Slot(slot).value)


def balance_key(employee_id: uuid.UUID, year: int) -> LockKey:
    return ("balance", str(employee_id), f"{year:04d}")


class ConsistencyGuard:
    """Per-key asyncio locks plus commit-time conflict handling."""

    def __init__(self, attempts: int | None = None) -> None:
        self._locks: weakref.WeakValueDictionary[LockKey, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._attempts = attempts

    @property
    def attempts(self) -> int:
        return self._attempts or settings.COMMIT_ATTEMPTS

    def _lock_for(self, key: LockKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_locked(self, key: LockKey) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, keys: Iterable[LockKey]) -> AsyncIterator[None]:
        """Hold every lock in ``keys``, acquired in sorted order."""
        ordered = sorted(set(keys))
        locks = [self._lock_for(key) for key in ordered]
        async with AsyncExitStack() as stack:
            for lock in locks:
                await stack.enter_async_context(lock)
            yield

    async def run(
        self,
        db: AsyncSession,
        keys: Iterable[LockKey],
        operation: Callable[[], Awaitable[T]],
        *,
        label: str = "write",
    ) -> T:
        """Run ``operation`` and commit while holding ``keys``.

        ``operation`` must re-read whatever it validates: on a write
        conflict it is called again after the session was rolled back.
        Domain errors raised by ``operation`` roll back and propagate
        untouched.
        """
        keys = list(keys)
        async with self.hold(keys):
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(self.attempts),
                    retry=retry_if_exception_type(WriteConflict),
                    reraise=True,
                ):
                    with attempt:
                        if attempt.retry_state.attempt_number > 1:
                            logger.info(
                                "replaying after write conflict",
                                extra={
                                    "operation": label,
                                    "attempt": attempt.retry_state.attempt_number,
                                },
                            )
                        result = await self._attempt(db, operation, label)
            except WriteConflict as exc:
                logger.warning(
                    "write conflict persisted, giving up",
                    extra={"operation": label, "attempts": self.attempts},
                )
                raise CapacityConflictError(
                    "Another change to the same calendar cell was committed first. "
                    "Reload the calendar and try again."
                ) from exc
        return result

    @staticmethod
    async def _attempt(
        db: AsyncSession,
        operation: Callable[[], Awaitable[T]],
        label: str,
    ) -> T:
        try:
            result = await operation()
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            logger.warning(
                "write conflict on commit",
                extra={"operation": label, "error": str(exc.orig)},
            )
            raise WriteConflict(label) from exc
        except Exception:
            await db.rollback()
            raise
        return result


guard = ConsistencyGuard()
