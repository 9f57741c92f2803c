"""Shared test fixtures — async DB, client, directory factories.

Reusable across all test modules (schedule, leave, guard, directory, API).
Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from planner.database import Base, get_db
from planner.main import create_app

# Import ALL model modules so SQLAlchemy can resolve cross-module relationships
# (e.g. Task → Assignment)
import planner.directory.models  # noqa: F401
import planner.leave.models  # noqa: F401
import planner.schedule.models  # noqa: F401

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() so server-side timestamp defaults work on SQLite."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from planner.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Directory factories ─────────────────────────────────────────────
#
# Seeders commit and return plain ids: a failed guarded write rolls the
# session back, which expires every loaded ORM instance.


async def seed_team(db: AsyncSession, *, name: Optional[str] = None) -> uuid.UUID:
    from planner.directory.models import Team

    team = Team(id=uuid.uuid4(), name=name or f"Team {uuid.uuid4().hex[:6]}")
    db.add(team)
    await db.commit()
    return team.id


async def seed_employee(
    db: AsyncSession,
    *,
    team_id: Optional[uuid.UUID] = None,
    display_name: str = "Test Designer",
    is_active: bool = True,
) -> uuid.UUID:
    from planner.directory.models import Employee

    if team_id is None:
        team_id = await seed_team(db)
    employee = Employee(
        id=uuid.uuid4(),
        employee_code=f"DP-{uuid.uuid4().hex[:6].upper()}",
        display_name=display_name,
        team_id=team_id,
        is_active=is_active,
    )
    db.add(employee)
    await db.commit()
    return employee.id


async def seed_task(
    db: AsyncSession,
    *,
    title: str = "Homepage redesign",
    estimated_hours: Optional[Decimal] = Decimal("1"),
    is_active: bool = True,
) -> uuid.UUID:
    from planner.directory.models import Task

    task = Task(
        id=uuid.uuid4(),
        title=title,
        estimated_hours=estimated_hours,
        is_active=is_active,
    )
    db.add(task)
    await db.commit()
    return task.id


@pytest.fixture
async def employee_id(db) -> uuid.UUID:
    """An active employee in a fresh team."""
    return await seed_employee(db)


@pytest.fixture
async def task_id(db) -> uuid.UUID:
    """An active one-hour task."""
    return await seed_task(db)
