"""001 – Initial schema: directory, calendar grid and leave ledger tables.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 10:00:00.000000+00:00
"""

from alembic import op
import sqlalchemy as sa

# Revision identifiers
revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

ENUM_TYPES: list[tuple[str, list[str]]] = [
    ("half_day_slot", ["morning", "afternoon"]),
    ("assignment_kind", ["task", "absence"]),
    ("absence_type", ["annual", "sick", "other"]),
    ("absence_status", ["draft", "pending", "approved", "rejected"]),
]


def _create_enum(name: str, values: list[str]) -> None:
    vals = ", ".join(f"'{v}'" for v in values)
    op.execute(f"CREATE TYPE {name} AS ENUM ({vals})")


def _drop_enum(name: str) -> None:
    op.execute(f"DROP TYPE IF EXISTS {name}")


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    # ── Extensions ────────────────────────────────────────────────────────
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # ── Enum types ────────────────────────────────────────────────────────
    for name, values in ENUM_TYPES:
        _create_enum(name, values)

    # ── 1. teams ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE teams (
            id          UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            name        VARCHAR(150) NOT NULL UNIQUE,
            is_active   BOOLEAN DEFAULT TRUE,
            created_at  TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 2. employees ──────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE employees (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_code  VARCHAR(20)  NOT NULL UNIQUE,
            display_name   VARCHAR(255) NOT NULL,
            team_id        UUID NOT NULL REFERENCES teams(id),
            is_active      BOOLEAN DEFAULT TRUE,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            updated_at     TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("CREATE INDEX idx_employees_team ON employees(team_id)")

    # ── 3. tasks ──────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE tasks (
            id               UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            title            VARCHAR(255) NOT NULL,
            estimated_hours  NUMERIC(6,2),
            is_active        BOOLEAN DEFAULT TRUE,
            created_at       TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # ── 4. assignments ────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE assignments (
            id             UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            kind           assignment_kind NOT NULL,
            task_id        UUID REFERENCES tasks(id) ON DELETE CASCADE,
            absence_type   absence_type,
            employee_id    UUID NOT NULL REFERENCES employees(id) ON DELETE RESTRICT,
            assigned_date  DATE NOT NULL,
            slot           half_day_slot NOT NULL,
            column_start   SMALLINT NOT NULL,
            column_span    SMALLINT NOT NULL,
            notes          TEXT,
            is_active      BOOLEAN NOT NULL DEFAULT TRUE,
            created_at     TIMESTAMPTZ DEFAULT NOW(),
            updated_at     TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_assignment_geometry CHECK (
                column_start >= 0 AND column_span >= 1 AND column_start + column_span <= 4
            ),
            CONSTRAINT ck_assignment_kind CHECK (
                (kind = 'task' AND task_id IS NOT NULL AND absence_type IS NULL) OR
                (kind = 'absence' AND task_id IS NULL AND absence_type IS NOT NULL)
            )
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_assignment_active_cell
            ON assignments(employee_id, assigned_date, slot, column_start)
            WHERE is_active
    """)
    op.execute(
        "CREATE INDEX idx_assignments_employee_date ON assignments(employee_id, assigned_date)"
    )

    # ── 5. absence_allocations ────────────────────────────────────────────
    op.execute("""
        CREATE TABLE absence_allocations (
            id                        UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id               UUID NOT NULL REFERENCES employees(id),
            year                      INTEGER NOT NULL,
            annual_leave_days         INTEGER NOT NULL,
            sick_days_allowed         INTEGER NOT NULL,
            other_leave_days_allowed  INTEGER NOT NULL,
            created_at                TIMESTAMPTZ DEFAULT NOW(),
            updated_at                TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT uq_absence_allocation UNIQUE (employee_id, year)
        )
    """)

    # ── 6. absence_records ────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE absence_records (
            id              UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
            employee_id     UUID NOT NULL REFERENCES employees(id),
            absence_type    absence_type NOT NULL,
            start_date      DATE NOT NULL,
            end_date        DATE NOT NULL,
            is_start_am     BOOLEAN NOT NULL DEFAULT TRUE,
            is_end_am       BOOLEAN NOT NULL DEFAULT FALSE,
            slot            half_day_slot,
            leave_days      NUMERIC(6,3) NOT NULL,
            hours           NUMERIC(6,2) NOT NULL,
            status          absence_status NOT NULL DEFAULT 'draft',
            reason          TEXT,
            approved_by     UUID,
            approved_at     TIMESTAMPTZ,
            approval_notes  TEXT,
            assignment_id   UUID REFERENCES assignments(id) ON DELETE SET NULL,
            created_at      TIMESTAMPTZ DEFAULT NOW(),
            updated_at      TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT ck_absence_record_range CHECK (end_date >= start_date)
        )
    """)
    op.execute(
        "CREATE INDEX idx_absence_records_employee_status "
        "ON absence_records(employee_id, status)"
    )
    op.execute(
        "CREATE INDEX idx_absence_records_range ON absence_records(start_date, end_date)"
    )


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    # Drop tables in reverse dependency order
    tables = [
        "absence_records",
        "absence_allocations",
        "assignments",
        "tasks",
        "employees",
        "teams",
    ]
    for t in tables:
        op.execute(f"DROP TABLE IF EXISTS {t} CASCADE")

    for name, _ in reversed(ENUM_TYPES):
        _drop_enum(name)
