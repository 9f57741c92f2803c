"""Tests for common utilities — problem details, JSON logging, settings.

Exercises the RFC 7807 exception hierarchy and the log formatter used by
every planner module.
"""

from __future__ import annotations

import json
import logging
from datetime import date

import pytest

from planner.common.exceptions import (
    AppException,
    BalanceExceededError,
    CapacityConflictError,
    DateBlockedError,
    InsufficientBalanceError,
    InvalidSpanError,
    SlotFullError,
)
from planner.common.logging import PlannerJsonFormatter
from planner.config import Settings


# ═════════════════════════════════════════════════════════════════════
# EXCEPTION TESTS
# ═════════════════════════════════════════════════════════════════════


class TestExceptionHierarchy:

    @pytest.mark.parametrize(
        "exc,status,error_type",
        [
            (InvalidSpanError(3, 2), 422, "invalid-span"),
            (SlotFullError(date(2025, 1, 6), "morning", 2), 409, "slot-full"),
            (CapacityConflictError("columns taken"), 409, "capacity-conflict"),
            (DateBlockedError(date(2025, 1, 6), "afternoon"), 409, "date-blocked"),
            (InsufficientBalanceError(5, 2), 422, "insufficient-balance"),
            (BalanceExceededError(5, 2), 422, "balance-exceeded"),
        ],
    )
    def test_status_and_type(self, exc, status, error_type):
        assert isinstance(exc, AppException)
        assert exc.status_code == status
        assert exc.error_type == error_type

    def test_slot_full_detail_names_the_slot(self):
        exc = SlotFullError(date(2025, 1, 6), "morning", 3)
        assert "morning of 2025-01-06" in exc.detail

    def test_invalid_span_reports_fields(self):
        exc = InvalidSpanError(3, 2)
        assert exc.errors == {"column_start": ["3"], "column_span": ["2"]}


# ═════════════════════════════════════════════════════════════════════
# LOGGING TESTS
# ═════════════════════════════════════════════════════════════════════


class TestJsonFormatter:

    def _format(self, **extra) -> dict:
        formatter = PlannerJsonFormatter("%(timestamp) %(level) %(name) %(message)")
        record = logging.LogRecord(
            name="planner.schedule.placement",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="assignment placed",
            args=(),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return json.loads(formatter.format(record))

    def test_core_fields(self):
        payload = self._format()
        assert payload["message"] == "assignment placed"
        assert payload["level"] == "INFO"
        assert payload["name"] == "planner.schedule.placement"
        assert payload["timestamp"]

    def test_extra_fields_included(self):
        payload = self._format(assignment_id="abc", column_start=2)
        assert payload["assignment_id"] == "abc"
        assert payload["column_start"] == 2


# ═════════════════════════════════════════════════════════════════════
# SETTINGS TESTS
# ═════════════════════════════════════════════════════════════════════


class TestSettings:

    def test_defaults(self):
        settings = Settings()
        assert settings.DEFAULT_ANNUAL_LEAVE_DAYS == 25
        assert settings.HOURS_PER_LEAVE_DAY == 8
        assert settings.COMMIT_ATTEMPTS == 2

    def test_cors_origins_parsed(self):
        settings = Settings(CORS_ORIGINS='["https://planner.example"]')
        assert settings.cors_origins_list == ["https://planner.example"]

    def test_bad_cors_origins_fallback(self):
        settings = Settings(CORS_ORIGINS="not-json")
        assert settings.cors_origins_list == ["http://localhost:3000"]
