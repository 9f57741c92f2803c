"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

BASE_ERROR_URI = "https://planner.local/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFoundException(AppException):
    """404 — entity not found (or inactive)."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist or is inactive.",
        )


class ConflictError(AppException):
    """409 — the entity is still referenced and cannot be changed."""

    def __init__(self, detail: str, errors: Optional[dict[str, Any]] = None) -> None:
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=detail,
            errors=errors,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(self, errors: dict[str, list[str]]) -> None:
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail="One or more fields failed validation.",
            errors=errors,
        )


# ── Scheduling errors ───────────────────────────────────────────────

class InvalidSpanError(AppException):
    """422 — column geometry outside the half-day grid."""

    def __init__(self, column_start: Any, column_span: Any) -> None:
        super().__init__(
            status_code=422,
            error_type="invalid-span",
            title="Invalid Span",
            detail=(
                f"Column start {column_start} with span {column_span} does not fit a "
                "half-day slot. Start must be 0-3, span 1-4, and start + span at most 4."
            ),
            errors={
                "column_start": [str(column_start)],
                "column_span": [str(column_span)],
            },
        )


class SlotFullError(AppException):
    """409 — no contiguous run of free columns is wide enough."""

    def __init__(self, slot_date: date, slot: str, column_span: int) -> None:
        super().__init__(
            status_code=409,
            error_type="slot-full",
            title="Slot Full",
            detail=(
                f"The {slot} of {slot_date.isoformat()} has no {column_span} free "
                "adjacent columns. Pick another slot or shorten the item."
            ),
        )


class CapacityConflictError(AppException):
    """409 — the requested columns overlap an existing placement."""

    def __init__(self, detail: str) -> None:
        super().__init__(
            status_code=409,
            error_type="capacity-conflict",
            title="Capacity Conflict",
            detail=detail,
        )


class DateBlockedError(AppException):
    """409 — an approved absence covers the whole slot."""

    def __init__(self, slot_date: date, slot: str) -> None:
        super().__init__(
            status_code=409,
            error_type="date-blocked",
            title="Date Blocked",
            detail=(
                f"The {slot} of {slot_date.isoformat()} is covered by an approved "
                "absence. Remove the absence or choose another slot."
            ),
        )


# ── Leave errors ────────────────────────────────────────────────────

class InsufficientBalanceError(AppException):
    """422 — request exceeds what is left after pending requests."""

    def __init__(self, requested: Any, available: Any) -> None:
        super().__init__(
            status_code=422,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=(
                f"Requested {requested} day(s) but only {available} day(s) are "
                "available after pending requests."
            ),
            errors={"leave_days": [f"At most {available} day(s) can be requested."]},
        )


class BalanceExceededError(AppException):
    """422 — approving would drive the remaining balance below zero."""

    def __init__(self, requested: Any, remaining: Any) -> None:
        super().__init__(
            status_code=422,
            error_type="balance-exceeded",
            title="Balance Exceeded",
            detail=(
                f"Booking {requested} day(s) would exceed the remaining balance of "
                f"{remaining} day(s). Raise the allocation or shorten the absence."
            ),
        )


class InvalidTransitionError(AppException):
    """409 — the absence record cannot move to the requested state."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            status_code=409,
            error_type="invalid-transition",
            title="Invalid Transition",
            detail=f"An absence record in state '{current}' cannot become '{target}'.",
        )


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    logger.info(
        "request rejected",
        extra={"error_type": exc.error_type, "path": str(request.url.path)},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
