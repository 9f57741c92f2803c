"""Common module — shared constants, exceptions, logging and rate limiting."""

from planner.common.constants import (
    COLUMNS_PER_SLOT,
    AbsenceStatus,
    AbsenceType,
    AssignmentKind,
    Slot,
)
from planner.common.exceptions import (
    AppException,
    BalanceExceededError,
    CapacityConflictError,
    ConflictError,
    DateBlockedError,
    InsufficientBalanceError,
    InvalidSpanError,
    InvalidTransitionError,
    NotFoundException,
    SlotFullError,
    ValidationException,
    register_exception_handlers,
)

__all__ = [
    # Constants / Enums
    "COLUMNS_PER_SLOT",
    "AbsenceStatus",
    "AbsenceType",
    "AssignmentKind",
    "Slot",
    # Exceptions
    "AppException",
    "BalanceExceededError",
    "CapacityConflictError",
    "ConflictError",
    "DateBlockedError",
    "InsufficientBalanceError",
    "InvalidSpanError",
    "InvalidTransitionError",
    "NotFoundException",
    "SlotFullError",
    "ValidationException",
    "register_exception_handlers",
]
