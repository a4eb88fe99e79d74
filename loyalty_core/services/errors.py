from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION_ERROR = "validation_error"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    STOCK_EXHAUSTED = "stock_exhausted"
    INVALID_STATE_TRANSITION = "invalid_state_transition"
    NOT_FOUND = "not_found"
    DUPLICATE_SEND = "duplicate_send"


class LoyaltyError(Exception):
    kind: ErrorKind = ErrorKind.VALIDATION_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LoyaltyError):
    kind = ErrorKind.VALIDATION_ERROR


class InsufficientBalance(LoyaltyError):
    kind = ErrorKind.INSUFFICIENT_BALANCE


class StockExhausted(LoyaltyError):
    kind = ErrorKind.STOCK_EXHAUSTED


class InvalidStateTransition(LoyaltyError):
    kind = ErrorKind.INVALID_STATE_TRANSITION


class NotFound(LoyaltyError):
    kind = ErrorKind.NOT_FOUND


class DuplicateSend(LoyaltyError):
    """Internal only: the notification log already holds this send."""

    kind = ErrorKind.DUPLICATE_SEND


@dataclass
class OperationResult:
    success: bool
    data: Any = None
    error: ErrorKind | None = None
    message: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: LoyaltyError) -> "OperationResult":
        return cls(success=False, error=exc.kind, message=exc.message)

    def as_dict(self) -> dict:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error.value if self.error else None, "message": self.message}
