"""Error taxonomy for the attendance-to-ledger engine."""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    INVALID_STATUS = "INVALID_STATUS"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    EMPTY_SELECTION = "EMPTY_SELECTION"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    DUPLICATE_ORIGIN = "DUPLICATE_ORIGIN"
    INSUFFICIENT_CREDIT = "INSUFFICIENT_CREDIT"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    UNAVAILABLE = "UNAVAILABLE"
    CANCELLED = "CANCELLED"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class LedgerError(Exception):
    """
    Base class for every error the engine raises.

    Carries a stable code and an HTTP status so the API layer can render it
    without knowing the concrete subclass.
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "code": self.code.value,
                "details": self.details,
                "type": self.__class__.__name__,
            }
        }

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InvalidStatus(LedgerError):
    code = ErrorCode.INVALID_STATUS
    status_code = 422


class InvalidAmount(LedgerError):
    code = ErrorCode.INVALID_AMOUNT
    status_code = 422


class EmptySelection(LedgerError):
    code = ErrorCode.EMPTY_SELECTION
    status_code = 422


class NotFound(LedgerError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class Conflict(LedgerError):
    """Optimistic write lost against a concurrent writer."""

    code = ErrorCode.CONFLICT
    status_code = 409
    retryable = True


class DuplicateOrigin(LedgerError):
    code = ErrorCode.DUPLICATE_ORIGIN
    status_code = 409


class InsufficientCredit(LedgerError):
    code = ErrorCode.INSUFFICIENT_CREDIT
    status_code = 409


class PermissionDenied(LedgerError):
    code = ErrorCode.PERMISSION_DENIED
    status_code = 403


class Unavailable(LedgerError):
    """The document store timed out or could not be reached."""

    code = ErrorCode.UNAVAILABLE
    status_code = 503
    retryable = True


class Cancelled(LedgerError):
    code = ErrorCode.CANCELLED
    status_code = 499


class ConfirmationRequired(LedgerError):
    code = ErrorCode.CONFIRMATION_REQUIRED
    status_code = 400


VALIDATION_ERRORS = (InvalidStatus, InvalidAmount, EmptySelection)
