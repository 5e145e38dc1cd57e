"""
Ledger error taxonomy and result types.

Ledger and waitlist operations never raise for business failures; they return
a LedgerResult that callers must branch on. Routers map error codes to HTTP
status codes (see ERROR_HTTP_STATUS).
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class ErrorCode(str, enum.Enum):
    VALIDATION_ERROR = "validation_error"
    SLOT_UNAVAILABLE = "slot_unavailable"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    # Internal only: kept as pending_sync + outbox rows, never returned to a caller
    SYNC_FAILURE = "sync_failure"
    # Operator queue, listed under /api/sync/conflicts
    RECONCILIATION_CONFLICT = "reconciliation_conflict"


ERROR_HTTP_STATUS = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.SLOT_UNAVAILABLE: 409,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.INVALID_STATE: 409,
}


@dataclass
class LedgerError:
    code: ErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class LedgerResult:
    """Outcome of a ledger or waitlist operation"""
    success: bool
    booking: Optional[Any] = None
    entry: Optional[Any] = None
    error: Optional[LedgerError] = None

    @classmethod
    def ok(cls, booking=None, entry=None) -> "LedgerResult":
        return cls(success=True, booking=booking, entry=entry)

    @classmethod
    def fail(cls, code: ErrorCode, message: str, **details) -> "LedgerResult":
        return cls(success=False, error=LedgerError(code=code, message=message, details=details))

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None
