"""
Structured error taxonomy for the dashboard store.

Every failure raised by the store carries a searchable ``ErrorCode``, a
human-readable message and an optional ``details`` dict.  The API layer maps
the code to an HTTP status; the store decides whether the error aborts an
action (validation, not-found, link integrity) or is merely reported
(import rows, persistence).
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError


class ErrorCode(str, Enum):
    # Validation
    VALIDATION_FAILED = "VAL_001"
    UNKNOWN_FILTER_FIELD = "VAL_002"
    UNKNOWN_SORT_FIELD = "VAL_003"
    PURGE_CONFIRMATION_MISMATCH = "VAL_004"
    CSV_FORMAT_INVALID = "VAL_005"

    # References
    REQUIREMENT_NOT_FOUND = "REF_001"
    CAPABILITY_NOT_FOUND = "REF_002"
    LINK_INTEGRITY_VIOLATION = "REF_003"

    # Import
    IMPORT_ROW_REJECTED = "IMP_001"

    # Persistence
    PERSISTENCE_READ_FAILED = "PER_001"
    PERSISTENCE_WRITE_FAILED = "PER_002"

    # System
    ACTION_FAILED = "SYS_001"
    STORE_CLOSED = "SYS_002"


class DashboardError(Exception):
    """Base exception with a code, message and context details."""

    HTTP_STATUS_MAP: dict[ErrorCode, int] = {
        ErrorCode.VALIDATION_FAILED: 422,
        ErrorCode.UNKNOWN_FILTER_FIELD: 422,
        ErrorCode.UNKNOWN_SORT_FIELD: 422,
        ErrorCode.PURGE_CONFIRMATION_MISMATCH: 422,
        ErrorCode.CSV_FORMAT_INVALID: 422,
        ErrorCode.REQUIREMENT_NOT_FOUND: 404,
        ErrorCode.CAPABILITY_NOT_FOUND: 404,
        ErrorCode.LINK_INTEGRITY_VIOLATION: 409,
        ErrorCode.IMPORT_ROW_REJECTED: 422,
        ErrorCode.PERSISTENCE_READ_FAILED: 503,
        ErrorCode.PERSISTENCE_WRITE_FAILED: 503,
        ErrorCode.ACTION_FAILED: 500,
        ErrorCode.STORE_CLOSED: 503,
    }

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    @property
    def http_status(self) -> int:
        return self.HTTP_STATUS_MAP.get(self.code, 500)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation for API responses and reports."""
        return {
            "code": self.code.value,
            "error": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class ValidationError(DashboardError):
    """A record or action payload failed validation."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
    ):
        super().__init__(code, message, details)

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError, subject: str) -> "ValidationError":
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        summary = "; ".join(f"{e['field'] or subject}: {e['message']}" for e in errors)
        return cls(f"Invalid {subject}: {summary}", details={"errors": errors})


class CsvFormatError(ValidationError):
    """The CSV document as a whole cannot be read (no header, missing columns)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details, code=ErrorCode.CSV_FORMAT_INVALID)


class NotFoundError(DashboardError):
    """An action referenced an id that is not in the collection."""

    def __init__(
        self,
        entity: str,
        entity_id: str,
        code: ErrorCode = ErrorCode.REQUIREMENT_NOT_FOUND,
        message: str | None = None,
    ):
        super().__init__(
            code,
            message or f"{entity} '{entity_id}' not found",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class LinkIntegrityError(NotFoundError):
    """A capability link would dangle, or a capability is still referenced."""

    def __init__(self, capability_id: str, message: str | None = None, referenced_by: list[str] | None = None):
        super().__init__(
            "Capability",
            capability_id,
            code=ErrorCode.LINK_INTEGRITY_VIOLATION,
            message=message or f"Capability '{capability_id}' does not exist",
        )
        if referenced_by:
            self.details["referenced_by"] = referenced_by
        self.referenced_by = referenced_by or []


class ImportRowError(DashboardError):
    """One CSV row was rejected; carried in the import report, never raised."""

    def __init__(self, row: int, reason: str):
        super().__init__(
            ErrorCode.IMPORT_ROW_REJECTED,
            f"Row {row}: {reason}",
            details={"row": row, "reason": reason},
        )
        self.row = row
        self.reason = reason


class PersistenceWarning(DashboardError):
    """A slice could not be read or written.  Non-fatal: state is not rolled back."""

    def __init__(self, key: str, reason: str, code: ErrorCode = ErrorCode.PERSISTENCE_WRITE_FAILED):
        super().__init__(code, f"Slice '{key}': {reason}", details={"key": key, "reason": reason})
        self.key = key
        self.reason = reason


class ActionFailedError(DashboardError):
    """Unexpected internal failure while reducing an action."""

    def __init__(self, action_type: str, cause: BaseException):
        super().__init__(
            ErrorCode.ACTION_FAILED,
            f"Action '{action_type}' failed: {cause}",
            details={"action": action_type, "cause": type(cause).__name__},
        )
        self.action_type = action_type


class StoreClosedError(DashboardError):
    """An action was dispatched after the store was closed."""

    def __init__(self, action_type: str):
        super().__init__(
            ErrorCode.STORE_CLOSED,
            f"Cannot apply '{action_type}': the store is closed",
            details={"action": action_type},
        )
        self.action_type = action_type
