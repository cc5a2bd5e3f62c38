"""
Error types for the ingestion and review pipeline.

Each error carries a machine-readable code plus context for logging and API responses.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Standardized error codes for client handling."""
    # Parsing
    AMOUNT_NOT_FOUND = "AMOUNT_NOT_FOUND"
    INVALID_AMOUNT = "INVALID_AMOUNT"

    # Review workflow
    PENDING_NOT_FOUND = "PENDING_NOT_FOUND"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    CORRECTION_REQUIRED = "CORRECTION_REQUIRED"

    # Non-fatal degradations
    LOCATION_UNAVAILABLE = "LOCATION_UNAVAILABLE"
    LEARNING_STORE_WRITE_FAILED = "LEARNING_STORE_WRITE_FAILED"

    # Persistence
    DATABASE_ERROR = "DATABASE_ERROR"


class AlertLedgerError(Exception):
    """Base exception with structured error info."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to API response format."""
        result = {
            "error": self.code.value,
            "message": self.message
        }
        if self.context:
            result["context"] = self.context
        return result


class ParseFailure(AlertLedgerError):
    """No usable transaction could be extracted from the message."""


class AmountNotFound(ParseFailure):
    def __init__(self):
        super().__init__(
            code=ErrorCode.AMOUNT_NOT_FOUND,
            message="Could not parse transaction amount"
        )


class InvalidAmount(ParseFailure):
    def __init__(self, raw: str):
        super().__init__(
            code=ErrorCode.INVALID_AMOUNT,
            message="Could not parse valid transaction amount",
            context={"raw": raw}
        )


class PendingNotFound(AlertLedgerError):
    def __init__(self, pending_id: str):
        super().__init__(
            code=ErrorCode.PENDING_NOT_FOUND,
            message=f"Pending transaction {pending_id} not found",
            context={"pending_id": pending_id}
        )


class AlreadyProcessed(AlertLedgerError):
    """A transition was attempted on a record that is no longer pending."""

    def __init__(self, pending_id: str, status: str):
        super().__init__(
            code=ErrorCode.ALREADY_PROCESSED,
            message=f"Pending transaction {pending_id} already {status}",
            context={"pending_id": pending_id, "status": status}
        )


class CorrectionRequired(AlertLedgerError):
    """Approving a failed parse needs at least a corrected amount."""

    def __init__(self, pending_id: str):
        super().__init__(
            code=ErrorCode.CORRECTION_REQUIRED,
            message=f"Pending transaction {pending_id} has no parsed amount; supply a corrected amount",
            context={"pending_id": pending_id}
        )


class LocationUnavailable(AlertLedgerError):
    def __init__(self, reason: str):
        super().__init__(
            code=ErrorCode.LOCATION_UNAVAILABLE,
            message="Location could not be determined",
            context={"reason": reason}
        )


class LearningStoreWriteFailure(AlertLedgerError):
    def __init__(self, store: str, reason: str):
        super().__init__(
            code=ErrorCode.LEARNING_STORE_WRITE_FAILED,
            message=f"Failed to update {store}",
            context={"store": store, "reason": reason}
        )


class StoreError(AlertLedgerError):
    """A read or write against the database failed."""

    def __init__(self, table: str, operation: str, reason: str):
        super().__init__(
            code=ErrorCode.DATABASE_ERROR,
            message=f"Database {operation} on {table} failed",
            context={"table": table, "operation": operation, "reason": reason}
        )
