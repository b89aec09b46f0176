"""Exception hierarchy for the merge engine.

Every error carries a message and an optional ``details`` dict so callers
(CLI, UI layer) can render structured feedback.
"""

from typing import Optional, Any, Dict, List


class FaceMergeError(Exception):
    """Base exception for all engine errors."""

    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class NotFoundError(FaceMergeError):
    """Raised when a referenced person or connection does not exist."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(
            f"{kind} not found: {record_id}",
            {"kind": kind, "id": record_id}
        )


class InvalidOperationError(FaceMergeError):
    """Raised for self-merges, cross-owner merges and self-loop connections."""
    pass


class ValidationError(FaceMergeError):
    """Raised when input is incomplete, e.g. a required merge choice is missing."""

    def __init__(self, message: str, fields: Optional[List[str]] = None):
        self.fields = list(fields or [])
        super().__init__(message, {"fields": self.fields} if self.fields else None)


class StoreConflictError(FaceMergeError):
    """Raised when the store detects a concurrent write during a transaction.

    The whole transaction has been rolled back; re-running the operation
    from scratch is safe.
    """

    retryable = True
