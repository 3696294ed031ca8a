"""
Error taxonomy shared by the import pipeline and the event store.

Every failure is tagged with an ErrorCategory at the point where it happens;
callers never infer a category later from a generic exception type.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    NETWORK = "network"
    SERVER = "server"
    INVALID_RESPONSE = "invalid-response"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


# CLI exit codes per category
EXIT_CODES = {
    ErrorCategory.UNKNOWN: 1,
    ErrorCategory.VALIDATION: 2,
    ErrorCategory.NETWORK: 3,
    ErrorCategory.SERVER: 4,
    ErrorCategory.INVALID_RESPONSE: 5,
}
EXIT_CANCELLED = 130


class SyllabusSyncError(Exception):
    """Base error carrying a category."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, category: Optional[ErrorCategory] = None):
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category


class ExtractionError(SyllabusSyncError):
    """Raised by a DocumentExtractor when a document cannot be read."""


class ParserError(SyllabusSyncError):
    """Raised by the parser client. Carries HTTP details when there are any."""

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        status_code: Optional[int] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(message, category)
        self.status_code = status_code
        self.retry_after = retry_after


class RemoteBackendError(SyllabusSyncError):
    """Raised when the remote event backend fails or times out."""


class NotAuthenticatedError(RemoteBackendError):
    category = ErrorCategory.VALIDATION

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class SyncError(SyllabusSyncError):
    """Raised by refresh() when pending local changes could not be flushed."""

    def __init__(self, message: str, failed_ids: list[str]):
        super().__init__(message, ErrorCategory.NETWORK)
        self.failed_ids = failed_ids


class ReconcileCancelled(Exception):
    """Reconciliation was aborted before commit; nothing was applied."""
