"""Custom exception hierarchy for docvault."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes carried by every docvault exception."""

    # Local validation (never reaches the network)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    FOLDER_NOT_DELETABLE = "FOLDER_NOT_DELETABLE"
    EXPIRY_REQUIRED = "EXPIRY_REQUIRED"

    # Remote failures
    REQUEST_FAILED = "REQUEST_FAILED"
    RECONCILIATION_FAILED = "RECONCILIATION_FAILED"


class DocVaultException(Exception):
    """
    Base exception for all docvault errors.

    Provides structured errors with:
    - Human-readable message
    - Machine-readable error code
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize exception.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            details: Optional additional context/details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to a dictionary the host UI can render.

        Returns:
            Dictionary with error, message, and details fields
        """
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


class ValidationError(DocVaultException):
    """Local validation failed; the request was never sent."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        error_code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        details = {"field": field} if field else {}
        super().__init__(message, error_code, details=details)
        self.field = field


class FolderNotDeletableError(ValidationError):
    """Folder failed the deletability rules (ownership, template or emptiness)."""

    def __init__(self, folder_id: str, reason: str):
        super().__init__(
            reason,
            field="folder_id",
            error_code=ErrorCode.FOLDER_NOT_DELETABLE,
        )
        self.details["folder_id"] = folder_id


class ExpiryRequiredError(ValidationError):
    """Upload had neither an expiry date nor an explicit no-expiry choice."""

    def __init__(self, message: str = "Choose an expiry date or mark the document as never expiring"):
        super().__init__(
            message,
            field="expiry_date",
            error_code=ErrorCode.EXPIRY_REQUIRED,
        )


class RequestFailure(DocVaultException):
    """The document service rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        details = {"status_code": status_code} if status_code is not None else {}
        super().__init__(message, ErrorCode.REQUEST_FAILED, details=details)
        self.status_code = status_code


class ReconciliationFailure(DocVaultException):
    """Background resync after a successful mutation failed.

    Never raised to callers; logged so the optimistic state keeps standing.
    """

    def __init__(self, entity_id: Optional[str], original_error: Optional[Exception] = None):
        details: Dict[str, Any] = {"entity_id": entity_id}
        if original_error:
            details["original_error"] = str(original_error)
        super().__init__(
            f"Background resync failed for entity {entity_id or 'default'}",
            ErrorCode.RECONCILIATION_FAILED,
            details=details,
        )
