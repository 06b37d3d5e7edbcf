"""
Domain exceptions for the alert lifecycle and notification dispatch.

Every error carries a machine readable ``error_code`` and optional ``details``
so the API layer can render it without knowing the concrete type.
"""

from typing import Any, Dict, Optional


class AlertServiceError(Exception):
    """Base exception for all alert service errors"""

    status_code: int = 500
    default_code: str = "ALERT_SERVICE_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to the API error payload"""
        return {
            "success": False,
            "error": self.message,
            "details": self.details or None,
            "code": self.error_code,
        }

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class ValidationError(AlertServiceError):
    """Malformed or missing input"""

    status_code = 400
    default_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field_errors: Optional[Dict[str, str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.field_errors = field_errors or {}
        if self.field_errors:
            self.details["field_errors"] = self.field_errors


class NotFound(AlertServiceError):
    """Referenced alert or user does not exist"""

    status_code = 404
    default_code = "NOT_FOUND"


class PermissionDenied(AlertServiceError):
    """Actor is not allowed to perform the action"""

    status_code = 403
    default_code = "PERMISSION_DENIED"


class InvalidTransition(AlertServiceError):
    """Lifecycle rule violated"""

    status_code = 409
    default_code = "INVALID_TRANSITION"

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details=details)
        self.current_status = current_status
        if current_status:
            self.details["current_status"] = current_status


class EscalationLimitReached(InvalidTransition):
    """Alert is already at the highest escalation level"""

    default_code = "ESCALATION_LIMIT_REACHED"


class DispatchFailure(AlertServiceError):
    """A single channel delivery to a single recipient failed"""

    status_code = 502
    default_code = "DISPATCH_FAILURE"

    def __init__(self, message: str, channel: Optional[str] = None, recipient: Optional[str] = None):
        super().__init__(message)
        self.channel = channel
        self.recipient = recipient
        if channel:
            self.details["channel"] = channel
        if recipient:
            self.details["recipient"] = recipient


class StoreUnavailable(AlertServiceError):
    """The document store could not serve the request"""

    status_code = 503
    default_code = "STORE_UNAVAILABLE"
