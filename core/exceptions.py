"""
Error hierarchy shared by the services and the HTTP layer.

Every error carries the HTTP status it maps to and a message that is safe to
return to the caller. StoreError keeps the underlying database error for the
logs only.
"""
from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base exception for all service errors."""

    http_status: int = 500
    error_code: str = "service_error"

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the error envelope returned by the API."""
        body: Dict[str, Any] = {
            "success": False,
            "error": self.user_message,
            "code": self.error_code,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    """Raised when a required field is missing or malformed."""

    http_status = 400
    error_code = "validation_error"


class PaymentVerificationError(ServiceError):
    """Raised when the payment verifier rejects a payment."""

    http_status = 400
    error_code = "payment_verification_failed"


class NotFoundError(ServiceError):
    """Raised when an entity id does not exist."""

    http_status = 404
    error_code = "not_found"


class AuthError(ServiceError):
    """Raised when an administrator credential or token is missing or invalid."""

    http_status = 401
    error_code = "unauthorized"


class WebhookSignatureError(AuthError):
    """Raised when an inbound webhook fails signature verification."""

    error_code = "invalid_signature"


class StoreError(ServiceError):
    """Raised when the underlying store fails. The message is never shown to callers."""

    http_status = 500
    error_code = "store_error"

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message, user_message="A storage error occurred. Please try again.")
        self.original_error = original_error
