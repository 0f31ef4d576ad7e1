"""
Subscription billing exceptions.

Each error carries the HTTP status and machine-readable code the router
uses when building the error envelope.
"""

from typing import Any, Dict, Optional


class SubscriptionError(Exception):
    """
    Base subscription error.

    Attributes:
        message: Human-readable error message, safe to show to end users
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional identifiers about the failing request
    """

    def __init__(
        self,
        message: str,
        error_code: str = "SUBSCRIPTION_ERROR",
        status_code: int = 400,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
        }


class NotFoundError(SubscriptionError):
    """A referenced user, plan or order does not exist."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, "NOT_FOUND", status_code=404, context=context)


class ServiceUnavailableError(SubscriptionError):
    """The payment gateway is not configured on this deployment."""

    def __init__(self, message: str = "The payment service is currently unavailable. Please contact support.") -> None:
        super().__init__(message, "SERVICE_UNAVAILABLE", status_code=503)


class PaymentGatewayError(SubscriptionError):
    """The payment provider rejected a request or could not be reached."""

    def __init__(self, message: str = "Error communicating with the payment service.", provider_status: Optional[int] = None) -> None:
        context = {"provider_status": provider_status} if provider_status is not None else {}
        super().__init__(message, "PAYMENT_GATEWAY_ERROR", status_code=502, context=context)
        self.provider_status = provider_status
