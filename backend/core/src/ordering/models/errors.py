"""Standard error codes and domain exceptions for the ordering core.

Every failure the core reports to a caller is an OrderingError carrying an
ErrorCode. The HTTP layer maps codes to status codes; the message and
recovery tables below are the only text a client ever sees, so no credential
material or raw provider payload can leak through an error response.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorCode(str, Enum):
    """Standard error codes."""

    VALIDATION_FAILED = "ERR_VALIDATION"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    FORBIDDEN = "ERR_FORBIDDEN"
    ORDER_NOT_FOUND = "ERR_ORDER_NOT_FOUND"
    PAYMENT_NOT_FOUND = "ERR_PAYMENT_NOT_FOUND"
    CONFIG_NOT_FOUND = "ERR_CONFIG_NOT_FOUND"
    TENANT_REQUIRED = "ERR_TENANT_REQUIRED"

    # Payment / provider errors
    PAYMENT_NOT_CONFIGURED = "ERR_PAYMENT_NOT_CONFIGURED"
    UNSUPPORTED_PROVIDER = "ERR_UNSUPPORTED_PROVIDER"
    PROVIDER_ERROR = "ERR_PROVIDER"
    INVALID_WEBHOOK_SIGNATURE = "ERR_WEBHOOK_SIGNATURE"
    MALFORMED_WEBHOOK = "ERR_WEBHOOK_MALFORMED"
    SECRET_DECRYPTION_FAILED = "ERR_SECRET_DECRYPTION"
    POLLING_DISABLED = "ERR_POLLING_DISABLED"

    # Idempotency errors
    INVALID_IDEMPOTENCY_KEY = "ERR_IDEMPOTENCY_KEY"
    IDEMPOTENCY_CONFLICT = "ERR_IDEMPOTENCY_CONFLICT"


ERROR_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_FAILED: "Request validation failed",
    ErrorCode.INVALID_TRANSITION: "Order status transition is not allowed",
    ErrorCode.FORBIDDEN: "Not permitted to perform this action",
    ErrorCode.ORDER_NOT_FOUND: "Order not found",
    ErrorCode.PAYMENT_NOT_FOUND: "Payment not found",
    ErrorCode.CONFIG_NOT_FOUND: "Payment configuration not found",
    ErrorCode.TENANT_REQUIRED: "Tenant identifier is required",
    ErrorCode.PAYMENT_NOT_CONFIGURED: "Payment provider not configured for this restaurant",
    ErrorCode.UNSUPPORTED_PROVIDER: "Unsupported payment provider",
    ErrorCode.PROVIDER_ERROR: "Payment provider request failed",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Invalid webhook signature",
    ErrorCode.MALFORMED_WEBHOOK: "Malformed webhook payload",
    ErrorCode.SECRET_DECRYPTION_FAILED: "Stored payment credentials could not be decrypted",
    ErrorCode.POLLING_DISABLED: "Payment status polling is disabled",
    ErrorCode.INVALID_IDEMPOTENCY_KEY: (
        "Invalid idempotency key format. Use a UUID or alphanumeric string (8-128 chars)"
    ),
    ErrorCode.IDEMPOTENCY_CONFLICT: "A request with this idempotency key is still in progress",
}

ERROR_RECOVERY: dict[ErrorCode, str] = {
    ErrorCode.VALIDATION_FAILED: "Correct the request and try again",
    ErrorCode.INVALID_TRANSITION: "Reload the order and choose a valid next status",
    ErrorCode.FORBIDDEN: "Ask restaurant staff to perform this action",
    ErrorCode.ORDER_NOT_FOUND: "Verify the order ID",
    ErrorCode.PAYMENT_NOT_FOUND: "Verify the payment reference",
    ErrorCode.CONFIG_NOT_FOUND: "Configure the payment provider first",
    ErrorCode.TENANT_REQUIRED: "Send the X-Tenant-ID header",
    ErrorCode.PAYMENT_NOT_CONFIGURED: "Configure payment credentials for this restaurant",
    ErrorCode.UNSUPPORTED_PROVIDER: "Use one of the supported providers",
    ErrorCode.PROVIDER_ERROR: "Retry with the same idempotency key",
    ErrorCode.INVALID_WEBHOOK_SIGNATURE: "Verify webhook secret configuration",
    ErrorCode.MALFORMED_WEBHOOK: "Check the provider webhook payload format",
    ErrorCode.SECRET_DECRYPTION_FAILED: "Re-enter the payment credentials",
    ErrorCode.POLLING_DISABLED: "Wait for the provider webhook to confirm the payment",
    ErrorCode.INVALID_IDEMPOTENCY_KEY: "Send a UUID in the X-Idempotency-Key header",
    ErrorCode.IDEMPOTENCY_CONFLICT: "Wait for the original request to finish, then retry",
}


class ErrorResponse(BaseModel):
    """Standard error response body."""

    model_config = ConfigDict(strict=True)

    success: bool = False
    error_code: ErrorCode
    message: str
    recovery: str
    details: Optional[dict[str, Any]] = None

    @classmethod
    def from_code(
        cls,
        code: ErrorCode,
        details: Optional[dict[str, Any]] = None,
        message: Optional[str] = None,
    ) -> "ErrorResponse":
        """Create an ErrorResponse from an error code."""
        return cls(
            error_code=code,
            message=message or ERROR_MESSAGES[code],
            recovery=ERROR_RECOVERY[code],
            details=details,
        )


class OrderingError(Exception):
    """Base exception for reported (non-retried) ordering failures."""

    default_code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(
        self,
        code: Optional[ErrorCode] = None,
        details: Optional[dict[str, Any]] = None,
        message: Optional[str] = None,
    ):
        self.code = code or self.default_code
        self.message = message or ERROR_MESSAGES[self.code]
        self.recovery = ERROR_RECOVERY[self.code]
        self.details = details
        super().__init__(self.message)

    def to_error_response(self) -> ErrorResponse:
        """Convert this exception to an ErrorResponse body."""
        return ErrorResponse.from_code(self.code, self.details, self.message)


class ValidationError(OrderingError):
    """Bad input shape or semantics."""

    default_code = ErrorCode.VALIDATION_FAILED


class InvalidTransitionError(OrderingError):
    """An order status change outside the transition table."""

    default_code = ErrorCode.INVALID_TRANSITION

    def __init__(self, from_status: Any, to_status: Any):
        self.from_status = getattr(from_status, "value", from_status)
        self.to_status = getattr(to_status, "value", to_status)
        super().__init__(
            details={"from": self.from_status, "to": self.to_status},
            message=f"Invalid status transition from {self.from_status} to {self.to_status}",
        )


class ForbiddenError(OrderingError):
    """Actor lacks permission for the requested change."""

    default_code = ErrorCode.FORBIDDEN


class NotFoundError(OrderingError):
    """Tenant-scoped lookup miss."""

    default_code = ErrorCode.ORDER_NOT_FOUND


class ConfigurationError(OrderingError):
    """Missing or unusable tenant payment configuration."""

    default_code = ErrorCode.PAYMENT_NOT_CONFIGURED


class WebhookVerificationError(OrderingError):
    """Inbound webhook failed authenticity checks."""

    default_code = ErrorCode.INVALID_WEBHOOK_SIGNATURE


class ProviderError(OrderingError):
    """Network or provider-side failure while talking to a payment provider.

    Never mutates Order/Payment state; callers retry with the same
    idempotency key.
    """

    default_code = ErrorCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        provider_error_code: Optional[str] = None,
        retryable: bool = True,
    ):
        self.provider_error_code = provider_error_code
        self.retryable = retryable
        self.internal_message = message
        details: dict[str, Any] = {"retryable": retryable}
        super().__init__(
            details=details,
            message=get_user_friendly_provider_message(provider_error_code),
        )


class IdempotencyConflictError(OrderingError):
    """Same idempotency key is being executed by another request."""

    default_code = ErrorCode.IDEMPOTENCY_CONFLICT


class InvalidIdempotencyKeyError(OrderingError):
    """Idempotency key failed shape validation."""

    default_code = ErrorCode.INVALID_IDEMPOTENCY_KEY


# Provider error code to user-friendly message mapping
PROVIDER_ERROR_MESSAGES: dict[str, str] = {
    "card_declined": "Your card was declined. Please try a different card.",
    "expired_card": "Your card has expired. Please use a different card.",
    "insufficient_funds": "Your card has insufficient funds. Please try a different card.",
    "processing_error": "A processing error occurred. Please try again.",
    "rate_limit": "Too many requests. Please wait a moment and try again.",
    "timeout": "The payment provider did not respond in time. Please try again.",
    "api_key_expired": "The restaurant's payment configuration needs attention.",
    "authentication_error": "The restaurant's payment configuration needs attention.",
}

# Provider error codes that indicate the caller should retry
PROVIDER_RETRYABLE_ERRORS: set[str] = {
    "processing_error",
    "rate_limit",
    "lock_timeout",
    "api_connection_error",
    "timeout",
}


def get_user_friendly_provider_message(
    provider_error_code: Optional[str],
    default_message: str = "Payment could not be started. Please try again.",
) -> str:
    """Get a user-friendly message for a provider error code."""
    if provider_error_code and provider_error_code in PROVIDER_ERROR_MESSAGES:
        return PROVIDER_ERROR_MESSAGES[provider_error_code]
    return default_message


def is_provider_error_retryable(provider_error_code: Optional[str]) -> bool:
    """Check if a provider error is likely transient and retryable."""
    return provider_error_code in PROVIDER_RETRYABLE_ERRORS if provider_error_code else False


class SecretVaultError(OrderingError):
    """Credential ciphertext failed authentication or no master key is configured."""

    default_code = ErrorCode.SECRET_DECRYPTION_FAILED
