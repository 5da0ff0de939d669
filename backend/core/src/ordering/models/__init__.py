"""Pydantic models for orders, payments, webhooks and idempotency records."""

from .catalog import CatalogItem, CatalogOption, CatalogOptionValue
from .enums import (
    ActorRole,
    IdempotencyRecordStatus,
    NormalizedPaymentStatus,
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
    WebhookEventStatus,
)
from .errors import (
    ERROR_MESSAGES,
    ERROR_RECOVERY,
    ConfigurationError,
    ErrorCode,
    ErrorResponse,
    ForbiddenError,
    IdempotencyConflictError,
    InvalidIdempotencyKeyError,
    InvalidTransitionError,
    NotFoundError,
    OrderingError,
    ProviderError,
    SecretVaultError,
    ValidationError,
    WebhookVerificationError,
    get_user_friendly_provider_message,
    is_provider_error_retryable,
)
from .idempotency import CachedResponse, IdempotencyRecord
from .order import (
    CustomerInfo,
    Order,
    OrderDTO,
    OrderItem,
    OrderItemRequest,
    OrderSummary,
    SelectedOption,
    SelectedOptionSnapshot,
)
from .payment import CheckoutSession, Payment
from .payment_config import (
    ConnectionTestResult,
    PaymentConfig,
    PaymentConfigSummary,
    PaymentConfigUpdate,
    ProviderCredentials,
)
from .webhook import NormalizedEvent, WebhookEnvelope, WebhookLedgerEntry, WebhookOutcome

__all__ = [
    # Enums
    "ActorRole",
    "IdempotencyRecordStatus",
    "NormalizedPaymentStatus",
    "OrderStatus",
    "PaymentProvider",
    "PaymentStatus",
    "WebhookEventStatus",
    # Catalog
    "CatalogItem",
    "CatalogOption",
    "CatalogOptionValue",
    # Order
    "CustomerInfo",
    "Order",
    "OrderDTO",
    "OrderItem",
    "OrderItemRequest",
    "OrderSummary",
    "SelectedOption",
    "SelectedOptionSnapshot",
    # Payment
    "CheckoutSession",
    "Payment",
    # Payment config
    "ConnectionTestResult",
    "PaymentConfig",
    "PaymentConfigSummary",
    "PaymentConfigUpdate",
    "ProviderCredentials",
    # Webhooks
    "NormalizedEvent",
    "WebhookEnvelope",
    "WebhookLedgerEntry",
    "WebhookOutcome",
    # Idempotency
    "CachedResponse",
    "IdempotencyRecord",
    # Errors
    "ConfigurationError",
    "ErrorCode",
    "ErrorResponse",
    "ERROR_MESSAGES",
    "ERROR_RECOVERY",
    "ForbiddenError",
    "IdempotencyConflictError",
    "InvalidIdempotencyKeyError",
    "InvalidTransitionError",
    "NotFoundError",
    "OrderingError",
    "ProviderError",
    "SecretVaultError",
    "ValidationError",
    "WebhookVerificationError",
    "get_user_friendly_provider_message",
    "is_provider_error_retryable",
]
