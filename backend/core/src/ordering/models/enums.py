"""Enumerations shared across orders, payments and webhook processing."""

from enum import Enum


class OrderStatus(str, Enum):
    """Lifecycle status of an order."""

    CREATED = "CREATED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    PAID = "PAID"
    ACCEPTED = "ACCEPTED"
    PREPARING = "PREPARING"
    READY = "READY"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    """Status of one payment attempt with a provider."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class PaymentProvider(str, Enum):
    """Supported payment providers."""

    STRIPE = "STRIPE"
    SQUARE = "SQUARE"

    @classmethod
    def parse(cls, value: str) -> "PaymentProvider":
        """Parse a provider name case-insensitively (e.g. URL path segments)."""
        return cls(value.strip().upper())


class WebhookEventStatus(str, Enum):
    """Processing status of a webhook ledger entry."""

    NO_CONFIG = "NO_CONFIG"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class NormalizedPaymentStatus(str, Enum):
    """Provider-agnostic payment outcome carried by a normalized event."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    PENDING = "pending"


class IdempotencyRecordStatus(str, Enum):
    """State of a cached idempotent request."""

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class ActorRole(str, Enum):
    """Who is performing an order action, as asserted by the auth layer."""

    CUSTOMER = "customer"
    STAFF = "staff"
