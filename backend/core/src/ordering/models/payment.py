"""Payment model for one collection attempt against one provider."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import NormalizedPaymentStatus, OrderStatus, PaymentProvider, PaymentStatus


class Payment(BaseModel):
    """A payment attempt for an order.

    ``(provider, provider_payment_id)`` is the join key used to find the
    payment from an inbound webhook. Provider and order never change after
    creation; status moves only through the payment transition table.
    """

    payment_id: str = Field(..., description="Unique payment ID", examples=["PAY-ABC123DEF456"])
    order_id: str = Field(..., description="Order being paid for")
    tenant_id: str = Field(..., description="Owning tenant")
    provider: PaymentProvider
    provider_payment_id: str = Field(
        ...,
        description="Provider checkout/session identifier",
        examples=["cs_test_abc123def456"],
    )
    amount_cents: int = Field(..., ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    status: PaymentStatus
    checkout_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class CheckoutSession(BaseModel):
    """Result of starting an external checkout flow."""

    provider_payment_id: str
    checkout_url: str
    expires_at: datetime | None = None


class PaymentPollResult(BaseModel):
    """An order's payment state after asking the provider directly."""

    order_id: str
    order_status: OrderStatus
    payment: Payment
    provider_status: NormalizedPaymentStatus | None = Field(
        default=None,
        description="What the provider reported; null when no pending payment was polled",
    )
