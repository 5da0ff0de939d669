"""Request models for order endpoints."""

from pydantic import BaseModel, Field

from ordering.models.enums import OrderStatus, PaymentProvider
from ordering.models.order import CustomerInfo, OrderItemRequest, OrderSummary


class CreateOrderRequest(BaseModel):
    """Customer cart submission."""

    items: list[OrderItemRequest] = Field(..., min_length=1)
    customer: CustomerInfo | None = None
    notes: str | None = Field(default=None, max_length=500)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    initiate_payment: bool = Field(
        default=True,
        description="Start a hosted checkout immediately after the order is stored",
    )
    success_url: str | None = None
    cancel_url: str | None = None
    provider: PaymentProvider | None = Field(
        default=None,
        description="Provider to check out with; defaults to the tenant's active config",
    )


class UpdateOrderStatusRequest(BaseModel):
    """Staff status change."""

    status: OrderStatus


class CancelOrderRequest(BaseModel):
    """Cancellation by a customer or staff member."""

    reason: str | None = Field(default=None, max_length=500)


class OrderListResponse(BaseModel):
    orders: list[OrderSummary]
    count: int
