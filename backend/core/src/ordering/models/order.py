"""Order models: creation requests, immutable line-item snapshots and the aggregate."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import OrderStatus


class SelectedOption(BaseModel):
    """Customer's choice for one menu item option."""

    model_config = ConfigDict(extra="forbid")

    option_id: str = Field(..., min_length=1)
    value_ids: list[str] = Field(default_factory=list)


class OrderItemRequest(BaseModel):
    """One requested line item. Prices are never accepted from the client."""

    model_config = ConfigDict(extra="forbid")

    menu_item_id: str = Field(..., min_length=1, examples=["ITEM-MARGHERITA"])
    quantity: int = Field(..., ge=1, le=99)
    selected_options: list[SelectedOption] = Field(default_factory=list)


class CustomerInfo(BaseModel):
    """Customer contact details captured at checkout."""

    name: str | None = Field(default=None, max_length=200)
    email: str | None = Field(
        default=None,
        max_length=320,
        pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
    )
    phone: str | None = Field(default=None, max_length=40)


class SelectedOptionSnapshot(BaseModel):
    """Priced snapshot of a selected option, frozen at order creation."""

    option_id: str
    option_name: str
    value_ids: list[str]
    value_labels: list[str]
    price_modifier_cents: int


class OrderItem(BaseModel):
    """Immutable price/quantity snapshot of a line item."""

    menu_item_id: str
    name: str
    quantity: int = Field(..., ge=1)
    unit_price_cents: int = Field(..., ge=0)
    total_price_cents: int = Field(..., ge=0)
    selected_options: list[SelectedOptionSnapshot] = Field(default_factory=list)


class Order(BaseModel):
    """A customer's purchase, always scoped to a tenant.

    Totals are computed once at creation and never recomputed.
    """

    order_id: str = Field(..., description="Unique order ID", examples=["ORD-1A2B3C4D5E6F"])
    tenant_id: str = Field(..., description="Owning tenant (restaurant)")
    status: OrderStatus
    items: list[OrderItem]
    subtotal_cents: int = Field(..., ge=0)
    tax_cents: int = Field(..., ge=0)
    total_cents: int = Field(..., ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    customer: CustomerInfo = Field(default_factory=CustomerInfo)
    notes: str | None = None
    cancellation_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    version: int = Field(default=1, ge=1, description="Incremented on every status write")


class OrderDTO(Order):
    """Order as returned to collaborators, with the checkout link when one exists."""

    checkout_url: str | None = Field(
        default=None,
        description="Provider checkout URL for the pending payment",
    )


class OrderSummary(BaseModel):
    """Condensed order for staff listings."""

    order_id: str
    status: OrderStatus
    customer_name: str | None = None
    total_cents: int
    item_count: int
    created_at: datetime
    updated_at: datetime
