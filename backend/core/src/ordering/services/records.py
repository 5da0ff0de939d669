"""Table names, ID generation and DynamoDB item mapping for orders and payments."""

import uuid
from datetime import datetime, timezone
from typing import Any

from ordering.models.enums import OrderStatus, PaymentProvider, PaymentStatus
from ordering.models.order import CustomerInfo, Order, OrderItem
from ordering.models.payment import Payment

ORDERS_TABLE = "orders"
PAYMENTS_TABLE = "payments"
PAYMENTS_ORDER_INDEX = "order_id-index"


def generate_id(prefix: str) -> str:
    """Generate a prefixed ID (e.g. ``ORD-1A2B3C4D5E6F``)."""
    return f"{prefix}-{uuid.uuid4().hex[:12].upper()}"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def order_key(tenant_id: str, order_id: str) -> dict[str, str]:
    return {"tenant_id": tenant_id, "order_id": order_id}


def payment_key(provider: PaymentProvider, provider_payment_id: str) -> dict[str, str]:
    return {"provider_payment_key": f"{provider.value}#{provider_payment_id}"}


def order_to_item(order: Order) -> dict[str, Any]:
    item: dict[str, Any] = order.model_dump(mode="json", exclude_none=True)
    return item


def item_to_order(item: dict[str, Any]) -> Order:
    """Convert a DynamoDB item to Order (numbers arrive as Decimal)."""
    return Order(
        order_id=item["order_id"],
        tenant_id=item["tenant_id"],
        status=OrderStatus(item["status"]),
        items=[OrderItem.model_validate(line) for line in item.get("items", [])],
        subtotal_cents=int(item["subtotal_cents"]),
        tax_cents=int(item["tax_cents"]),
        total_cents=int(item["total_cents"]),
        currency=item.get("currency", "USD"),
        customer=CustomerInfo.model_validate(item.get("customer") or {}),
        notes=item.get("notes"),
        cancellation_reason=item.get("cancellation_reason"),
        created_at=datetime.fromisoformat(item["created_at"]),
        updated_at=datetime.fromisoformat(item["updated_at"]),
        version=int(item.get("version", 1)),
    )


def payment_to_item(payment: Payment) -> dict[str, Any]:
    item: dict[str, Any] = payment.model_dump(mode="json", exclude_none=True)
    item.update(payment_key(payment.provider, payment.provider_payment_id))
    return item


def item_to_payment(item: dict[str, Any]) -> Payment:
    """Convert a DynamoDB item to Payment."""
    return Payment(
        payment_id=item["payment_id"],
        order_id=item["order_id"],
        tenant_id=item["tenant_id"],
        provider=PaymentProvider(item["provider"]),
        provider_payment_id=item["provider_payment_id"],
        amount_cents=int(item["amount_cents"]),
        currency=item.get("currency", "USD"),
        status=PaymentStatus(item["status"]),
        checkout_url=item.get("checkout_url"),
        metadata=dict(item.get("metadata") or {}),
        created_at=datetime.fromisoformat(item["created_at"]),
        updated_at=datetime.fromisoformat(item["updated_at"]),
    )
