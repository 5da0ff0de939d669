"""Order aggregate: creation, pricing and status changes.

Every read and write is scoped by tenant_id (the table's partition key).
Status writes are conditioned on the status the transition was validated
against, so a racing webhook or cancellation makes the write fail instead of
overwriting a newer state.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from boto3.dynamodb.conditions import Key

from ordering.config import get_settings
from ordering.models.catalog import CatalogItem
from ordering.models.enums import ActorRole, OrderStatus, PaymentProvider
from ordering.models.errors import (
    ConfigurationError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ProviderError,
    SecretVaultError,
    ValidationError,
)
from ordering.models.order import (
    CustomerInfo,
    Order,
    OrderDTO,
    OrderItem,
    OrderItemRequest,
    OrderSummary,
    SelectedOptionSnapshot,
)
from ordering.services.catalog import CatalogClient, DynamoDBCatalogClient
from ordering.services.dynamodb import DynamoDBService, get_dynamodb_service
from ordering.services.payment_service import PaymentService
from ordering.services.records import (
    ORDERS_TABLE,
    generate_id,
    item_to_order,
    order_key,
    order_to_item,
    utc_now,
)
from ordering.services.state_machine import (
    assert_transition,
    can_customer_cancel,
    can_staff_cancel,
    is_terminal_status,
)
from ordering.utils.logging import get_logger, log_order_transition

logger = get_logger(__name__)

MAX_ITEMS_PER_ORDER = 50


def calculate_tax(subtotal_cents: int, tax_rate: Decimal) -> int:
    """Tax in cents, rounded half up."""
    tax = (Decimal(subtotal_cents) * tax_rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(tax)


def price_line_item(request: OrderItemRequest, catalog_item: CatalogItem) -> OrderItem:
    """Validate one requested item against the catalog and snapshot its price.

    Raises:
        ValidationError: Unavailable item, unknown option or value, or a
            selection count outside the option's limits
    """
    if not catalog_item.is_available:
        raise ValidationError(
            message=f"Menu item {catalog_item.name} is not available",
            details={"menu_item_id": request.menu_item_id},
        )

    options_by_id = {opt.option_id: opt for opt in catalog_item.options}
    selected_by_id: dict[str, list[str]] = {}
    for selection in request.selected_options:
        if selection.option_id in selected_by_id:
            raise ValidationError(
                message="Option selected more than once",
                details={"menu_item_id": request.menu_item_id, "option_id": selection.option_id},
            )
        if selection.option_id not in options_by_id:
            raise ValidationError(
                message="Unknown option",
                details={"menu_item_id": request.menu_item_id, "option_id": selection.option_id},
            )
        selected_by_id[selection.option_id] = selection.value_ids

    snapshots: list[SelectedOptionSnapshot] = []
    modifier_total = 0
    for option in catalog_item.options:
        value_ids = selected_by_id.get(option.option_id, [])
        if not option.min_selections <= len(value_ids) <= option.max_selections:
            raise ValidationError(
                message=(
                    f"Option {option.name} requires between {option.min_selections} "
                    f"and {option.max_selections} selections"
                ),
                details={"menu_item_id": request.menu_item_id, "option_id": option.option_id},
            )
        if not value_ids:
            continue
        if len(set(value_ids)) != len(value_ids):
            raise ValidationError(
                message="Option value selected more than once",
                details={"menu_item_id": request.menu_item_id, "option_id": option.option_id},
            )

        values_by_id = {v.value_id: v for v in option.values}
        labels = []
        option_modifier = 0
        for value_id in value_ids:
            value = values_by_id.get(value_id)
            if value is None or not value.is_available:
                raise ValidationError(
                    message="Option value is not available",
                    details={
                        "menu_item_id": request.menu_item_id,
                        "option_id": option.option_id,
                        "value_id": value_id,
                    },
                )
            labels.append(value.label)
            option_modifier += value.price_modifier_cents

        modifier_total += option_modifier
        snapshots.append(
            SelectedOptionSnapshot(
                option_id=option.option_id,
                option_name=option.name,
                value_ids=list(value_ids),
                value_labels=labels,
                price_modifier_cents=option_modifier,
            )
        )

    unit_price = catalog_item.price_cents + modifier_total
    if unit_price < 0:
        raise ValidationError(
            message="Item price cannot be negative",
            details={"menu_item_id": request.menu_item_id},
        )

    return OrderItem(
        menu_item_id=catalog_item.menu_item_id,
        name=catalog_item.name,
        quantity=request.quantity,
        unit_price_cents=unit_price,
        total_price_cents=unit_price * request.quantity,
        selected_options=snapshots,
    )


class OrderService:
    """Service for the order lifecycle."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        catalog: CatalogClient | None = None,
        payment_service: PaymentService | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self.catalog = catalog or DynamoDBCatalogClient(db=self.db)
        self.payment_service = payment_service or PaymentService(db=self.db)

    def create_order(
        self,
        tenant_id: str,
        items: list[OrderItemRequest],
        customer: CustomerInfo | None = None,
        notes: str | None = None,
        currency: str | None = None,
        initiate_payment: bool = True,
        success_url: str | None = None,
        cancel_url: str | None = None,
        provider: PaymentProvider | None = None,
    ) -> OrderDTO:
        """Price a cart against the catalog and persist it as CREATED.

        When initiate_payment is set, a checkout is started right away. If that
        fails for provider or configuration reasons the order is still returned,
        in CREATED and without a checkout URL, so the client can retry payment.

        Raises:
            ValidationError: Empty cart or an item that fails catalog checks
        """
        if not items:
            raise ValidationError(message="Order must contain at least one item")
        if len(items) > MAX_ITEMS_PER_ORDER:
            raise ValidationError(
                message=f"Order cannot contain more than {MAX_ITEMS_PER_ORDER} line items"
            )

        settings = get_settings()
        catalog_items = self.catalog.get_items(tenant_id, [i.menu_item_id for i in items])

        lines: list[OrderItem] = []
        for request in items:
            catalog_item = catalog_items.get(request.menu_item_id)
            if catalog_item is None:
                raise ValidationError(
                    message="Menu item not found",
                    details={"menu_item_id": request.menu_item_id},
                )
            lines.append(price_line_item(request, catalog_item))

        subtotal = sum(line.total_price_cents for line in lines)
        tax = calculate_tax(subtotal, settings.tax_rate)
        now = utc_now()

        order = Order(
            order_id=generate_id("ORD"),
            tenant_id=tenant_id,
            status=OrderStatus.CREATED,
            items=lines,
            subtotal_cents=subtotal,
            tax_cents=tax,
            total_cents=subtotal + tax,
            currency=(currency or settings.default_currency).upper(),
            customer=customer or CustomerInfo(),
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.db.put_item(
            ORDERS_TABLE,
            order_to_item(order),
            condition_expression="attribute_not_exists(order_id)",
        )
        logger.info(
            "Order %s created for tenant %s: %d items, total %d cents",
            order.order_id,
            tenant_id,
            len(lines),
            order.total_cents,
        )

        if not initiate_payment:
            return OrderDTO(**order.model_dump())

        try:
            payment = self.payment_service.create_payment_intent(
                tenant_id,
                order.order_id,
                success_url=success_url,
                cancel_url=cancel_url,
                provider=provider,
            )
        except (ProviderError, ConfigurationError, SecretVaultError) as e:
            logger.warning(
                "Order %s created without checkout: %s (%s)",
                order.order_id,
                e.code.value,
                getattr(e, "internal_message", e.message),
            )
            return OrderDTO(**order.model_dump())

        return OrderDTO(
            **self._get(tenant_id, order.order_id).model_dump(),
            checkout_url=payment.checkout_url,
        )

    def get_order(self, tenant_id: str, order_id: str) -> OrderDTO:
        """Get an order with its pending checkout URL, if any.

        Raises:
            NotFoundError: No such order for this tenant
        """
        order = self._get(tenant_id, order_id)
        checkout_url = None
        if order.status == OrderStatus.PAYMENT_PENDING:
            checkout_url = self.payment_service.get_latest_checkout_url(tenant_id, order_id)
        return OrderDTO(**order.model_dump(), checkout_url=checkout_url)

    def list_orders(
        self,
        tenant_id: str,
        status: OrderStatus | None = None,
        limit: int = 50,
    ) -> list[OrderSummary]:
        """List a tenant's orders, newest first."""
        items = self.db.query(ORDERS_TABLE, Key("tenant_id").eq(tenant_id))
        orders = [item_to_order(i) for i in items]
        if status is not None:
            orders = [o for o in orders if o.status == status]
        orders.sort(key=lambda o: o.created_at, reverse=True)

        return [
            OrderSummary(
                order_id=o.order_id,
                status=o.status,
                customer_name=o.customer.name,
                total_cents=o.total_cents,
                item_count=sum(line.quantity for line in o.items),
                created_at=o.created_at,
                updated_at=o.updated_at,
            )
            for o in orders[:limit]
        ]

    def update_order_status(
        self,
        tenant_id: str,
        order_id: str,
        new_status: OrderStatus,
        actor: ActorRole = ActorRole.STAFF,
    ) -> OrderDTO:
        """Move an order one step along the transition table.

        Raises:
            NotFoundError: No such order for this tenant
            InvalidTransitionError: Transition not in the table, or the order
                changed before the write committed
        """
        order = self._get(tenant_id, order_id, consistent_read=True)
        assert_transition(order.status, new_status)
        updated = self._write_status(order, new_status, actor=actor.value)
        return OrderDTO(**updated.model_dump())

    def cancel_order(
        self,
        tenant_id: str,
        order_id: str,
        actor_is_staff: bool,
        reason: str | None = None,
    ) -> OrderDTO:
        """Cancel an order on behalf of a customer or staff member.

        Customers may cancel until the order is paid; staff may cancel any
        non-terminal order.

        Raises:
            NotFoundError: No such order for this tenant
            InvalidTransitionError: Order already CANCELLED or COMPLETED
            ForbiddenError: Actor may not cancel at the current status
        """
        order = self._get(tenant_id, order_id, consistent_read=True)
        if is_terminal_status(order.status):
            raise InvalidTransitionError(order.status, OrderStatus.CANCELLED)

        allowed = can_staff_cancel(order.status) if actor_is_staff else can_customer_cancel(
            order.status
        )
        if not allowed:
            raise ForbiddenError(
                message=f"Order cannot be cancelled by customer once {order.status.value}",
                details={"order_id": order_id, "status": order.status.value},
            )

        actor = ActorRole.STAFF if actor_is_staff else ActorRole.CUSTOMER
        updated = self._write_status(
            order,
            OrderStatus.CANCELLED,
            actor=actor.value,
            extra={"cancellation_reason": reason} if reason else None,
        )
        return OrderDTO(**updated.model_dump())

    def _get(self, tenant_id: str, order_id: str, consistent_read: bool = False) -> Order:
        item = self.db.get_item(
            ORDERS_TABLE, order_key(tenant_id, order_id), consistent_read=consistent_read
        )
        if not item:
            raise NotFoundError(details={"order_id": order_id})
        return item_to_order(item)

    def _write_status(
        self,
        order: Order,
        new_status: OrderStatus,
        actor: str,
        extra: dict[str, Any] | None = None,
    ) -> Order:
        """Write a validated status change, conditioned on the status read."""
        now = utc_now()
        set_parts = ["#status = :new_status", "updated_at = :now", "#version = #version + :one"]
        values: dict[str, Any] = {
            ":new_status": new_status.value,
            ":expected": order.status.value,
            ":now": now.isoformat(),
            ":one": 1,
        }
        for name, value in (extra or {}).items():
            set_parts.append(f"{name} = :{name}")
            values[f":{name}"] = value

        attrs = self.db.update_item(
            ORDERS_TABLE,
            order_key(order.tenant_id, order.order_id),
            update_expression="SET " + ", ".join(set_parts),
            expression_attribute_values=values,
            expression_attribute_names={"#status": "status", "#version": "version"},
            condition_expression="#status = :expected",
        )
        if attrs is None:
            current = self._get(order.tenant_id, order.order_id, consistent_read=True)
            logger.warning(
                "Order %s changed from %s to %s before %s could be applied",
                order.order_id,
                order.status.value,
                current.status.value,
                new_status.value,
            )
            raise InvalidTransitionError(current.status, new_status)

        log_order_transition(
            logger,
            tenant_id=order.tenant_id,
            order_id=order.order_id,
            from_status=order.status.value,
            to_status=new_status.value,
            actor=actor,
        )
        return item_to_order(attrs)
