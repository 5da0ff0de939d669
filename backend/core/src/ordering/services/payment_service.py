"""Payment aggregate: starting checkouts and reading payment records.

Payment status is never written here after creation except through the
guarded reconciliation write, which webhooks and status polling share.
"""

from boto3.dynamodb.conditions import Attr, Key

from ordering.config import get_settings
from ordering.models.enums import (
    NormalizedPaymentStatus,
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
)
from ordering.models.errors import (
    ConfigurationError,
    ErrorCode,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from ordering.models.payment import Payment, PaymentPollResult
from ordering.services.dynamodb import DynamoDBService, get_dynamodb_service
from ordering.services.payment_config_service import PaymentConfigService
from ordering.services.providers import get_provider_adapter
from ordering.services.reconciliation import commit_status
from ordering.services.records import (
    ORDERS_TABLE,
    PAYMENTS_ORDER_INDEX,
    PAYMENTS_TABLE,
    generate_id,
    item_to_order,
    item_to_payment,
    order_key,
    payment_key,
    payment_to_item,
    utc_now,
)
from ordering.utils.logging import get_logger, log_order_transition, log_payment_operation

logger = get_logger(__name__)

# Orders in these states may start (or restart) a checkout
PAYABLE_STATUSES = frozenset({OrderStatus.CREATED, OrderStatus.PAYMENT_PENDING})


class PaymentService:
    """Service for payment records and checkout creation."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        config_service: PaymentConfigService | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self.config_service = config_service or PaymentConfigService(db=self.db)

    def create_payment_intent(
        self,
        tenant_id: str,
        order_id: str,
        success_url: str | None = None,
        cancel_url: str | None = None,
        provider: PaymentProvider | None = None,
    ) -> Payment:
        """Start a hosted checkout for an order.

        The provider is called before anything is written, so a timeout or
        provider failure leaves the order and payments untouched. The Payment
        insert and the order's move to PAYMENT_PENDING commit together.

        Raises:
            NotFoundError: Order does not exist for this tenant
            ValidationError: Order is already paid or cancelled
            ConfigurationError: Tenant has no active provider config
            ProviderError: Provider call failed or timed out
            InvalidTransitionError: Order changed while the checkout was created
        """
        item = self.db.get_item(ORDERS_TABLE, order_key(tenant_id, order_id), consistent_read=True)
        if not item:
            raise NotFoundError(details={"order_id": order_id})
        order = item_to_order(item)

        if order.status not in PAYABLE_STATUSES:
            message = (
                "Order is cancelled"
                if order.status == OrderStatus.CANCELLED
                else "Order is already paid"
            )
            raise ValidationError(
                message=message,
                details={"order_id": order_id, "status": order.status.value},
            )

        config = self.config_service.get_active_config(tenant_id, provider)
        if config is None:
            raise ConfigurationError(
                details={"provider": provider.value} if provider else None,
            )

        settings = get_settings()
        credentials = self.config_service.get_decrypted_credentials(config)
        adapter = get_provider_adapter(config.provider, credentials)

        payment_id = generate_id("PAY")
        base_url = f"{settings.frontend_url}/orders/{order_id}"
        session = adapter.create_checkout_session(
            order_id=order_id,
            amount_cents=order.total_cents,
            currency=order.currency,
            success_url=success_url or f"{base_url}?payment=success",
            cancel_url=cancel_url or f"{base_url}?payment=cancelled",
            metadata={"payment_id": payment_id},
            customer_email=order.customer.email,
            idempotency_key=f"checkout_{payment_id}",
        )

        now = utc_now()
        payment = Payment(
            payment_id=payment_id,
            order_id=order_id,
            tenant_id=tenant_id,
            provider=config.provider,
            provider_payment_id=session.provider_payment_id,
            amount_cents=order.total_cents,
            currency=order.currency,
            status=PaymentStatus.PENDING,
            checkout_url=session.checkout_url,
            created_at=now,
            updated_at=now,
        )

        transact_items: list[dict] = [
            {
                "Put": {
                    "TableName": PAYMENTS_TABLE,
                    "Item": payment_to_item(payment),
                    "ConditionExpression": "attribute_not_exists(provider_payment_key)",
                }
            }
        ]
        if order.status == OrderStatus.CREATED:
            transact_items.append(
                {
                    "Update": {
                        "TableName": ORDERS_TABLE,
                        "Key": order_key(tenant_id, order_id),
                        "UpdateExpression": (
                            "SET #status = :new_status, updated_at = :now, "
                            "#version = #version + :one"
                        ),
                        "ConditionExpression": "#status = :expected",
                        "ExpressionAttributeNames": {"#status": "status", "#version": "version"},
                        "ExpressionAttributeValues": {
                            ":new_status": OrderStatus.PAYMENT_PENDING.value,
                            ":expected": OrderStatus.CREATED.value,
                            ":now": now.isoformat(),
                            ":one": 1,
                        },
                    }
                }
            )
        else:
            transact_items.append(
                {
                    "ConditionCheck": {
                        "TableName": ORDERS_TABLE,
                        "Key": order_key(tenant_id, order_id),
                        "ConditionExpression": "#status = :expected",
                        "ExpressionAttributeNames": {"#status": "status"},
                        "ExpressionAttributeValues": {
                            ":expected": OrderStatus.PAYMENT_PENDING.value,
                        },
                    }
                }
            )

        if not self.db.transact_write(transact_items):
            current = self.db.get_item(
                ORDERS_TABLE, order_key(tenant_id, order_id), consistent_read=True
            )
            current_status = current["status"] if current else order.status.value
            logger.warning(
                "Order %s changed to %s while creating checkout %s",
                order_id,
                current_status,
                session.provider_payment_id,
            )
            raise InvalidTransitionError(current_status, OrderStatus.PAYMENT_PENDING)

        if order.status == OrderStatus.CREATED:
            log_order_transition(
                logger,
                tenant_id=tenant_id,
                order_id=order_id,
                from_status=OrderStatus.CREATED.value,
                to_status=OrderStatus.PAYMENT_PENDING.value,
                actor="payment",
            )
        log_payment_operation(
            logger,
            "create_payment_intent",
            tenant_id=tenant_id,
            order_id=order_id,
            payment_id=payment_id,
            provider=config.provider.value,
            amount_cents=order.total_cents,
            status=payment.status.value,
        )
        return payment

    def get_payment_by_provider_id(
        self,
        provider: PaymentProvider,
        provider_payment_id: str,
        consistent_read: bool = False,
    ) -> Payment | None:
        """Look up the payment a webhook refers to."""
        item = self.db.get_item(
            PAYMENTS_TABLE,
            payment_key(provider, provider_payment_id),
            consistent_read=consistent_read,
        )
        if not item:
            return None
        return item_to_payment(item)

    def get_payments_for_order(self, tenant_id: str, order_id: str) -> list[Payment]:
        """List payments for an order, oldest first."""
        if not self.db.get_item(ORDERS_TABLE, order_key(tenant_id, order_id)):
            raise NotFoundError(details={"order_id": order_id})

        items = self.db.query_by_gsi(
            PAYMENTS_TABLE,
            PAYMENTS_ORDER_INDEX,
            "order_id",
            order_id,
        )
        payments = [item_to_payment(i) for i in items if i.get("tenant_id") == tenant_id]
        return sorted(payments, key=lambda p: p.created_at)

    def get_latest_checkout_url(self, tenant_id: str, order_id: str) -> str | None:
        """Checkout URL of the newest pending payment, if any."""
        items = self.db.query(
            PAYMENTS_TABLE,
            key_condition=Key("order_id").eq(order_id),
            index_name=PAYMENTS_ORDER_INDEX,
            filter_expression=Attr("tenant_id").eq(tenant_id)
            & Attr("status").eq(PaymentStatus.PENDING.value),
        )
        pending = sorted((item_to_payment(i) for i in items), key=lambda p: p.created_at)
        return pending[-1].checkout_url if pending else None

    def poll_payment_status(self, tenant_id: str, order_id: str) -> PaymentPollResult:
        """Ask the provider about the order's newest pending payment.

        A fallback for missed webhooks, enabled with ENABLE_PAYMENT_POLLING.
        The provider's answer is applied with the same guarded Payment and
        Order write as a webhook event, so a paid order stays paid and a
        cancelled order stays cancelled whatever the provider says.

        Raises:
            ForbiddenError: Polling is disabled
            NotFoundError: Order does not exist or has no payments
            ConfigurationError: Tenant has no active config for the payment's provider
            ProviderError: Provider call failed or timed out
        """
        if not get_settings().enable_payment_polling:
            raise ForbiddenError(code=ErrorCode.POLLING_DISABLED)

        payments = self.get_payments_for_order(tenant_id, order_id)
        if not payments:
            raise NotFoundError(code=ErrorCode.PAYMENT_NOT_FOUND, details={"order_id": order_id})

        pending = [p for p in payments if p.status == PaymentStatus.PENDING]
        if not pending:
            return self._poll_result(tenant_id, order_id, payments[-1], None)

        payment = pending[-1]
        config = self.config_service.get_active_config(tenant_id, payment.provider)
        if config is None:
            raise ConfigurationError(details={"provider": payment.provider.value})

        credentials = self.config_service.get_decrypted_credentials(config)
        adapter = get_provider_adapter(config.provider, credentials)
        provider_status = adapter.retrieve_payment_status(payment.provider_payment_id)

        log_payment_operation(
            logger,
            "poll_payment_status",
            tenant_id=tenant_id,
            order_id=order_id,
            payment_id=payment.payment_id,
            provider=payment.provider.value,
            status=provider_status.value,
        )
        if provider_status != NormalizedPaymentStatus.PENDING:
            commit_status(self.db, payment, provider_status, actor="poll")

        return self._poll_result(tenant_id, order_id, payment, provider_status)

    def _poll_result(
        self,
        tenant_id: str,
        order_id: str,
        payment: Payment,
        provider_status: NormalizedPaymentStatus | None,
    ) -> PaymentPollResult:
        order_item = self.db.get_item(
            ORDERS_TABLE, order_key(tenant_id, order_id), consistent_read=True
        )
        if not order_item:
            raise NotFoundError(details={"order_id": order_id})
        current = self.get_payment_by_provider_id(
            payment.provider, payment.provider_payment_id, consistent_read=True
        )
        return PaymentPollResult(
            order_id=order_id,
            order_status=OrderStatus(order_item["status"]),
            payment=current or payment,
            provider_status=provider_status,
        )
