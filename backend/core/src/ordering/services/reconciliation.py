"""Guarded Payment and Order status writes.

Webhook reconciliation and payment polling both end here. The current Payment
and Order are read consistently, each move is checked against its transition
table and every write is conditioned on the status that was read. A move the
tables reject is skipped and logged, never forced.
"""

from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field

from ordering.models.enums import NormalizedPaymentStatus, OrderStatus, PaymentStatus
from ordering.models.payment import Payment
from ordering.services.dynamodb import DynamoDBService
from ordering.services.records import ORDERS_TABLE, PAYMENTS_TABLE, order_key, payment_key, utc_now
from ordering.services.state_machine import is_valid_payment_transition, is_valid_transition
from ordering.utils.logging import get_logger, log_order_transition, log_payment_operation

logger = get_logger(__name__)

# Attempts at the status transaction when the Payment or Order moves underneath
MAX_APPLY_ATTEMPTS = 3

PAYMENT_STATUS_FOR_EVENT: dict[NormalizedPaymentStatus, PaymentStatus] = {
    NormalizedPaymentStatus.SUCCEEDED: PaymentStatus.COMPLETED,
    NormalizedPaymentStatus.FAILED: PaymentStatus.FAILED,
    NormalizedPaymentStatus.REFUNDED: PaymentStatus.REFUNDED,
}

# Refunds never move the order; staff decide what a refund means for it
ORDER_STATUS_FOR_EVENT: dict[NormalizedPaymentStatus, OrderStatus] = {
    NormalizedPaymentStatus.SUCCEEDED: OrderStatus.PAID,
    NormalizedPaymentStatus.FAILED: OrderStatus.CANCELLED,
}


class ReconciliationConflictError(Exception):
    """The payment or order kept changing while a status was being applied."""


class StatusWrite(BaseModel):
    """Transaction items for one provider status, with the moves they make."""

    items: list[dict[str, Any]] = Field(default_factory=list)
    payment_change: tuple[PaymentStatus, PaymentStatus] | None = None
    order_change: tuple[OrderStatus, OrderStatus] | None = None


def build_status_write(
    db: DynamoDBService,
    payment: Payment,
    status: NormalizedPaymentStatus,
    event_id: str | None = None,
) -> StatusWrite:
    """Read the current Payment and Order and build the legal updates."""
    now = utc_now().isoformat()
    write = StatusWrite()

    target_payment = PAYMENT_STATUS_FOR_EVENT.get(status)
    if target_payment is not None:
        item = db.get_item(
            PAYMENTS_TABLE,
            payment_key(payment.provider, payment.provider_payment_id),
            consistent_read=True,
        )
        current_payment = PaymentStatus(item["status"]) if item else None
        if current_payment is not None and is_valid_payment_transition(
            current_payment, target_payment
        ):
            write.items.append(
                _payment_update(payment, current_payment, target_payment, now, event_id)
            )
            write.payment_change = (current_payment, target_payment)
        else:
            logger.info(
                "Payment %s stays %s; %s status does not move it to %s",
                payment.payment_id,
                current_payment.value if current_payment else "missing",
                status.value,
                target_payment.value,
            )

    target_order = ORDER_STATUS_FOR_EVENT.get(status)
    if target_order is not None:
        item = db.get_item(
            ORDERS_TABLE,
            order_key(payment.tenant_id, payment.order_id),
            consistent_read=True,
        )
        current_order = OrderStatus(item["status"]) if item else None
        if current_order is not None and is_valid_transition(current_order, target_order):
            write.items.append(_order_update(payment, current_order, target_order, now))
            write.order_change = (current_order, target_order)
        else:
            logger.info(
                "Order %s stays %s; %s status does not move it to %s",
                payment.order_id,
                current_order.value if current_order else "missing",
                status.value,
                target_order.value,
            )

    return write


def commit_status(
    db: DynamoDBService,
    payment: Payment,
    status: NormalizedPaymentStatus,
    *,
    actor: str,
    event_id: str | None = None,
    extra_items: list[dict[str, Any]] | None = None,
    still_current: Callable[[], bool] | None = None,
) -> bool:
    """Apply a provider status to a Payment and its Order in one transaction.

    The updates are rebuilt from fresh reads when the transaction is
    cancelled. ``extra_items`` ride along in every attempt (the webhook
    ledger's completion item).

    Args:
        actor: Recorded on the order transition log line
        event_id: Provider event that carried the status, if any
        still_current: Called after a cancelled attempt; returning False
            stops without retrying

    Returns:
        False if still_current gave up, True once committed (or when
        nothing was left to write)

    Raises:
        ReconciliationConflictError: Every attempt was cancelled
    """
    for attempt in range(1, MAX_APPLY_ATTEMPTS + 1):
        write = build_status_write(db, payment, status, event_id)
        items = write.items + list(extra_items or [])
        if not items:
            return True

        if db.transact_write(items):
            _log_status_write(write, payment, actor, event_id)
            return True

        if still_current is not None and not still_current():
            return False

        logger.info(
            "Payment %s or order %s changed during apply, retrying (attempt %d)",
            payment.payment_id,
            payment.order_id,
            attempt,
        )

    raise ReconciliationConflictError(
        f"Order {payment.order_id} changed on every attempt to apply {status.value}"
    )


def _log_status_write(
    write: StatusWrite,
    payment: Payment,
    actor: str,
    event_id: str | None,
) -> None:
    if write.payment_change is not None:
        log_payment_operation(
            logger,
            "status_change",
            tenant_id=payment.tenant_id,
            order_id=payment.order_id,
            payment_id=payment.payment_id,
            provider=payment.provider.value,
            status=write.payment_change[1].value,
            from_status=write.payment_change[0].value,
            actor=actor,
        )
    if write.order_change is not None:
        log_order_transition(
            logger,
            tenant_id=payment.tenant_id,
            order_id=payment.order_id,
            from_status=write.order_change[0].value,
            to_status=write.order_change[1].value,
            actor=actor,
            event_id=event_id,
        )


def _payment_update(
    payment: Payment,
    current: PaymentStatus,
    target: PaymentStatus,
    now: str,
    event_id: str | None,
) -> dict[str, Any]:
    update_expression = "SET #status = :status, updated_at = :now"
    values: dict[str, Any] = {
        ":status": target.value,
        ":expected": current.value,
        ":now": now,
    }
    if event_id:
        update_expression += ", last_event_id = :event_id"
        values[":event_id"] = event_id

    return {
        "Update": {
            "TableName": PAYMENTS_TABLE,
            "Key": payment_key(payment.provider, payment.provider_payment_id),
            "UpdateExpression": update_expression,
            "ConditionExpression": "#status = :expected",
            "ExpressionAttributeNames": {"#status": "status"},
            "ExpressionAttributeValues": values,
        }
    }


def _order_update(
    payment: Payment,
    current: OrderStatus,
    target: OrderStatus,
    now: str,
) -> dict[str, Any]:
    return {
        "Update": {
            "TableName": ORDERS_TABLE,
            "Key": order_key(payment.tenant_id, payment.order_id),
            "UpdateExpression": (
                "SET #status = :new_status, updated_at = :now, #version = #version + :one"
            ),
            "ConditionExpression": "#status = :expected",
            "ExpressionAttributeNames": {"#status": "status", "#version": "version"},
            "ExpressionAttributeValues": {
                ":new_status": target.value,
                ":expected": current.value,
                ":now": now,
                ":one": 1,
            },
        }
    }
