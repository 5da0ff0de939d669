"""Integration tests for polling a provider for payment status.

The fake adapter stands in for Stripe; its retrieve_payment_status answer is
set per test and applied through the same guarded write webhooks use.
"""

import pytest

from ordering.config import get_settings
from ordering.models.enums import NormalizedPaymentStatus, OrderStatus, PaymentStatus
from ordering.models.errors import ErrorCode, ForbiddenError, NotFoundError
from ordering.models.order import OrderItemRequest
from ordering.services.dynamodb import DynamoDBService
from ordering.services.records import ORDERS_TABLE, order_key

pytestmark = pytest.mark.integration

TENANT_ID = "tenant-bistro"


def _order_row(db: DynamoDBService, order_id: str) -> dict:
    return db.get_item(ORDERS_TABLE, order_key(TENANT_ID, order_id), consistent_read=True)


def _set_status(db: DynamoDBService, order_id: str, status: OrderStatus) -> None:
    db.update_item(
        ORDERS_TABLE,
        order_key(TENANT_ID, order_id),
        update_expression="SET #status = :status",
        expression_attribute_values={":status": status.value},
        expression_attribute_names={"#status": "status"},
    )


@pytest.fixture
def polling_enabled(monkeypatch):
    monkeypatch.setenv("ENABLE_PAYMENT_POLLING", "true")
    get_settings.cache_clear()


@pytest.fixture
def pending_order(order_service, seeded_menu, stripe_config, fake_adapter):
    """Order in PAYMENT_PENDING with Stripe session cs_test_1."""
    return order_service.create_order(
        TENANT_ID, [OrderItemRequest(menu_item_id="ITEM-SODA", quantity=1)]
    )


class TestPollingGate:
    def test_disabled_by_default(self, payment_service, pending_order, fake_adapter):
        with pytest.raises(ForbiddenError) as exc_info:
            payment_service.poll_payment_status(TENANT_ID, pending_order.order_id)

        assert exc_info.value.code == ErrorCode.POLLING_DISABLED
        fake_adapter.retrieve_payment_status.assert_not_called()

    def test_unknown_order(self, payment_service, polling_enabled, db):
        with pytest.raises(NotFoundError) as exc_info:
            payment_service.poll_payment_status(TENANT_ID, "ORD-MISSING")

        assert exc_info.value.code == ErrorCode.ORDER_NOT_FOUND

    def test_order_without_payments(
        self, payment_service, order_service, seeded_menu, polling_enabled, fake_adapter
    ):
        order = order_service.create_order(
            TENANT_ID,
            [OrderItemRequest(menu_item_id="ITEM-SODA", quantity=1)],
            initiate_payment=False,
        )

        with pytest.raises(NotFoundError) as exc_info:
            payment_service.poll_payment_status(TENANT_ID, order.order_id)

        assert exc_info.value.code == ErrorCode.PAYMENT_NOT_FOUND
        fake_adapter.retrieve_payment_status.assert_not_called()


class TestPollingApplies:
    def test_paid_session_marks_order_paid(
        self, payment_service, db, pending_order, polling_enabled, fake_adapter
    ):
        fake_adapter.retrieve_payment_status.return_value = NormalizedPaymentStatus.SUCCEEDED

        result = payment_service.poll_payment_status(TENANT_ID, pending_order.order_id)

        fake_adapter.retrieve_payment_status.assert_called_once_with("cs_test_1")
        assert result.provider_status == NormalizedPaymentStatus.SUCCEEDED
        assert result.order_status == OrderStatus.PAID
        assert result.payment.status == PaymentStatus.COMPLETED
        row = _order_row(db, pending_order.order_id)
        assert row["status"] == "PAID"
        assert int(row["version"]) == pending_order.version + 1

    def test_expired_session_cancels_order(
        self, payment_service, pending_order, polling_enabled, fake_adapter
    ):
        fake_adapter.retrieve_payment_status.return_value = NormalizedPaymentStatus.FAILED

        result = payment_service.poll_payment_status(TENANT_ID, pending_order.order_id)

        assert result.order_status == OrderStatus.CANCELLED
        assert result.payment.status == PaymentStatus.FAILED

    def test_pending_session_changes_nothing(
        self, payment_service, db, pending_order, polling_enabled, fake_adapter
    ):
        fake_adapter.retrieve_payment_status.return_value = NormalizedPaymentStatus.PENDING

        result = payment_service.poll_payment_status(TENANT_ID, pending_order.order_id)

        assert result.order_status == OrderStatus.PAYMENT_PENDING
        assert result.payment.status == PaymentStatus.PENDING
        assert int(_order_row(db, pending_order.order_id)["version"]) == pending_order.version

    def test_cancelled_order_is_not_revived(
        self, payment_service, db, pending_order, polling_enabled, fake_adapter
    ):
        _set_status(db, pending_order.order_id, OrderStatus.CANCELLED)
        fake_adapter.retrieve_payment_status.return_value = NormalizedPaymentStatus.SUCCEEDED

        result = payment_service.poll_payment_status(TENANT_ID, pending_order.order_id)

        assert result.order_status == OrderStatus.CANCELLED
        assert result.payment.status == PaymentStatus.COMPLETED

    def test_settled_payment_is_not_polled_again(
        self, payment_service, pending_order, polling_enabled, fake_adapter
    ):
        fake_adapter.retrieve_payment_status.return_value = NormalizedPaymentStatus.SUCCEEDED
        payment_service.poll_payment_status(TENANT_ID, pending_order.order_id)
        fake_adapter.retrieve_payment_status.reset_mock()

        result = payment_service.poll_payment_status(TENANT_ID, pending_order.order_id)

        fake_adapter.retrieve_payment_status.assert_not_called()
        assert result.provider_status is None
        assert result.order_status == OrderStatus.PAID
        assert result.payment.status == PaymentStatus.COMPLETED
