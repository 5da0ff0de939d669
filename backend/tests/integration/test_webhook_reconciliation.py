"""Integration tests for webhook reconciliation end to end.

Orders are created through the order service with a fake checkout adapter,
then signed Stripe and Square webhooks are fed to the handler exactly as the
HTTP route would pass them.
"""

import hashlib
import hmac
import json
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import patch

import pytest
from pydantic import SecretStr

from ordering.models.enums import (
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
    WebhookEventStatus,
)
from ordering.models.order import OrderItemRequest
from ordering.models.payment_config import PaymentConfigUpdate
from ordering.services.dynamodb import DynamoDBService
from ordering.services.providers import StripeAdapter
from ordering.services.providers.square_provider import compute_signature
from ordering.services.records import ORDERS_TABLE, PAYMENTS_TABLE, order_key, payment_key
from ordering.services.webhook_handler import WebhookHandler
from ordering.services.webhook_ledger import WEBHOOK_EVENTS_TABLE, ledger_key

pytestmark = pytest.mark.integration

# === Test Configuration ===

TABLE_PREFIX = "test-orders"
TENANT_ID = "tenant-bistro"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret_for_testing"
SQUARE_SIGNATURE_KEY = "sq_signature_key_for_testing"
SQUARE_NOTIFICATION_URL = "https://api.example.com/api/webhooks/square"
STRIPE = PaymentProvider.STRIPE
SQUARE = PaymentProvider.SQUARE


# === Helper Functions ===


def _stripe_event(
    event_id: str,
    session_id: str = "cs_test_1",
    event_type: str = "checkout.session.completed",
    payment_status: str = "paid",
) -> bytes:
    event = {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": payment_status,
                "metadata": {"tenant_id": TENANT_ID},
            }
        },
    }
    return json.dumps(event).encode()


def _stripe_headers(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET) -> dict[str, str]:
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode(), f"{timestamp}.{payload.decode()}".encode(), hashlib.sha256
    ).hexdigest()
    return {"stripe-signature": f"t={timestamp},v1={signature}"}


def _square_event(event_id: str, kind: str, status: str, order_id: str = "cs_test_1") -> bytes:
    event = {
        "merchant_id": "MERCHANT1",
        "type": f"{kind}.updated",
        "event_id": event_id,
        "created_at": "2026-01-01T12:00:00Z",
        "data": {
            "type": kind,
            "id": f"{kind.upper()}_1",
            "object": {kind: {"id": f"{kind.upper()}_1", "order_id": order_id, "status": status}},
        },
    }
    return json.dumps(event).encode()


def _square_headers(payload: bytes) -> dict[str, str]:
    signature = compute_signature(SQUARE_SIGNATURE_KEY, SQUARE_NOTIFICATION_URL, payload)
    return {"x-square-hmacsha256-signature": signature}


def _order(db, order_id: str) -> dict[str, Any]:
    return db.get_item(ORDERS_TABLE, order_key(TENANT_ID, order_id), consistent_read=True)


def _payment(db, provider: PaymentProvider = STRIPE, payment_id: str = "cs_test_1"):
    return db.get_item(PAYMENTS_TABLE, payment_key(provider, payment_id), consistent_read=True)


def _ledger_row(db, event_id: str, provider: PaymentProvider = STRIPE):
    return db.get_item(WEBHOOK_EVENTS_TABLE, ledger_key(provider, event_id), consistent_read=True)


# === Test Fixtures ===


@pytest.fixture
def pending_order(order_service, seeded_menu, stripe_config, fake_adapter):
    """Order in PAYMENT_PENDING with Stripe session cs_test_1."""
    order = order_service.create_order(
        TENANT_ID, [OrderItemRequest(menu_item_id="ITEM-SODA", quantity=1)]
    )
    assert order.status == OrderStatus.PAYMENT_PENDING
    return order


@pytest.fixture
def square_order(order_service, seeded_menu, square_config, fake_adapter):
    """Order in PAYMENT_PENDING with Square order cs_test_1."""
    order = order_service.create_order(
        TENANT_ID,
        [OrderItemRequest(menu_item_id="ITEM-SODA", quantity=1)],
        provider=SQUARE,
    )
    assert order.status == OrderStatus.PAYMENT_PENDING
    return order


class TestPaymentSucceeded:
    def test_success_marks_order_paid(self, webhook_handler, db, pending_order):
        """CREATED -> PAYMENT_PENDING -> PAID with Payment COMPLETED."""
        body = _stripe_event("evt_success_1")

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.status_code == 200
        assert outcome.result == "completed"
        assert outcome.acknowledged is True
        assert outcome.event_id == "evt_success_1"

        order = _order(db, pending_order.order_id)
        assert order["status"] == "PAID"
        assert int(order["version"]) == pending_order.version + 1

        payment = _payment(db)
        assert payment["status"] == PaymentStatus.COMPLETED.value
        assert payment["last_event_id"] == "evt_success_1"

        ledger = _ledger_row(db, "evt_success_1")
        assert ledger["status"] == WebhookEventStatus.COMPLETED.value
        assert ledger["tenant_id"] == TENANT_ID

    def test_redelivery_is_acknowledged_without_effect(self, webhook_handler, db, pending_order):
        body = _stripe_event("evt_success_1")
        webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))
        version = _order(db, pending_order.order_id)["version"]

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.status_code == 200
        assert outcome.result == "duplicate"
        assert _order(db, pending_order.order_id)["version"] == version
        assert int(_ledger_row(db, "evt_success_1")["attempts"]) == 1

    def test_late_success_on_cancelled_order(
        self, webhook_handler, order_service, db, pending_order
    ):
        """Payment COMPLETED for audit, order stays CANCELLED."""
        order_service.cancel_order(TENANT_ID, pending_order.order_id, actor_is_staff=False)
        body = _stripe_event("evt_late_1")

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.result == "completed"
        assert _order(db, pending_order.order_id)["status"] == "CANCELLED"
        assert _payment(db)["status"] == "COMPLETED"
        assert _ledger_row(db, "evt_late_1")["status"] == "COMPLETED"

    def test_second_success_event_on_paid_order(self, webhook_handler, db, pending_order):
        first = _stripe_event("evt_first")
        webhook_handler.handle_provider_webhook(STRIPE, first, _stripe_headers(first))
        version = _order(db, pending_order.order_id)["version"]

        second = _stripe_event(
            "evt_second", event_type="checkout.session.async_payment_succeeded"
        )
        outcome = webhook_handler.handle_provider_webhook(STRIPE, second, _stripe_headers(second))

        assert outcome.result == "completed"
        assert _order(db, pending_order.order_id)["version"] == version

    def test_unpaid_completion_only_settles_ledger(self, webhook_handler, db, pending_order):
        body = _stripe_event("evt_unpaid", payment_status="unpaid")

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.result == "completed"
        assert _order(db, pending_order.order_id)["status"] == "PAYMENT_PENDING"
        assert _payment(db)["status"] == "PENDING"
        assert _ledger_row(db, "evt_unpaid")["status"] == "COMPLETED"


class TestPaymentFailed:
    @pytest.mark.parametrize(
        "event_type",
        ["checkout.session.expired", "checkout.session.async_payment_failed"],
    )
    def test_failure_cancels_pending_order(self, webhook_handler, db, pending_order, event_type):
        body = _stripe_event("evt_fail_1", event_type=event_type, payment_status="unpaid")

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.result == "completed"
        assert _payment(db)["status"] == "FAILED"
        assert _order(db, pending_order.order_id)["status"] == "CANCELLED"

    def test_failure_after_success_changes_nothing(self, webhook_handler, db, pending_order):
        paid = _stripe_event("evt_paid_first")
        webhook_handler.handle_provider_webhook(STRIPE, paid, _stripe_headers(paid))
        version = _order(db, pending_order.order_id)["version"]

        expired = _stripe_event(
            "evt_expired_late", event_type="checkout.session.expired", payment_status="unpaid"
        )
        outcome = webhook_handler.handle_provider_webhook(STRIPE, expired, _stripe_headers(expired))

        assert outcome.result == "completed"
        assert _payment(db)["status"] == "COMPLETED"
        assert _payment(db)["last_event_id"] == "evt_paid_first"
        assert _order(db, pending_order.order_id)["status"] == "PAID"
        assert _order(db, pending_order.order_id)["version"] == version
        assert _ledger_row(db, "evt_expired_late")["status"] == "COMPLETED"


class TestRejections:
    def test_invalid_signature(self, webhook_handler, db, pending_order):
        """400, VERIFICATION_FAILED recorded, nothing else changes."""
        body = _stripe_event("evt_forged")

        outcome = webhook_handler.handle_provider_webhook(
            STRIPE, body, _stripe_headers(body, secret="whsec_attacker")
        )

        assert outcome.status_code == 400
        assert outcome.result == "verification_failed"
        assert _order(db, pending_order.order_id)["status"] == "PAYMENT_PENDING"
        assert _payment(db)["status"] == "PENDING"
        assert _ledger_row(db, "evt_forged")["status"] == "VERIFICATION_FAILED"

    def test_valid_redelivery_after_rejection(self, webhook_handler, db, pending_order):
        body = _stripe_event("evt_retry")
        webhook_handler.handle_provider_webhook(
            STRIPE, body, _stripe_headers(body, secret="whsec_wrong")
        )

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.result == "completed"
        assert _order(db, pending_order.order_id)["status"] == "PAID"
        assert int(_ledger_row(db, "evt_retry")["attempts"]) == 2

    def test_tampered_body(self, webhook_handler, db, pending_order):
        body = _stripe_event("evt_tampered", payment_status="unpaid")
        headers = _stripe_headers(body)
        tampered = body.replace(b'"unpaid"', b'"paid"')

        outcome = webhook_handler.handle_provider_webhook(STRIPE, tampered, headers)

        assert outcome.result == "verification_failed"
        assert _order(db, pending_order.order_id)["status"] == "PAYMENT_PENDING"

    def test_missing_signature_header(self, webhook_handler, pending_order):
        body = _stripe_event("evt_unsigned")

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, {})

        assert outcome.status_code == 400
        assert outcome.result == "rejected"

    def test_malformed_body(self, webhook_handler, dynamodb_tables):
        outcome = webhook_handler.handle_provider_webhook(
            STRIPE, b"not json", {"stripe-signature": "t=1,v1=abc"}
        )

        assert outcome.status_code == 400
        assert outcome.result == "malformed"

    @pytest.mark.parametrize("data", ["oops", {"object": "cs_test_1"}, [{"object": {}}]])
    def test_body_with_non_object_data(self, webhook_handler, db, data):
        event = {"id": "evt_bad_shape", "type": "checkout.session.completed", "data": data}
        body = json.dumps(event).encode()

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.status_code == 400
        assert outcome.result == "malformed"
        assert _ledger_row(db, "evt_bad_shape") is None

    def test_square_body_with_non_object_payment(self, webhook_handler, db):
        event = {
            "event_id": "sq-evt-bad-shape",
            "type": "payment.updated",
            "data": {"type": "payment", "object": {"payment": "oops"}},
        }
        body = json.dumps(event).encode()

        outcome = webhook_handler.handle_provider_webhook(SQUARE, body, _square_headers(body))

        assert outcome.status_code == 400
        assert outcome.result == "malformed"
        assert _ledger_row(db, "sq-evt-bad-shape", SQUARE) is None

    def test_missing_webhook_secret(self, webhook_handler, config_service, db, pending_order):
        config_service.upsert_config(
            TENANT_ID,
            STRIPE,
            PaymentConfigUpdate(secret_key=SecretStr("sk_test_x"), is_active=False),
        )
        body = _stripe_event("evt_no_config")

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.status_code == 400
        assert outcome.result == "no_config"
        assert _ledger_row(db, "evt_no_config")["status"] == "NO_CONFIG"
        assert _order(db, pending_order.order_id)["status"] == "PAYMENT_PENDING"


class TestAcknowledgedWithoutProcessing:
    def test_unknown_payment(self, webhook_handler, db, pending_order):
        body = _stripe_event("evt_unknown", session_id="cs_test_someone_else")

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.status_code == 200
        assert outcome.result == "unmatched"
        assert _ledger_row(db, "evt_unknown") is None

    def test_unhandled_event_type(self, webhook_handler, db, pending_order):
        event = {
            "id": "evt_charge",
            "type": "charge.refunded",
            "data": {"object": {"id": "ch_1", "object": "charge"}},
        }
        body = json.dumps(event).encode()

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.status_code == 200
        assert outcome.result == "ignored"
        assert _ledger_row(db, "evt_charge") is None


class TestConcurrentDelivery:
    def test_delivery_while_claimed_elsewhere(self, webhook_handler, ledger, db, pending_order):
        """The loser of the claim race applies nothing."""
        body = _stripe_event("evt_race")
        winner_token = ledger.claim(STRIPE, StripeAdapter.peek(body), body, TENANT_ID)

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.status_code == 200
        assert outcome.result == "duplicate"
        assert _order(db, pending_order.order_id)["status"] == "PAYMENT_PENDING"
        assert _ledger_row(db, "evt_race")["claim_token"] == winner_token

    def test_claim_lost_after_dedup_check(self, webhook_handler, ledger, db, pending_order):
        """Both deliveries pass the dedup read; only one wins the conditional claim."""
        body = _stripe_event("evt_race_2")

        first = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))
        with patch.object(ledger, "get", return_value=None):
            second = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert first.result == "completed"
        assert second.result == "duplicate"
        assert _order(db, pending_order.order_id)["status"] == "PAID"
        assert int(_ledger_row(db, "evt_race_2")["attempts"]) == 1

    def test_simultaneous_deliveries_apply_once(self, db, pending_order):
        """Two handlers on separate connections race for the same event."""
        body = _stripe_event("evt_parallel")
        handlers = [WebhookHandler(db=DynamoDBService(table_prefix=TABLE_PREFIX)) for _ in range(2)]
        barrier = threading.Barrier(len(handlers))

        def deliver(handler: WebhookHandler):
            barrier.wait(timeout=10)
            return handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        with ThreadPoolExecutor(max_workers=len(handlers)) as pool:
            outcomes = list(pool.map(deliver, handlers))

        assert sorted(o.result for o in outcomes) == ["completed", "duplicate"]
        assert all(o.status_code == 200 for o in outcomes)
        order = _order(db, pending_order.order_id)
        assert order["status"] == "PAID"
        assert int(order["version"]) == pending_order.version + 1
        row = _ledger_row(db, "evt_parallel")
        assert row["status"] == "COMPLETED"
        assert int(row["attempts"]) == 1

    def test_abandoned_claim_is_recovered(self, webhook_handler, ledger, db, pending_order):
        body = _stripe_event("evt_abandoned")
        ledger.claim(STRIPE, StripeAdapter.peek(body), body, TENANT_ID)
        old = datetime.now(timezone.utc) - timedelta(seconds=900)
        db.update_item(
            WEBHOOK_EVENTS_TABLE,
            ledger_key(STRIPE, "evt_abandoned"),
            update_expression="SET claimed_at = :claimed_at, updated_at = :updated_at",
            expression_attribute_values={
                ":claimed_at": int(old.timestamp()),
                ":updated_at": old.isoformat(),
            },
        )

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.result == "completed"
        assert _order(db, pending_order.order_id)["status"] == "PAID"


class TestProcessingFailure:
    def test_failure_marks_ledger_and_asks_for_retry(self, webhook_handler, db, pending_order):
        body = _stripe_event("evt_boom")

        with patch.object(db, "transact_write", side_effect=RuntimeError("throttled")):
            outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.status_code == 500
        assert outcome.result == "failed"
        assert outcome.acknowledged is False
        row = _ledger_row(db, "evt_boom")
        assert row["status"] == "FAILED"
        assert "RuntimeError" in row["error_message"]
        assert _order(db, pending_order.order_id)["status"] == "PAYMENT_PENDING"

        retry = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert retry.result == "completed"
        assert _order(db, pending_order.order_id)["status"] == "PAID"
        assert _ledger_row(db, "evt_boom")["status"] == "COMPLETED"


class TestSquare:
    def test_payment_then_refund(self, webhook_handler, db, square_order):
        paid = _square_event("sq-evt-1", "payment", "COMPLETED")
        outcome = webhook_handler.handle_provider_webhook(SQUARE, paid, _square_headers(paid))

        assert outcome.result == "completed"
        assert _order(db, square_order.order_id)["status"] == "PAID"
        assert _payment(db, SQUARE)["status"] == "COMPLETED"

        refund = _square_event("sq-evt-2", "refund", "COMPLETED")
        outcome = webhook_handler.handle_provider_webhook(SQUARE, refund, _square_headers(refund))

        assert outcome.result == "completed"
        assert _payment(db, SQUARE)["status"] == "REFUNDED"
        assert _order(db, square_order.order_id)["status"] == "PAID"

    def test_payment_update_after_refund_keeps_refund(self, webhook_handler, db, square_order):
        """Square re-sends payment.updated COMPLETED once a refund has posted."""
        for event_id, kind in (("sq-evt-p1", "payment"), ("sq-evt-p2", "refund")):
            body = _square_event(event_id, kind, "COMPLETED")
            webhook_handler.handle_provider_webhook(SQUARE, body, _square_headers(body))
        assert _payment(db, SQUARE)["status"] == "REFUNDED"
        version = _order(db, square_order.order_id)["version"]

        late = _square_event("sq-evt-p3", "payment", "COMPLETED")
        outcome = webhook_handler.handle_provider_webhook(SQUARE, late, _square_headers(late))

        assert outcome.status_code == 200
        assert outcome.result == "completed"
        payment = _payment(db, SQUARE)
        assert payment["status"] == "REFUNDED"
        assert payment["last_event_id"] == "sq-evt-p2"
        assert _order(db, square_order.order_id)["status"] == "PAID"
        assert _order(db, square_order.order_id)["version"] == version
        assert _ledger_row(db, "sq-evt-p3", SQUARE)["status"] == "COMPLETED"

    def test_square_signature_checked(self, webhook_handler, db, square_order):
        body = _square_event("sq-evt-3", "payment", "COMPLETED")

        outcome = webhook_handler.handle_provider_webhook(
            SQUARE, body, {"x-square-hmacsha256-signature": "bm90IHZhbGlk"}
        )

        assert outcome.result == "verification_failed"
        assert _order(db, square_order.order_id)["status"] == "PAYMENT_PENDING"

    def test_events_do_not_cross_providers(self, webhook_handler, db, square_order):
        """A Stripe event naming the Square order id finds no Stripe payment."""
        body = _stripe_event("evt_cross")

        outcome = webhook_handler.handle_provider_webhook(STRIPE, body, _stripe_headers(body))

        assert outcome.result == "unmatched"
        assert _order(db, square_order.order_id)["status"] == "PAYMENT_PENDING"
