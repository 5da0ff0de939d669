"""Integration tests for the webhook ledger's conditional writes."""

import hashlib
import time
from datetime import datetime, timedelta, timezone

import pytest

from ordering.models.enums import PaymentProvider, WebhookEventStatus
from ordering.models.webhook import WebhookEnvelope, WebhookLedgerEntry
from ordering.services.webhook_ledger import WEBHOOK_EVENTS_TABLE, WebhookLedger, ledger_key

pytestmark = pytest.mark.integration

TENANT_ID = "tenant-bistro"
STRIPE = PaymentProvider.STRIPE
BODY = b'{"id": "evt_ledger_1", "type": "checkout.session.completed"}'


def _envelope(event_id: str = "evt_ledger_1") -> WebhookEnvelope:
    return WebhookEnvelope(
        provider_event_id=event_id,
        event_type="checkout.session.completed",
        provider_payment_id="cs_test_1",
        handled=True,
    )


def _age_claim(db, event_id: str, seconds: int) -> None:
    """Backdate a PROCESSING claim so it looks abandoned."""
    old = datetime.now(timezone.utc) - timedelta(seconds=seconds)
    db.update_item(
        WEBHOOK_EVENTS_TABLE,
        ledger_key(STRIPE, event_id),
        update_expression="SET claimed_at = :claimed_at, updated_at = :updated_at",
        expression_attribute_values={
            ":claimed_at": int(time.time()) - seconds,
            ":updated_at": old.isoformat(),
        },
    )


class TestClaim:
    def test_first_claim_records_processing(self, ledger: WebhookLedger):
        token = ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)

        entry = ledger.get(STRIPE, "evt_ledger_1")
        assert token
        assert entry.status == WebhookEventStatus.PROCESSING
        assert entry.claim_token == token
        assert entry.attempts == 1
        assert entry.tenant_id == TENANT_ID
        assert entry.provider_payment_id == "cs_test_1"
        assert entry.payload == BODY.decode()
        assert entry.payload_hash == hashlib.sha256(BODY).hexdigest()

    def test_second_claim_loses(self, ledger: WebhookLedger):
        assert ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)
        assert ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID) is None

    def test_same_event_id_other_provider_is_separate(self, ledger: WebhookLedger):
        assert ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)
        assert ledger.claim(PaymentProvider.SQUARE, _envelope(), BODY, TENANT_ID)

    def test_stale_claim_taken_over(self, ledger: WebhookLedger, db):
        first = ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)
        _age_claim(db, "evt_ledger_1", 600)

        second = ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)

        assert second is not None
        assert second != first
        assert ledger.get(STRIPE, "evt_ledger_1").attempts == 2


class TestCompletion:
    def test_completion_with_current_token(self, ledger: WebhookLedger, db):
        token = ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)

        assert db.transact_write([ledger.completion_item(STRIPE, "evt_ledger_1", token)])
        assert ledger.get(STRIPE, "evt_ledger_1").status == WebhookEventStatus.COMPLETED

    def test_completed_event_is_final(self, ledger: WebhookLedger, db):
        token = ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)
        db.transact_write([ledger.completion_item(STRIPE, "evt_ledger_1", token)])
        _age_claim(db, "evt_ledger_1", 3600)

        assert ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID) is None
        assert not ledger.record_rejection(
            STRIPE, _envelope(), BODY, WebhookEventStatus.VERIFICATION_FAILED
        )
        assert ledger.get(STRIPE, "evt_ledger_1").status == WebhookEventStatus.COMPLETED

    def test_superseded_token_cannot_complete(self, ledger: WebhookLedger, db):
        old_token = ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)
        _age_claim(db, "evt_ledger_1", 600)
        ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)

        assert not db.transact_write([ledger.completion_item(STRIPE, "evt_ledger_1", old_token)])
        assert ledger.get(STRIPE, "evt_ledger_1").status == WebhookEventStatus.PROCESSING


class TestRejectionsAndFailures:
    @pytest.mark.parametrize(
        "status", [WebhookEventStatus.NO_CONFIG, WebhookEventStatus.VERIFICATION_FAILED]
    )
    def test_rejection_is_retryable(self, ledger: WebhookLedger, status):
        assert ledger.record_rejection(
            STRIPE, _envelope(), BODY, status, tenant_id=TENANT_ID, error_message="nope"
        )
        entry = ledger.get(STRIPE, "evt_ledger_1")
        assert entry.status == status
        assert entry.error_message == "nope"

        assert ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)
        entry = ledger.get(STRIPE, "evt_ledger_1")
        assert entry.status == WebhookEventStatus.PROCESSING
        assert entry.attempts == 2
        assert entry.error_message is None

    def test_rejection_does_not_steal_live_claim(self, ledger: WebhookLedger):
        ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)

        assert not ledger.record_rejection(
            STRIPE, _envelope(), BODY, WebhookEventStatus.VERIFICATION_FAILED
        )

    def test_mark_failed_then_retry(self, ledger: WebhookLedger):
        token = ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)

        assert ledger.mark_failed(STRIPE, "evt_ledger_1", token, "RuntimeError: boom")
        entry = ledger.get(STRIPE, "evt_ledger_1")
        assert entry.status == WebhookEventStatus.FAILED
        assert entry.error_message == "RuntimeError: boom"

        assert ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)

    def test_mark_failed_with_wrong_token(self, ledger: WebhookLedger):
        ledger.claim(STRIPE, _envelope(), BODY, TENANT_ID)
        assert not ledger.mark_failed(STRIPE, "evt_ledger_1", "not-the-token", "boom")


class TestSettledOrInFlight:
    def _entry(self, status: WebhookEventStatus, age_seconds: int = 0) -> WebhookLedgerEntry:
        updated = datetime.now(timezone.utc) - timedelta(seconds=age_seconds)
        return WebhookLedgerEntry(
            provider=STRIPE,
            provider_event_id="evt_x",
            event_type="checkout.session.completed",
            status=status,
            payload="{}",
            payload_hash="0" * 64,
            created_at=updated,
            updated_at=updated,
        )

    def test_classification(self, ledger: WebhookLedger):
        assert ledger.is_settled_or_in_flight(self._entry(WebhookEventStatus.COMPLETED, 9999))
        assert ledger.is_settled_or_in_flight(self._entry(WebhookEventStatus.PROCESSING, 10))
        assert not ledger.is_settled_or_in_flight(self._entry(WebhookEventStatus.PROCESSING, 900))
        assert not ledger.is_settled_or_in_flight(self._entry(WebhookEventStatus.FAILED))
        assert not ledger.is_settled_or_in_flight(self._entry(WebhookEventStatus.NO_CONFIG))


class TestRetention:
    def test_purge_keeps_recent_and_in_flight(self, ledger: WebhookLedger, db):
        done = ledger.claim(STRIPE, _envelope("evt_old_done"), BODY, TENANT_ID)
        db.transact_write([ledger.completion_item(STRIPE, "evt_old_done", done)])
        ledger.claim(STRIPE, _envelope("evt_old_processing"), BODY, TENANT_ID)
        recent = ledger.claim(STRIPE, _envelope("evt_recent"), BODY, TENANT_ID)
        db.transact_write([ledger.completion_item(STRIPE, "evt_recent", recent)])

        old = (datetime.now(timezone.utc) - timedelta(days=120)).isoformat()
        for event_id in ("evt_old_done", "evt_old_processing"):
            db.update_item(
                WEBHOOK_EVENTS_TABLE,
                ledger_key(STRIPE, event_id),
                update_expression="SET created_at = :old",
                expression_attribute_values={":old": old},
            )

        assert ledger.purge_expired() == 1
        assert ledger.get(STRIPE, "evt_old_done") is None
        assert ledger.get(STRIPE, "evt_old_processing") is not None
        assert ledger.get(STRIPE, "evt_recent") is not None
