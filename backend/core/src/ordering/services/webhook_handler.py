"""Reconciliation engine for payment provider webhooks.

Keeps webhook business logic separate from HTTP routing so it can be unit
tested without a server and reused across transports.

Pipeline for one delivery:
1. Route: read event id, type and payment id from the raw bytes
2. Correlate: find the Payment, and through it the tenant
3. Dedup: stop if the ledger already has this event settled or in flight
4. Verify: authenticate the same raw bytes with the tenant's webhook secret
5. Claim: take the ledger row with a conditional write
6. Apply: guarded Payment and Order writes with ledger COMPLETED, one transaction

Nothing read before step 4 is used for effects; the normalized event comes
from the verified payload only.
"""

from collections.abc import Mapping

from ordering.models.enums import PaymentProvider, WebhookEventStatus
from ordering.models.errors import SecretVaultError, WebhookVerificationError
from ordering.models.payment import Payment
from ordering.models.webhook import NormalizedEvent, WebhookEnvelope, WebhookOutcome
from ordering.services.dynamodb import DynamoDBService, get_dynamodb_service
from ordering.services.payment_config_service import PaymentConfigService
from ordering.services.payment_service import PaymentService
from ordering.services.providers import get_adapter_class
from ordering.services.reconciliation import commit_status
from ordering.services.webhook_ledger import WebhookLedger
from ordering.utils.logging import get_logger, log_webhook_event

logger = get_logger(__name__)


class WebhookHandler:
    """Handler for processing provider webhook deliveries.

    Usage:
        handler = WebhookHandler()
        outcome = handler.handle_provider_webhook(PaymentProvider.STRIPE, body, headers)
    """

    def __init__(
        self,
        db: DynamoDBService | None = None,
        ledger: WebhookLedger | None = None,
        payment_service: PaymentService | None = None,
        config_service: PaymentConfigService | None = None,
    ) -> None:
        self._db = db or get_dynamodb_service()
        self.ledger = ledger or WebhookLedger(db=self._db)
        self.config_service = config_service or PaymentConfigService(db=self._db)
        self.payment_service = payment_service or PaymentService(
            db=self._db, config_service=self.config_service
        )

    def handle_provider_webhook(
        self,
        provider: PaymentProvider,
        raw_body: bytes,
        headers: Mapping[str, str],
    ) -> WebhookOutcome:
        """Process one webhook delivery.

        Args:
            provider: Provider the delivery was addressed to
            raw_body: Request body exactly as received
            headers: Request headers (signature lookup is case-insensitive)

        Returns:
            WebhookOutcome with the HTTP status to send back. 2xx stops the
            provider retrying; 4xx/5xx invites a redelivery.
        """
        adapter = get_adapter_class(provider)

        if not adapter.has_signature(headers):
            logger.warning("Webhook for %s rejected: missing signature header", provider.value)
            return _outcome(400, "rejected")

        try:
            envelope = adapter.peek(raw_body)
        except ValueError as e:
            logger.warning("Malformed %s webhook body: %s", provider.value, e)
            return _outcome(400, "malformed")

        event_id = envelope.provider_event_id
        if not envelope.handled:
            log_webhook_event(
                logger, envelope.event_type, event_id, provider=provider.value, result="ignored"
            )
            return _outcome(200, "ignored", event_id)

        payment = self.payment_service.get_payment_by_provider_id(
            provider, envelope.provider_payment_id or "", consistent_read=True
        )
        if payment is None:
            # Acknowledged so the provider stops retrying; the warning is the
            # signal to look for a session created without our metadata.
            log_webhook_event(
                logger,
                envelope.event_type,
                event_id,
                provider=provider.value,
                payment_id=envelope.provider_payment_id,
                result="unmatched",
            )
            return _outcome(200, "unmatched", event_id)

        entry = self.ledger.get(provider, event_id)
        if entry is not None and self.ledger.is_settled_or_in_flight(entry):
            log_webhook_event(
                logger,
                envelope.event_type,
                event_id,
                provider=provider.value,
                tenant_id=payment.tenant_id,
                order_id=payment.order_id,
                result="duplicate",
                ledger_status=entry.status.value,
            )
            return _outcome(200, "duplicate", event_id)

        normalized = self._verify(provider, envelope, raw_body, headers, payment)
        if isinstance(normalized, WebhookOutcome):
            return normalized

        token = self.ledger.claim(provider, envelope, raw_body, payment.tenant_id)
        if token is None:
            log_webhook_event(
                logger,
                envelope.event_type,
                event_id,
                provider=provider.value,
                tenant_id=payment.tenant_id,
                result="duplicate",
            )
            return _outcome(200, "duplicate", event_id)

        try:
            applied = self._apply(provider, payment, normalized, token)
        except Exception as e:
            logger.exception("Webhook %s/%s failed during reconciliation", provider.value, event_id)
            self.ledger.mark_failed(provider, event_id, token, f"{type(e).__name__}: {e}")
            log_webhook_event(
                logger,
                envelope.event_type,
                event_id,
                provider=provider.value,
                tenant_id=payment.tenant_id,
                order_id=payment.order_id,
                result="failed",
                error=type(e).__name__,
            )
            return _outcome(500, "failed", event_id)

        result = "completed" if applied else "duplicate"
        log_webhook_event(
            logger,
            normalized.type,
            event_id,
            provider=provider.value,
            tenant_id=payment.tenant_id,
            order_id=payment.order_id,
            payment_id=normalized.provider_payment_id,
            result=result,
            normalized_status=normalized.status.value,
        )
        return _outcome(200, result, event_id)

    def _verify(
        self,
        provider: PaymentProvider,
        envelope: WebhookEnvelope,
        raw_body: bytes,
        headers: Mapping[str, str],
        payment: Payment,
    ) -> NormalizedEvent | WebhookOutcome:
        """Authenticate the delivery with the owning tenant's secret."""
        adapter = get_adapter_class(provider)
        event_id = envelope.provider_event_id

        config = self.config_service.get_active_config(payment.tenant_id, provider)
        if config is None or not config.encrypted_webhook_secret:
            self.ledger.record_rejection(
                provider,
                envelope,
                raw_body,
                WebhookEventStatus.NO_CONFIG,
                tenant_id=payment.tenant_id,
                error_message="No active webhook secret for tenant",
            )
            log_webhook_event(
                logger,
                envelope.event_type,
                event_id,
                provider=provider.value,
                tenant_id=payment.tenant_id,
                result="no_config",
            )
            return _outcome(400, "no_config", event_id)

        try:
            credentials = self.config_service.get_decrypted_credentials(config)
            secret = (
                credentials.webhook_secret.get_secret_value() if credentials.webhook_secret else ""
            )
            event = adapter.verify_webhook(raw_body, headers, secret)
            normalized = adapter.normalize_event(event)
            if (
                normalized.provider_event_id != event_id
                or normalized.provider_payment_id != envelope.provider_payment_id
            ):
                raise WebhookVerificationError(
                    message="Verified event does not match routing fields"
                )
        except (WebhookVerificationError, SecretVaultError) as e:
            self.ledger.record_rejection(
                provider,
                envelope,
                raw_body,
                WebhookEventStatus.VERIFICATION_FAILED,
                tenant_id=payment.tenant_id,
                error_message=e.message,
            )
            log_webhook_event(
                logger,
                envelope.event_type,
                event_id,
                provider=provider.value,
                tenant_id=payment.tenant_id,
                result="verification_failed",
                error=e.code.value,
            )
            return _outcome(400, "verification_failed", event_id)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(
                "Verified %s event %s has unexpected shape: %s", provider.value, event_id, e
            )
            return _outcome(400, "malformed", event_id)

        return normalized

    def _apply(
        self,
        provider: PaymentProvider,
        payment: Payment,
        event: NormalizedEvent,
        claim_token: str,
    ) -> bool:
        """Commit the event's effects together with ledger COMPLETED.

        Returns:
            False if the claim was lost to another delivery
        """
        event_id = event.provider_event_id

        def still_claimed() -> bool:
            entry = self.ledger.get(provider, event_id)
            if entry is None or entry.claim_token != claim_token:
                logger.warning(
                    "Lost claim on webhook %s/%s before commit", provider.value, event_id
                )
                return False
            return True

        return commit_status(
            self._db,
            payment,
            event.status,
            actor="webhook",
            event_id=event_id,
            extra_items=[self.ledger.completion_item(provider, event_id, claim_token)],
            still_current=still_claimed,
        )


def _outcome(status_code: int, result: str, event_id: str | None = None) -> WebhookOutcome:
    return WebhookOutcome(
        acknowledged=200 <= status_code < 300,
        status_code=status_code,
        result=result,
        event_id=event_id,
    )
