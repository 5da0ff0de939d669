"""Stripe adapter using Checkout Sessions.

The checkout session id is the provider payment id, so only session events
can be correlated back to a Payment. Charge and payment intent events are
acknowledged without processing.
"""

import json
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import stripe
from stripe import StripeClient

from ordering.models.enums import NormalizedPaymentStatus, PaymentProvider
from ordering.models.errors import (
    ProviderError,
    WebhookVerificationError,
    is_provider_error_retryable,
)
from ordering.models.payment import CheckoutSession
from ordering.models.payment_config import ConnectionTestResult, ProviderCredentials
from ordering.models.webhook import NormalizedEvent, WebhookEnvelope
from ordering.utils.logging import get_logger

from .base import PaymentProviderAdapter, get_header

logger = get_logger(__name__)

CHECKOUT_SESSION_TTL_SECONDS = 3600

SESSION_COMPLETED = "checkout.session.completed"
SESSION_ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
SESSION_ASYNC_FAILED = "checkout.session.async_payment_failed"
SESSION_EXPIRED = "checkout.session.expired"

# Checkout session payment_status values that mean the order is paid for
PAID_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})


class StripeAdapter(PaymentProviderAdapter):
    """Stripe Checkout integration.

    Usage:
        adapter = StripeAdapter(credentials)
        session = adapter.create_checkout_session(
            order_id="ORD-1A2B3C4D5E6F",
            amount_cents=2640,
            currency="USD",
            success_url="https://example.com/success",
            cancel_url="https://example.com/cancel",
        )
    """

    provider = PaymentProvider.STRIPE
    signature_header = "stripe-signature"
    handled_event_types = frozenset(
        {SESSION_COMPLETED, SESSION_ASYNC_SUCCEEDED, SESSION_ASYNC_FAILED, SESSION_EXPIRED}
    )

    def __init__(
        self,
        credentials: ProviderCredentials,
        timeout_seconds: float | None = None,
        client: StripeClient | None = None,
    ) -> None:
        super().__init__(credentials, timeout_seconds)
        self._client = client or StripeClient(
            credentials.secret_key.get_secret_value(),
            http_client=stripe.RequestsClient(timeout=self.timeout_seconds),
            max_network_retries=0,
        )

    def create_checkout_session(
        self,
        *,
        order_id: str,
        amount_cents: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str] | None = None,
        customer_email: str | None = None,
        idempotency_key: str | None = None,
    ) -> CheckoutSession:
        session_metadata = self.build_metadata(order_id, metadata)
        params: dict[str, Any] = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": currency.lower(),
                        "unit_amount": amount_cents,
                        "product_data": {
                            "name": "Order Payment",
                            "description": f"Order #{order_id}",
                        },
                    },
                    "quantity": 1,
                }
            ],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": session_metadata,
            "client_reference_id": order_id,
            "expires_at": int(datetime.now(timezone.utc).timestamp())
            + CHECKOUT_SESSION_TTL_SECONDS,
        }
        if customer_email:
            params["customer_email"] = customer_email

        options: dict[str, Any] = {}
        if idempotency_key:
            options["idempotency_key"] = idempotency_key

        try:
            logger.info(
                "Creating Stripe checkout session for order %s, amount %d cents",
                order_id,
                amount_cents,
            )
            session = self._client.checkout.sessions.create(params=params, options=options)
        except stripe.StripeError as e:
            raise _to_provider_error(e, "create checkout session") from e

        if not session.url:
            raise ProviderError("Stripe returned a checkout session without a URL")

        logger.info("Checkout session created: %s for order %s", session.id, order_id)

        expires_at = getattr(session, "expires_at", None)
        return CheckoutSession(
            provider_payment_id=session.id,
            checkout_url=session.url,
            expires_at=datetime.fromtimestamp(expires_at, tz=timezone.utc) if expires_at else None,
        )

    def retrieve_payment_status(self, provider_payment_id: str) -> NormalizedPaymentStatus:
        try:
            session = self._client.checkout.sessions.retrieve(provider_payment_id)
        except stripe.StripeError as e:
            raise _to_provider_error(e, "retrieve checkout session") from e

        logger.info(
            "Stripe session %s: status %s, payment_status %s",
            provider_payment_id,
            session.status,
            session.payment_status,
        )
        if session.status == "complete" and session.payment_status in PAID_PAYMENT_STATUSES:
            return NormalizedPaymentStatus.SUCCEEDED
        if session.status == "expired":
            return NormalizedPaymentStatus.FAILED
        return NormalizedPaymentStatus.PENDING

    def test_connection(self) -> ConnectionTestResult:
        try:
            self._client.balance.retrieve()
            return ConnectionTestResult(success=True)
        except stripe.StripeError as e:
            logger.warning("Stripe connection test failed for tenant %s: %s", self.tenant_id, e)
            return ConnectionTestResult(
                success=False,
                error=getattr(e, "user_message", None) or "Stripe rejected the credentials",
            )

    @classmethod
    def peek(cls, raw_body: bytes) -> WebhookEnvelope:
        payload = json.loads(raw_body)
        if not isinstance(payload, dict) or not payload.get("id"):
            raise ValueError("Stripe event has no id")

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ValueError("Stripe event data is not an object")
        obj = data.get("object") or {}
        if not isinstance(obj, dict):
            raise ValueError("Stripe event data.object is not an object")

        event_type = str(payload.get("type", ""))
        payment_id = None
        if obj.get("object") == "checkout.session":
            payment_id = obj.get("id")
            if payment_id is not None and not isinstance(payment_id, str):
                raise ValueError("Stripe checkout session id is not a string")

        return WebhookEnvelope(
            provider_event_id=str(payload["id"]),
            event_type=event_type,
            provider_payment_id=payment_id,
            handled=event_type in cls.handled_event_types and bool(payment_id),
        )

    @classmethod
    def verify_webhook(
        cls,
        raw_body: bytes,
        headers: Mapping[str, str],
        webhook_secret: str,
    ) -> dict[str, Any]:
        signature = get_header(headers, cls.signature_header)
        if not signature:
            raise WebhookVerificationError(message="Missing Stripe-Signature header")

        try:
            stripe.WebhookSignature.verify_header(
                raw_body.decode("utf-8"),
                signature,
                webhook_secret,
                stripe.Webhook.DEFAULT_TOLERANCE,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as e:
            logger.warning("Invalid Stripe webhook signature: %s", e)
            raise WebhookVerificationError() from e

        event: dict[str, Any] = json.loads(raw_body)
        return event

    @classmethod
    def normalize_event(cls, event: dict[str, Any]) -> NormalizedEvent:
        event_type = event["type"]
        session = event["data"]["object"]

        if event_type == SESSION_COMPLETED:
            status = (
                NormalizedPaymentStatus.SUCCEEDED
                if session.get("payment_status") == "paid"
                else NormalizedPaymentStatus.PENDING
            )
        elif event_type == SESSION_ASYNC_SUCCEEDED:
            status = NormalizedPaymentStatus.SUCCEEDED
        elif event_type in (SESSION_ASYNC_FAILED, SESSION_EXPIRED):
            status = NormalizedPaymentStatus.FAILED
        else:
            status = NormalizedPaymentStatus.PENDING

        return NormalizedEvent(
            type=event_type,
            provider_event_id=event["id"],
            provider_payment_id=session["id"],
            status=status,
            metadata=dict(session.get("metadata") or {}),
        )


def _to_provider_error(error: stripe.StripeError, action: str) -> ProviderError:
    error_code = getattr(error, "code", None)
    if isinstance(error, stripe.RateLimitError):
        error_code = error_code or "rate_limit"
    elif isinstance(error, stripe.APIConnectionError):
        error_code = error_code or "api_connection_error"
    elif isinstance(error, stripe.AuthenticationError):
        error_code = error_code or "authentication_error"

    logger.error("Stripe failed to %s: %s (code: %s)", action, error, error_code)
    return ProviderError(
        f"Failed to {action}: {error}",
        provider_error_code=error_code,
        retryable=is_provider_error_retryable(error_code),
    )
