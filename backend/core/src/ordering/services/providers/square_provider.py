"""Square adapter using the Payment Links API over httpx.

A payment link creates a Square order; that order id is the provider payment
id because both payment and refund webhooks carry it.
"""

import base64
import hashlib
import hmac
import json
import uuid
from collections.abc import Mapping
from typing import Any

import httpx

from ordering.config import get_settings
from ordering.models.enums import NormalizedPaymentStatus, PaymentProvider
from ordering.models.errors import ConfigurationError, ProviderError, WebhookVerificationError
from ordering.models.payment import CheckoutSession
from ordering.models.payment_config import ConnectionTestResult, ProviderCredentials
from ordering.models.webhook import NormalizedEvent, WebhookEnvelope
from ordering.utils.logging import get_logger

from .base import PaymentProviderAdapter, get_header

logger = get_logger(__name__)

SQUARE_BASE_URLS = {
    "sandbox": "https://connect.squareupsandbox.com",
    "production": "https://connect.squareup.com",
}
SQUARE_API_VERSION = "2024-10-17"

PAYMENT_EVENTS = frozenset({"payment.created", "payment.updated"})
REFUND_EVENTS = frozenset({"refund.created", "refund.updated"})


class SquareAdapter(PaymentProviderAdapter):
    """Square Payment Links integration.

    Requires ``location_id`` in the tenant's non-secret config metadata.
    """

    provider = PaymentProvider.SQUARE
    signature_header = "x-square-hmacsha256-signature"
    handled_event_types = PAYMENT_EVENTS | REFUND_EVENTS

    def __init__(
        self,
        credentials: ProviderCredentials,
        timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(credentials, timeout_seconds)
        settings = get_settings()
        self.base_url = SQUARE_BASE_URLS[settings.square_environment]
        self.location_id = credentials.metadata.get("location_id")
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.credentials.secret_key.get_secret_value()}",
                "Square-Version": SQUARE_API_VERSION,
                "Content-Type": "application/json",
            },
        )

    def _request(self, method: str, path: str, json_body: dict | None = None) -> dict[str, Any]:
        try:
            with self._client() as client:
                response = client.request(method, path, json=json_body)
        except httpx.TimeoutException as e:
            logger.error("Square request timed out: %s %s", method, path)
            raise ProviderError(f"Square timeout: {e}", provider_error_code="timeout") from e
        except httpx.HTTPError as e:
            logger.error("Square request failed: %s %s: %s", method, path, e)
            raise ProviderError(
                f"Square connection error: {e}", provider_error_code="api_connection_error"
            ) from e

        if response.status_code >= 400:
            raise _error_from_response(response)

        body: dict[str, Any] = response.json()
        return body

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
        if not self.location_id:
            raise ConfigurationError(message="Square configuration is missing location_id")

        body: dict[str, Any] = {
            "idempotency_key": idempotency_key or str(uuid.uuid4()),
            "order": {
                "location_id": self.location_id,
                "reference_id": order_id,
                "line_items": [
                    {
                        "name": f"Order #{order_id}",
                        "quantity": "1",
                        "base_price_money": {"amount": amount_cents, "currency": currency.upper()},
                    }
                ],
                "metadata": self.build_metadata(order_id, metadata),
            },
            # Square has a single redirect; cancellation returns to the storefront
            "checkout_options": {"redirect_url": success_url, "ask_for_shipping_address": False},
        }
        if customer_email:
            body["pre_populated_data"] = {"buyer_email": customer_email}

        logger.info(
            "Creating Square payment link for order %s, amount %d cents", order_id, amount_cents
        )
        result = self._request("POST", "/v2/online-checkout/payment-links", body)

        link = result.get("payment_link") or {}
        if not link.get("order_id") or not link.get("url"):
            raise ProviderError("Square returned a payment link without an order or URL")

        logger.info(
            "Square payment link %s created for order %s (square order %s)",
            link.get("id"),
            order_id,
            link["order_id"],
        )
        return CheckoutSession(provider_payment_id=link["order_id"], checkout_url=link["url"])

    def retrieve_payment_status(self, provider_payment_id: str) -> NormalizedPaymentStatus:
        result = self._request("GET", f"/v2/orders/{provider_payment_id}")
        order = result.get("order") or {}
        state = order.get("state")
        tenders = order.get("tenders") or []

        logger.info(
            "Square order %s: state %s, %d tender(s)", provider_payment_id, state, len(tenders)
        )
        if state == "CANCELED":
            return NormalizedPaymentStatus.FAILED
        # A paid payment-link order carries a tender but stays OPEN until fulfilled
        if state == "COMPLETED" or tenders:
            return NormalizedPaymentStatus.SUCCEEDED
        return NormalizedPaymentStatus.PENDING

    def test_connection(self) -> ConnectionTestResult:
        if not self.location_id:
            return ConnectionTestResult(success=False, error="location_id is not configured")
        try:
            self._request("GET", f"/v2/locations/{self.location_id}")
            return ConnectionTestResult(success=True)
        except ProviderError as e:
            logger.warning("Square connection test failed for tenant %s", self.tenant_id)
            return ConnectionTestResult(success=False, error=e.message)

    @classmethod
    def peek(cls, raw_body: bytes) -> WebhookEnvelope:
        payload = json.loads(raw_body)
        if not isinstance(payload, dict) or not payload.get("event_id"):
            raise ValueError("Square event has no event_id")

        event_type = str(payload.get("type", ""))
        payment_id = _square_order_id(payload, event_type)
        return WebhookEnvelope(
            provider_event_id=str(payload["event_id"]),
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
            raise WebhookVerificationError(message="Missing Square signature header")

        expected = compute_signature(
            webhook_secret, get_settings().square_notification_url, raw_body
        )
        if not hmac.compare_digest(expected, signature):
            logger.warning("Invalid Square webhook signature")
            raise WebhookVerificationError()

        event: dict[str, Any] = json.loads(raw_body)
        return event

    @classmethod
    def normalize_event(cls, event: dict[str, Any]) -> NormalizedEvent:
        event_type = event["type"]
        obj = (event.get("data") or {}).get("object") or {}
        status = NormalizedPaymentStatus.PENDING
        metadata: dict[str, Any] = {}

        if event_type in PAYMENT_EVENTS:
            payment = obj.get("payment") or {}
            if payment.get("status") == "COMPLETED":
                status = NormalizedPaymentStatus.SUCCEEDED
            elif payment.get("status") in ("FAILED", "CANCELED"):
                status = NormalizedPaymentStatus.FAILED
            if payment.get("id"):
                metadata["square_payment_id"] = payment["id"]
        elif event_type in REFUND_EVENTS:
            refund = obj.get("refund") or {}
            if refund.get("status") == "COMPLETED":
                status = NormalizedPaymentStatus.REFUNDED
            if refund.get("id"):
                metadata["square_refund_id"] = refund["id"]

        return NormalizedEvent(
            type=event_type,
            provider_event_id=event["event_id"],
            provider_payment_id=_square_order_id(event, event_type) or "",
            status=status,
            metadata=metadata,
        )


def compute_signature(signature_key: str, notification_url: str, raw_body: bytes) -> str:
    """Square's webhook signature: base64 HMAC-SHA256 over URL + body."""
    digest = hmac.new(
        signature_key.encode("utf-8"),
        notification_url.encode("utf-8") + raw_body,
        hashlib.sha256,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def _square_order_id(payload: dict[str, Any], event_type: str) -> str | None:
    """Order id from a payment or refund event.

    Raises:
        ValueError: A nested level is present but is not an object
    """
    if event_type in PAYMENT_EVENTS:
        kind = "payment"
    elif event_type in REFUND_EVENTS:
        kind = "refund"
    else:
        return None

    node: Any = payload
    for field in ("data", "object", kind):
        node = node.get(field) or {}
        if not isinstance(node, dict):
            raise ValueError(f"Square event {field} is not an object")

    order_id = node.get("order_id")
    if order_id is not None and not isinstance(order_id, str):
        raise ValueError("Square order_id is not a string")
    return order_id


def _error_from_response(response: httpx.Response) -> ProviderError:
    code = None
    try:
        errors = response.json().get("errors") or []
        if errors:
            code = str(errors[0].get("code", "")).lower() or None
    except ValueError:
        pass

    if response.status_code == 429:
        code = "rate_limit"
    elif response.status_code == 401:
        code = "authentication_error"

    retryable = response.status_code == 429 or response.status_code >= 500
    logger.error("Square API error %d (code: %s)", response.status_code, code)
    return ProviderError(
        f"Square API error {response.status_code}",
        provider_error_code=code,
        retryable=retryable,
    )
