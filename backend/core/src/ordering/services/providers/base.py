"""Provider adapter interface.

Each adapter turns one provider's API and webhook vocabulary into the
provider-agnostic shapes the rest of the core works with. Inbound webhooks go
through a strict two-stage pipeline: ``peek`` reads routing fields from the
raw bytes, ``verify_webhook`` authenticates those same bytes and only its
result is passed to ``normalize_event``.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, ClassVar

from ordering.config import get_settings
from ordering.models.enums import NormalizedPaymentStatus, PaymentProvider
from ordering.models.payment import CheckoutSession
from ordering.models.payment_config import ConnectionTestResult, ProviderCredentials
from ordering.models.webhook import NormalizedEvent, WebhookEnvelope


def get_header(headers: Mapping[str, str], name: str) -> str | None:
    """Case-insensitive header lookup that works for plain dicts too."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


class PaymentProviderAdapter(ABC):
    """Base class for payment provider integrations.

    Instances hold decrypted tenant credentials and make outbound calls.
    Webhook parsing and verification are classmethods because the tenant,
    and so the webhook secret, is only known after routing.
    """

    provider: ClassVar[PaymentProvider]
    signature_header: ClassVar[str]
    handled_event_types: ClassVar[frozenset[str]]

    def __init__(
        self,
        credentials: ProviderCredentials,
        timeout_seconds: float | None = None,
    ) -> None:
        self.credentials = credentials
        self.tenant_id = credentials.tenant_id
        self.timeout_seconds = timeout_seconds or get_settings().provider_timeout_seconds

    @abstractmethod
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
        """Start a hosted checkout for an order.

        The provider-side metadata always carries order_id and tenant_id.

        Raises:
            ProviderError: Network failure, timeout or provider rejection
        """

    @abstractmethod
    def retrieve_payment_status(self, provider_payment_id: str) -> NormalizedPaymentStatus:
        """Ask the provider where a checkout stands right now.

        Used when a webhook may have been missed. PENDING means the buyer
        has not finished, or the provider has not decided yet.

        Raises:
            ProviderError: Network failure, timeout or provider rejection
        """

    @abstractmethod
    def test_connection(self) -> ConnectionTestResult:
        """Check that the stored credentials are accepted by the provider."""

    def build_metadata(self, order_id: str, extra: dict[str, str] | None = None) -> dict[str, str]:
        metadata = {str(k): str(v) for k, v in (extra or {}).items()}
        metadata["order_id"] = order_id
        metadata["tenant_id"] = self.tenant_id
        return metadata

    @classmethod
    @abstractmethod
    def peek(cls, raw_body: bytes) -> WebhookEnvelope:
        """Read routing fields from an unverified body.

        Raises:
            ValueError: Body is not JSON or has no event id
        """

    @classmethod
    @abstractmethod
    def verify_webhook(
        cls,
        raw_body: bytes,
        headers: Mapping[str, str],
        webhook_secret: str,
    ) -> dict[str, Any]:
        """Authenticate the raw body and return the parsed event.

        Raises:
            WebhookVerificationError: Missing or invalid signature
        """

    @classmethod
    @abstractmethod
    def normalize_event(cls, event: dict[str, Any]) -> NormalizedEvent:
        """Map a verified provider event to a NormalizedEvent."""

    @classmethod
    def has_signature(cls, headers: Mapping[str, str]) -> bool:
        return bool(get_header(headers, cls.signature_header))
