"""Webhook ledger entries and the normalized, provider-agnostic event shape."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .enums import NormalizedPaymentStatus, PaymentProvider, WebhookEventStatus


class WebhookLedgerEntry(BaseModel):
    """Record of one inbound provider event.

    Used for:
    - Deduplication: ``(provider, provider_event_id)`` is the table key
    - Auditing: every delivery outcome is recorded
    - Retry control: only COMPLETED entries count as handled
    """

    provider: PaymentProvider
    provider_event_id: str = Field(..., examples=["evt_1ABC123DEF456"])
    event_type: str = Field(..., examples=["checkout.session.completed"])
    status: WebhookEventStatus
    payload: str = Field(..., description="Raw request body as received")
    payload_hash: str = Field(..., description="SHA-256 of the raw body")
    tenant_id: str | None = None
    provider_payment_id: str | None = None
    attempts: int = Field(default=1, ge=1)
    claim_token: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime


class WebhookEnvelope(BaseModel):
    """Routing fields read from an unverified body.

    Only used to locate the tenant whose secret verifies the payload; nothing
    here is trusted for state changes.
    """

    provider_event_id: str
    event_type: str
    provider_payment_id: str | None = None
    handled: bool = Field(
        default=False,
        description="Whether the event type is one the reconciliation engine processes",
    )


class NormalizedEvent(BaseModel):
    """Provider-agnostic payment status change produced by a provider adapter."""

    model_config = ConfigDict(frozen=True)

    type: str
    provider_event_id: str
    provider_payment_id: str
    status: NormalizedPaymentStatus
    metadata: dict[str, Any] = Field(default_factory=dict)


class WebhookOutcome(BaseModel):
    """What the webhook endpoint tells the provider."""

    acknowledged: bool
    status_code: int
    result: str = Field(
        ...,
        description=(
            "completed, duplicate, ignored, unmatched, no_config, rejected, "
            "verification_failed, malformed or failed"
        ),
    )
    event_id: str | None = None
