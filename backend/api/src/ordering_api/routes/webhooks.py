"""Webhook endpoints for payment provider callbacks.

These endpoints carry no tenant header and no caller auth: the tenant is
resolved from the payment the event refers to, and the payload is trusted
only after its signature checks out against that tenant's webhook secret.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ordering.services.webhook_handler import WebhookHandler
from ordering.utils.logging import get_logger
from ordering_api.dependencies import get_webhook_handler, parse_provider
from ordering_api.models.webhooks import WebhookAck

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post(
    "/webhooks/{provider}",
    summary="Receive provider webhook",
    description="""
Receive a payment event from Stripe or Square.

**Response codes:**
- 200: Event applied, duplicate, ignored, or for an unknown payment. The
  provider stops retrying.
- 400: Signature, configuration or payload problem. Redelivery is accepted
  once the problem is fixed.
- 500: Processing failed; the provider should retry.
""",
    response_model=WebhookAck,
    responses={
        400: {"model": WebhookAck, "description": "Event rejected or unsupported provider"},
        500: {"model": WebhookAck, "description": "Processing failed"},
    },
)
async def receive_webhook(
    provider: str,
    request: Request,
    handler: WebhookHandler = Depends(get_webhook_handler),
) -> JSONResponse:
    """Verify, deduplicate and apply a provider event."""
    payment_provider = parse_provider(provider)

    # Signatures are computed over the exact bytes received
    raw_body = await request.body()
    outcome = handler.handle_provider_webhook(
        payment_provider, raw_body, dict(request.headers)
    )

    ack = WebhookAck(
        received=outcome.acknowledged,
        result=outcome.result,
        event_id=outcome.event_id,
    )
    return JSONResponse(status_code=outcome.status_code, content=ack.model_dump())
