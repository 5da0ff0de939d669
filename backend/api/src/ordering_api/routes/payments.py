"""Payment endpoints.

Provides REST endpoints for:
- Starting (or retrying) hosted checkout for an order
- Listing the payment attempts recorded for an order
- Polling the provider when a webhook may have been missed
"""

from fastapi import APIRouter, Depends, Header
from starlette.responses import Response
from starlette.status import HTTP_201_CREATED

from ordering.models.errors import ErrorResponse
from ordering.models.payment import Payment, PaymentPollResult
from ordering.services.idempotency import IdempotencyCache
from ordering.services.payment_service import PaymentService
from ordering_api.dependencies import (
    IDEMPOTENCY_KEY_HEADER,
    RequestContext,
    get_idempotency_cache,
    get_payment_service,
    get_request_context,
)
from ordering_api.idempotent import run_idempotent
from ordering_api.models.payments import CreatePaymentRequest, PaymentListResponse

router = APIRouter(tags=["payments"])


@router.post(
    "/orders/{order_id}/payments",
    summary="Create payment intent",
    description="""
Start a hosted checkout for an order in `CREATED` or `PAYMENT_PENDING`.

**Notes:**
- Amount is taken from the order, never from the request
- Each call creates a new payment attempt; send `X-Idempotency-Key` to make
  client retries safe
- A provider failure (502) leaves the order unchanged
""",
    response_model=Payment,
    status_code=HTTP_201_CREATED,
    responses={
        400: {
            "model": ErrorResponse,
            "description": "Order not payable or provider not configured",
        },
        404: {"model": ErrorResponse, "description": "Order not found"},
        409: {"model": ErrorResponse, "description": "Order changed during checkout"},
        502: {"model": ErrorResponse, "description": "Payment provider failed"},
    },
)
async def create_payment(
    order_id: str,
    body: CreatePaymentRequest | None = None,
    context: RequestContext = Depends(get_request_context),
    idempotency_key: str | None = Header(default=None, alias=IDEMPOTENCY_KEY_HEADER),
    payment_service: PaymentService = Depends(get_payment_service),
    cache: IdempotencyCache = Depends(get_idempotency_cache),
) -> Response:
    """Create a checkout session for the order."""
    request = body or CreatePaymentRequest()
    return run_idempotent(
        cache,
        context.tenant_id,
        idempotency_key,
        lambda: payment_service.create_payment_intent(
            context.tenant_id,
            order_id,
            success_url=request.success_url,
            cancel_url=request.cancel_url,
            provider=request.provider,
        ),
        status_code=HTTP_201_CREATED,
    )


@router.get(
    "/orders/{order_id}/payments",
    summary="List payments for order",
    response_model=PaymentListResponse,
    responses={404: {"model": ErrorResponse, "description": "Order not found"}},
)
async def list_payments(
    order_id: str,
    context: RequestContext = Depends(get_request_context),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentListResponse:
    """List payment attempts, oldest first."""
    payments = payment_service.get_payments_for_order(context.tenant_id, order_id)
    return PaymentListResponse(payments=payments)


@router.post(
    "/orders/{order_id}/payments/poll",
    summary="Poll payment status",
    description="""
Ask the provider whether the order's newest pending payment has completed.

A fallback for when webhooks are delayed or lost; disabled unless
`ENABLE_PAYMENT_POLLING` is set.

**Notes:**
- The provider's answer is applied under the same transition rules as a
  webhook, so a cancelled order is never revived
- Returns the current state without calling the provider when no payment
  is pending
""",
    response_model=PaymentPollResult,
    responses={
        400: {"model": ErrorResponse, "description": "Provider not configured"},
        403: {"model": ErrorResponse, "description": "Polling is disabled"},
        404: {"model": ErrorResponse, "description": "Order or payment not found"},
        502: {"model": ErrorResponse, "description": "Payment provider failed"},
    },
)
async def poll_payment(
    order_id: str,
    context: RequestContext = Depends(get_request_context),
    payment_service: PaymentService = Depends(get_payment_service),
) -> PaymentPollResult:
    """Reconcile the order's pending payment against the provider."""
    return payment_service.poll_payment_status(context.tenant_id, order_id)
