"""Order endpoints.

Provides REST endpoints for:
- Creating an order from a cart (optionally starting checkout)
- Reading a single order
- Listing a tenant's orders (staff)
- Staff status changes along the kitchen workflow
- Cancellation by customers or staff

All routes are scoped to the tenant in X-Tenant-ID. Mutating routes accept
X-Idempotency-Key and replay the first successful response for repeats.
"""

from fastapi import APIRouter, Depends, Header, Query
from starlette.responses import Response
from starlette.status import HTTP_201_CREATED

from ordering.models.enums import OrderStatus
from ordering.models.errors import ErrorResponse
from ordering.models.order import OrderDTO
from ordering.services.idempotency import IdempotencyCache
from ordering.services.order_service import OrderService
from ordering_api.dependencies import (
    IDEMPOTENCY_KEY_HEADER,
    RequestContext,
    get_idempotency_cache,
    get_order_service,
    get_request_context,
    require_staff,
)
from ordering_api.idempotent import run_idempotent
from ordering_api.models.orders import (
    CancelOrderRequest,
    CreateOrderRequest,
    OrderListResponse,
    UpdateOrderStatusRequest,
)

router = APIRouter(tags=["orders"])


@router.post(
    "/orders",
    summary="Create order",
    description="""
Price a cart against the restaurant menu and store it as a new order.

**Notes:**
- Prices come from the catalog; client-sent prices are never trusted
- With `initiate_payment` (default) a hosted checkout is started and its URL
  returned in `checkout_url`
- If checkout cannot be started the order is still created, in `CREATED`,
  and payment can be retried via `POST /orders/{order_id}/payments`
""",
    response_model=OrderDTO,
    status_code=HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid cart or missing tenant"},
        409: {"model": ErrorResponse, "description": "Idempotency key still in progress"},
    },
)
async def create_order(
    body: CreateOrderRequest,
    context: RequestContext = Depends(get_request_context),
    idempotency_key: str | None = Header(default=None, alias=IDEMPOTENCY_KEY_HEADER),
    order_service: OrderService = Depends(get_order_service),
    cache: IdempotencyCache = Depends(get_idempotency_cache),
) -> Response:
    """Create a new order."""
    return run_idempotent(
        cache,
        context.tenant_id,
        idempotency_key,
        lambda: order_service.create_order(
            context.tenant_id,
            body.items,
            customer=body.customer,
            notes=body.notes,
            currency=body.currency,
            initiate_payment=body.initiate_payment,
            success_url=body.success_url,
            cancel_url=body.cancel_url,
            provider=body.provider,
        ),
        status_code=HTTP_201_CREATED,
    )


@router.get(
    "/orders",
    summary="List orders",
    description="List the tenant's orders, newest first. **Staff only.**",
    response_model=OrderListResponse,
    responses={403: {"model": ErrorResponse, "description": "Caller is not staff"}},
)
async def list_orders(
    status: OrderStatus | None = Query(default=None, description="Filter by status"),
    limit: int = Query(default=50, ge=1, le=200),
    context: RequestContext = Depends(require_staff),
    order_service: OrderService = Depends(get_order_service),
) -> OrderListResponse:
    """List orders for the tenant."""
    orders = order_service.list_orders(context.tenant_id, status=status, limit=limit)
    return OrderListResponse(orders=orders, count=len(orders))


@router.get(
    "/orders/{order_id}",
    summary="Get order",
    description="Get an order. `checkout_url` is set while payment is pending.",
    response_model=OrderDTO,
    responses={404: {"model": ErrorResponse, "description": "Order not found"}},
)
async def get_order(
    order_id: str,
    context: RequestContext = Depends(get_request_context),
    order_service: OrderService = Depends(get_order_service),
) -> OrderDTO:
    """Get order details."""
    return order_service.get_order(context.tenant_id, order_id)


@router.patch(
    "/orders/{order_id}/status",
    summary="Update order status",
    description="""
Move an order to its next status. **Staff only.**

Allowed: PAID -> ACCEPTED -> PREPARING -> READY -> COMPLETED.
Payment-driven statuses (PAYMENT_PENDING, PAID) are set by checkout and
webhooks, not by this endpoint.
""",
    response_model=OrderDTO,
    responses={
        403: {"model": ErrorResponse, "description": "Caller is not staff"},
        404: {"model": ErrorResponse, "description": "Order not found"},
        409: {"model": ErrorResponse, "description": "Transition not allowed"},
    },
)
async def update_order_status(
    order_id: str,
    body: UpdateOrderStatusRequest,
    context: RequestContext = Depends(require_staff),
    idempotency_key: str | None = Header(default=None, alias=IDEMPOTENCY_KEY_HEADER),
    order_service: OrderService = Depends(get_order_service),
    cache: IdempotencyCache = Depends(get_idempotency_cache),
) -> Response:
    """Apply a staff status change."""
    return run_idempotent(
        cache,
        context.tenant_id,
        idempotency_key,
        lambda: order_service.update_order_status(
            context.tenant_id, order_id, body.status, actor=context.actor
        ),
    )


@router.post(
    "/orders/{order_id}/cancel",
    summary="Cancel order",
    description="""
Cancel an order.

Customers may cancel until the order is paid. Staff may cancel any order
that is not already completed or cancelled.
""",
    response_model=OrderDTO,
    responses={
        403: {"model": ErrorResponse, "description": "Actor may not cancel now"},
        404: {"model": ErrorResponse, "description": "Order not found"},
        409: {"model": ErrorResponse, "description": "Order already terminal"},
    },
)
async def cancel_order(
    order_id: str,
    body: CancelOrderRequest | None = None,
    context: RequestContext = Depends(get_request_context),
    idempotency_key: str | None = Header(default=None, alias=IDEMPOTENCY_KEY_HEADER),
    order_service: OrderService = Depends(get_order_service),
    cache: IdempotencyCache = Depends(get_idempotency_cache),
) -> Response:
    """Cancel an order as the calling actor."""
    reason = body.reason if body else None
    return run_idempotent(
        cache,
        context.tenant_id,
        idempotency_key,
        lambda: order_service.cancel_order(
            context.tenant_id, order_id, actor_is_staff=context.is_staff, reason=reason
        ),
    )
