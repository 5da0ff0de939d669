"""FastAPI dependency injection for services and request context.

Services are cached with lru_cache so one instance serves the whole process;
tests call reset_services() to rebuild them against fresh settings.
"""

from functools import lru_cache

from fastapi import Depends, Header
from pydantic import BaseModel

from ordering.models.enums import ActorRole, PaymentProvider
from ordering.models.errors import (
    ConfigurationError,
    ErrorCode,
    ForbiddenError,
    ValidationError,
)
from ordering.services.dynamodb import reset_dynamodb_service
from ordering.services.idempotency import IdempotencyCache, create_idempotency_store
from ordering.services.order_service import OrderService
from ordering.services.payment_config_service import PaymentConfigService
from ordering.services.payment_service import PaymentService
from ordering.services.secret_vault import get_secret_vault
from ordering.services.webhook_handler import WebhookHandler
from ordering.services.webhook_ledger import WebhookLedger

TENANT_HEADER = "X-Tenant-ID"
ACTOR_ROLE_HEADER = "X-Actor-Role"
IDEMPOTENCY_KEY_HEADER = "X-Idempotency-Key"


class RequestContext(BaseModel):
    """Tenant and actor for the current request, as asserted by the gateway."""

    tenant_id: str
    actor: ActorRole = ActorRole.CUSTOMER

    @property
    def is_staff(self) -> bool:
        return self.actor == ActorRole.STAFF


@lru_cache
def get_payment_config_service() -> PaymentConfigService:
    """Get cached PaymentConfigService instance."""
    return PaymentConfigService(vault=get_secret_vault())


@lru_cache
def get_payment_service() -> PaymentService:
    """Get cached PaymentService instance."""
    return PaymentService(config_service=get_payment_config_service())


@lru_cache
def get_order_service() -> OrderService:
    """Get cached OrderService instance."""
    return OrderService(payment_service=get_payment_service())


@lru_cache
def get_webhook_ledger() -> WebhookLedger:
    """Get cached WebhookLedger instance."""
    return WebhookLedger()


@lru_cache
def get_webhook_handler() -> WebhookHandler:
    """Get cached WebhookHandler instance."""
    return WebhookHandler(
        ledger=get_webhook_ledger(),
        payment_service=get_payment_service(),
        config_service=get_payment_config_service(),
    )


@lru_cache
def get_idempotency_cache() -> IdempotencyCache:
    """Get cached IdempotencyCache backed by IDEMPOTENCY_BACKEND."""
    return IdempotencyCache(create_idempotency_store())


def get_request_context(
    x_tenant_id: str | None = Header(default=None, alias=TENANT_HEADER),
    x_actor_role: str | None = Header(default=None, alias=ACTOR_ROLE_HEADER),
) -> RequestContext:
    """Resolve tenant and actor from request headers.

    Raises:
        ValidationError: Tenant header missing or blank (ERR_TENANT_REQUIRED)
        ValidationError: Unknown actor role
    """
    tenant_id = (x_tenant_id or "").strip()
    if not tenant_id:
        raise ValidationError(code=ErrorCode.TENANT_REQUIRED)

    if not x_actor_role:
        return RequestContext(tenant_id=tenant_id)
    try:
        actor = ActorRole(x_actor_role.strip().lower())
    except ValueError:
        raise ValidationError(
            message=f"Unknown actor role: {x_actor_role}",
            details={"header": ACTOR_ROLE_HEADER},
        ) from None
    return RequestContext(tenant_id=tenant_id, actor=actor)


def require_staff(context: RequestContext = Depends(get_request_context)) -> RequestContext:
    """Restrict a route to restaurant staff."""
    if not context.is_staff:
        raise ForbiddenError(message="This action requires restaurant staff")
    return context


def parse_provider(provider: str) -> PaymentProvider:
    """Resolve a provider path segment.

    Raises:
        ConfigurationError: Not a supported provider (ERR_UNSUPPORTED_PROVIDER)
    """
    try:
        return PaymentProvider.parse(provider)
    except ValueError:
        raise ConfigurationError(
            code=ErrorCode.UNSUPPORTED_PROVIDER, details={"provider": provider}
        ) from None


def reset_services() -> None:
    """Reset all cached services (for testing)."""
    get_order_service.cache_clear()
    get_payment_service.cache_clear()
    get_payment_config_service.cache_clear()
    get_webhook_ledger.cache_clear()
    get_webhook_handler.cache_clear()
    get_idempotency_cache.cache_clear()
    reset_dynamodb_service()
