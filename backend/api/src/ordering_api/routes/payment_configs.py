"""Payment provider configuration endpoints (staff only).

Secrets are write-only: responses report whether a secret is stored but
never return it.
"""

from fastapi import APIRouter, Depends

from ordering.models.errors import ErrorResponse
from ordering.models.payment_config import (
    ConnectionTestResult,
    PaymentConfigSummary,
    PaymentConfigUpdate,
)
from ordering.services.payment_config_service import PaymentConfigService
from ordering_api.dependencies import (
    RequestContext,
    get_payment_config_service,
    parse_provider,
    require_staff,
)

router = APIRouter(tags=["payment-configs"])


@router.put(
    "/payment-configs/{provider}",
    summary="Save payment configuration",
    description="""
Create or replace the tenant's credentials for a provider. **Staff only.**

Omitting `webhook_secret` keeps the stored one. Square configs need
`metadata.location_id`.
""",
    response_model=PaymentConfigSummary,
    responses={
        400: {"model": ErrorResponse, "description": "Unsupported provider"},
        403: {"model": ErrorResponse, "description": "Caller is not staff"},
    },
)
async def upsert_payment_config(
    provider: str,
    body: PaymentConfigUpdate,
    context: RequestContext = Depends(require_staff),
    config_service: PaymentConfigService = Depends(get_payment_config_service),
) -> PaymentConfigSummary:
    """Store encrypted provider credentials."""
    return config_service.upsert_config(context.tenant_id, parse_provider(provider), body)


@router.get(
    "/payment-configs/{provider}",
    summary="Get payment configuration",
    response_model=PaymentConfigSummary,
    responses={
        403: {"model": ErrorResponse, "description": "Caller is not staff"},
        404: {"model": ErrorResponse, "description": "No configuration stored"},
    },
)
async def get_payment_config(
    provider: str,
    context: RequestContext = Depends(require_staff),
    config_service: PaymentConfigService = Depends(get_payment_config_service),
) -> PaymentConfigSummary:
    """Get the redacted provider configuration."""
    return config_service.get_config_summary(context.tenant_id, parse_provider(provider))


@router.post(
    "/payment-configs/{provider}/test",
    summary="Test provider connection",
    description="Make a harmless authenticated call to the provider with the stored key.",
    response_model=ConnectionTestResult,
    responses={
        400: {"model": ErrorResponse, "description": "No configuration stored"},
        403: {"model": ErrorResponse, "description": "Caller is not staff"},
    },
)
async def test_payment_config(
    provider: str,
    context: RequestContext = Depends(require_staff),
    config_service: PaymentConfigService = Depends(get_payment_config_service),
) -> ConnectionTestResult:
    """Check the stored credentials against the provider."""
    return config_service.test_connection(context.tenant_id, parse_provider(provider))
