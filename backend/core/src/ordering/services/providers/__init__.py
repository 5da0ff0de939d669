"""Payment provider adapters and the factory that selects one."""

from ordering.models.enums import PaymentProvider
from ordering.models.errors import ConfigurationError, ErrorCode
from ordering.models.payment_config import ProviderCredentials

from .base import PaymentProviderAdapter, get_header
from .square_provider import SquareAdapter
from .stripe_provider import StripeAdapter

ADAPTERS: dict[PaymentProvider, type[PaymentProviderAdapter]] = {
    PaymentProvider.STRIPE: StripeAdapter,
    PaymentProvider.SQUARE: SquareAdapter,
}


def get_adapter_class(provider: PaymentProvider) -> type[PaymentProviderAdapter]:
    """Get the adapter class for webhook parsing (no credentials needed)."""
    try:
        return ADAPTERS[provider]
    except KeyError:
        raise ConfigurationError(
            ErrorCode.UNSUPPORTED_PROVIDER, details={"provider": str(provider)}
        ) from None


def get_provider_adapter(
    provider: PaymentProvider,
    credentials: ProviderCredentials,
    timeout_seconds: float | None = None,
) -> PaymentProviderAdapter:
    """Build an adapter bound to one tenant's decrypted credentials."""
    return get_adapter_class(provider)(credentials, timeout_seconds)


__all__ = [
    "ADAPTERS",
    "PaymentProviderAdapter",
    "SquareAdapter",
    "StripeAdapter",
    "get_adapter_class",
    "get_header",
    "get_provider_adapter",
]
