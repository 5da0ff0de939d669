"""Runtime settings loaded from environment variables.

Every service reads its configuration through get_settings() so tests can
override values with environment variables and clear the cache.

Usage:
    from ordering.config import get_settings

    settings = get_settings()
    settings.table_prefix  # "orders-dev"
"""

import os
from decimal import Decimal
from functools import lru_cache

from pydantic import BaseModel, ConfigDict, Field


class Settings(BaseModel):
    """Environment-driven configuration for the ordering backend."""

    model_config = ConfigDict(frozen=True)

    environment: str = Field(default="dev", description="Deployment environment name")
    table_prefix: str = Field(
        default="orders-dev",
        description="Prefix prepended to every DynamoDB table name",
    )
    encryption_key: str | None = Field(
        default=None,
        description="Master key for payment credential encryption (hex or passphrase)",
    )
    tax_rate: Decimal = Field(default=Decimal("0.10"), ge=0, le=1)
    default_currency: str = Field(default="USD", min_length=3, max_length=3)
    frontend_url: str = Field(default="http://localhost:3000")
    provider_timeout_seconds: float = Field(default=10.0, gt=0)
    idempotency_ttl_seconds: int = Field(default=3600, gt=0)
    idempotency_backend: str = Field(default="dynamodb", pattern="^(dynamodb|memory)$")
    idempotency_sweep_interval_seconds: int = Field(default=600, gt=0)
    webhook_claim_timeout_seconds: int = Field(
        default=300,
        gt=0,
        description="Age after which a PROCESSING ledger claim may be taken over",
    )
    webhook_retention_days: int = Field(default=90, gt=0)
    square_environment: str = Field(default="sandbox", pattern="^(sandbox|production)$")
    square_notification_url: str = Field(
        default="",
        description="Webhook URL registered with Square; part of its signed payload",
    )
    enable_payment_polling: bool = Field(
        default=False,
        description="Allow clients to ask the provider for a pending payment's status",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"]
    )

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        environment = os.environ.get("ENVIRONMENT", "dev")
        values: dict = {
            "environment": environment,
            "table_prefix": os.environ.get("DYNAMODB_TABLE_PREFIX", f"orders-{environment}"),
            "encryption_key": os.environ.get("PAYMENT_CONFIG_ENC_KEY") or None,
        }

        optional = {
            "tax_rate": "TAX_RATE",
            "default_currency": "DEFAULT_CURRENCY",
            "frontend_url": "FRONTEND_URL",
            "provider_timeout_seconds": "PROVIDER_TIMEOUT_SECONDS",
            "idempotency_ttl_seconds": "IDEMPOTENCY_TTL_SECONDS",
            "idempotency_backend": "IDEMPOTENCY_BACKEND",
            "idempotency_sweep_interval_seconds": "IDEMPOTENCY_SWEEP_INTERVAL_SECONDS",
            "webhook_claim_timeout_seconds": "WEBHOOK_CLAIM_TIMEOUT_SECONDS",
            "webhook_retention_days": "WEBHOOK_RETENTION_DAYS",
            "square_environment": "SQUARE_ENVIRONMENT",
            "square_notification_url": "SQUARE_NOTIFICATION_URL",
            "enable_payment_polling": "ENABLE_PAYMENT_POLLING",
        }
        for field_name, env_name in optional.items():
            raw = os.environ.get(env_name)
            if raw is not None and raw != "":
                values[field_name] = raw

        origins = os.environ.get("CORS_ORIGINS")
        if origins:
            values["cors_origins"] = [o.strip() for o in origins.split(",") if o.strip()]

        return cls.model_validate(values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings (cached).

    Call get_settings.cache_clear() after changing environment variables.
    """
    return Settings.from_env()
