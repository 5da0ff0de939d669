"""Per-tenant payment provider configuration models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, SecretStr

from .enums import PaymentProvider


class PaymentConfig(BaseModel):
    """Stored credential bundle for one (tenant, provider) pair.

    Secret fields hold vault ciphertext (``iv:tag:ciphertext``), never plaintext.
    """

    tenant_id: str
    provider: PaymentProvider
    encrypted_secret_key: str
    encrypted_webhook_secret: str | None = None
    public_key: str | None = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Non-secret provider settings (e.g. Square location_id)",
    )
    is_active: bool = True
    created_at: datetime
    updated_at: datetime


class PaymentConfigUpdate(BaseModel):
    """Admin request to create or replace a tenant's provider credentials."""

    secret_key: SecretStr = Field(..., description="Provider API secret / access token")
    webhook_secret: SecretStr | None = Field(
        default=None,
        description="Webhook signing secret / signature key",
    )
    public_key: str | None = None
    metadata: dict[str, str] = Field(
        default_factory=dict,
        description="Non-secret provider settings (e.g. Square location_id)",
    )
    is_active: bool = True


class PaymentConfigSummary(BaseModel):
    """Client-safe view of a payment configuration."""

    provider: PaymentProvider
    is_active: bool
    has_secret_key: bool
    has_webhook_secret: bool
    public_key: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class ProviderCredentials(BaseModel):
    """Decrypted credentials, held in memory only for the duration of a call."""

    tenant_id: str
    provider: PaymentProvider
    secret_key: SecretStr
    webhook_secret: SecretStr | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConnectionTestResult(BaseModel):
    success: bool
    error: str | None = None
