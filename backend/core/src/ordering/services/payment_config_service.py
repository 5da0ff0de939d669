"""Per-tenant payment provider credentials.

Secrets are encrypted with the SecretVault before they reach DynamoDB and are
only decrypted into ProviderCredentials for the duration of a provider call
or webhook verification.
"""

from datetime import datetime, timezone
from typing import Any

from boto3.dynamodb.conditions import Key

from ordering.models.enums import PaymentProvider
from ordering.models.errors import ConfigurationError, ErrorCode, NotFoundError
from ordering.models.payment_config import (
    ConnectionTestResult,
    PaymentConfig,
    PaymentConfigSummary,
    PaymentConfigUpdate,
    ProviderCredentials,
)
from ordering.services.dynamodb import DynamoDBService, get_dynamodb_service
from ordering.services.providers import get_provider_adapter
from ordering.services.secret_vault import SecretVault, get_secret_vault
from ordering.utils.logging import get_logger

logger = get_logger(__name__)

PAYMENT_CONFIGS_TABLE = "payment-configs"


class PaymentConfigService:
    """Stores and retrieves encrypted provider credentials per tenant."""

    def __init__(
        self,
        db: DynamoDBService | None = None,
        vault: SecretVault | None = None,
    ) -> None:
        self.db = db or get_dynamodb_service()
        self.vault = vault or get_secret_vault()

    def upsert_config(
        self,
        tenant_id: str,
        provider: PaymentProvider,
        update: PaymentConfigUpdate,
    ) -> PaymentConfigSummary:
        """Create or replace a tenant's credentials for one provider.

        An omitted webhook secret keeps the previously stored one.
        """
        existing = self.get_config(tenant_id, provider)
        now = datetime.now(timezone.utc)

        encrypted_webhook_secret = existing.encrypted_webhook_secret if existing else None
        if update.webhook_secret is not None:
            encrypted_webhook_secret = self.vault.encrypt(update.webhook_secret.get_secret_value())

        config = PaymentConfig(
            tenant_id=tenant_id,
            provider=provider,
            encrypted_secret_key=self.vault.encrypt(update.secret_key.get_secret_value()),
            encrypted_webhook_secret=encrypted_webhook_secret,
            public_key=update.public_key,
            metadata=update.metadata,
            is_active=update.is_active,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )
        self.db.put_item(PAYMENT_CONFIGS_TABLE, _config_to_item(config))

        logger.info(
            "Payment config saved for tenant %s provider %s (active=%s)",
            tenant_id,
            provider.value,
            config.is_active,
        )
        return to_summary(config)

    def get_config(self, tenant_id: str, provider: PaymentProvider) -> PaymentConfig | None:
        item = self.db.get_item(
            PAYMENT_CONFIGS_TABLE,
            {"tenant_id": tenant_id, "provider": provider.value},
        )
        if not item:
            return None
        return _item_to_config(item)

    def get_config_summary(self, tenant_id: str, provider: PaymentProvider) -> PaymentConfigSummary:
        config = self.get_config(tenant_id, provider)
        if config is None:
            raise NotFoundError(ErrorCode.CONFIG_NOT_FOUND, details={"provider": provider.value})
        return to_summary(config)

    def get_active_config(
        self,
        tenant_id: str,
        provider: PaymentProvider | None = None,
    ) -> PaymentConfig | None:
        """Get the active config for a provider, or the tenant's first active one."""
        if provider is not None:
            config = self.get_config(tenant_id, provider)
            return config if config and config.is_active else None

        items = self.db.query(PAYMENT_CONFIGS_TABLE, Key("tenant_id").eq(tenant_id))
        for item in items:
            config = _item_to_config(item)
            if config.is_active:
                return config
        return None

    def get_decrypted_credentials(self, config: PaymentConfig) -> ProviderCredentials:
        """Decrypt a stored config for immediate use.

        Raises:
            SecretVaultError: Ciphertext does not authenticate
        """
        webhook_secret = None
        if config.encrypted_webhook_secret:
            webhook_secret = self.vault.decrypt(config.encrypted_webhook_secret)

        return ProviderCredentials(
            tenant_id=config.tenant_id,
            provider=config.provider,
            secret_key=self.vault.decrypt(config.encrypted_secret_key),
            webhook_secret=webhook_secret,
            metadata=config.metadata,
        )

    def test_connection(self, tenant_id: str, provider: PaymentProvider) -> ConnectionTestResult:
        """Call the provider with the stored credentials."""
        config = self.get_config(tenant_id, provider)
        if config is None:
            raise ConfigurationError(details={"provider": provider.value})

        adapter = get_provider_adapter(provider, self.get_decrypted_credentials(config))
        result = adapter.test_connection()
        logger.info(
            "Connection test for tenant %s provider %s: %s",
            tenant_id,
            provider.value,
            "ok" if result.success else "failed",
        )
        return result


def to_summary(config: PaymentConfig) -> PaymentConfigSummary:
    return PaymentConfigSummary(
        provider=config.provider,
        is_active=config.is_active,
        has_secret_key=bool(config.encrypted_secret_key),
        has_webhook_secret=bool(config.encrypted_webhook_secret),
        public_key=config.public_key,
        metadata=config.metadata,
        created_at=config.created_at,
        updated_at=config.updated_at,
    )


def _config_to_item(config: PaymentConfig) -> dict[str, Any]:
    item: dict[str, Any] = {
        "tenant_id": config.tenant_id,
        "provider": config.provider.value,
        "encrypted_secret_key": config.encrypted_secret_key,
        "metadata": config.metadata,
        "is_active": config.is_active,
        "created_at": config.created_at.isoformat(),
        "updated_at": config.updated_at.isoformat(),
    }
    if config.encrypted_webhook_secret:
        item["encrypted_webhook_secret"] = config.encrypted_webhook_secret
    if config.public_key:
        item["public_key"] = config.public_key
    return item


def _item_to_config(item: dict[str, Any]) -> PaymentConfig:
    return PaymentConfig(
        tenant_id=item["tenant_id"],
        provider=PaymentProvider(item["provider"]),
        encrypted_secret_key=item["encrypted_secret_key"],
        encrypted_webhook_secret=item.get("encrypted_webhook_secret"),
        public_key=item.get("public_key"),
        metadata=dict(item.get("metadata") or {}),
        is_active=bool(item.get("is_active", True)),
        created_at=datetime.fromisoformat(item["created_at"]),
        updated_at=datetime.fromisoformat(item["updated_at"]),
    )
