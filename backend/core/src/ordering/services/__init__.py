"""Backend services for restaurant ordering and payment reconciliation."""

from .catalog import CatalogClient, DynamoDBCatalogClient
from .dynamodb import DynamoDBService, get_dynamodb_service, reset_dynamodb_service
from .idempotency import (
    DynamoDBIdempotencyStore,
    IdempotencyCache,
    InMemoryIdempotencyStore,
    create_idempotency_store,
)
from .order_service import OrderService
from .payment_config_service import PaymentConfigService
from .payment_service import PaymentService
from .secret_vault import SecretVault
from .webhook_handler import WebhookHandler
from .webhook_ledger import WebhookLedger

__all__ = [
    "CatalogClient",
    "DynamoDBCatalogClient",
    "DynamoDBService",
    "get_dynamodb_service",
    "reset_dynamodb_service",
    "DynamoDBIdempotencyStore",
    "IdempotencyCache",
    "InMemoryIdempotencyStore",
    "create_idempotency_store",
    "OrderService",
    "PaymentConfigService",
    "PaymentService",
    "SecretVault",
    "WebhookHandler",
    "WebhookLedger",
]
