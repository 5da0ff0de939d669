"""Pytest configuration and fixtures for the restaurant ordering backend tests.

This module provides reusable fixtures for testing:
- DynamoDB mocking with moto, with every ordering table created
- Services wired to the mocked tables
- A seeded menu and encrypted payment configs for one tenant
- A fake provider adapter so checkouts never leave the process
"""

import itertools
import os
from typing import Any, Generator
from unittest.mock import MagicMock, patch

import boto3
import pytest
from moto import mock_aws
from pydantic import SecretStr

# === Environment Setup ===

# Set environment variables for testing before imports
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")
os.environ["DYNAMODB_TABLE_PREFIX"] = "test-orders"
os.environ["PAYMENT_CONFIG_ENC_KEY"] = "0123456789abcdef" * 4
os.environ["SQUARE_NOTIFICATION_URL"] = "https://api.example.com/api/webhooks/square"
os.environ["TAX_RATE"] = "0.10"
os.environ["FRONTEND_URL"] = "https://order.example.com"

if not os.environ.get("AWS_PROFILE") and not os.environ.get("AWS_ACCESS_KEY_ID"):
    os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
    os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from ordering.config import get_settings  # noqa: E402
from ordering.models.catalog import CatalogItem  # noqa: E402
from ordering.models.enums import PaymentProvider  # noqa: E402
from ordering.models.payment import CheckoutSession  # noqa: E402
from ordering.models.payment_config import PaymentConfigUpdate  # noqa: E402
from ordering.services.catalog import MENU_ITEMS_TABLE  # noqa: E402
from ordering.services.dynamodb import DynamoDBService, reset_dynamodb_service  # noqa: E402
from ordering.services.order_service import OrderService  # noqa: E402
from ordering.services.payment_config_service import PaymentConfigService  # noqa: E402
from ordering.services.payment_service import PaymentService  # noqa: E402
from ordering.services.secret_vault import SecretVault  # noqa: E402
from ordering.services.tables import create_tables  # noqa: E402
from ordering.services.webhook_handler import WebhookHandler  # noqa: E402
from ordering.services.webhook_ledger import WebhookLedger  # noqa: E402

TABLE_PREFIX = "test-orders"
TENANT_ID = "tenant-bistro"
STRIPE_WEBHOOK_SECRET = "whsec_test_secret_for_testing"
SQUARE_SIGNATURE_KEY = "sq_signature_key_for_testing"


# === Singleton Reset ===


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset cached settings and services before and after each test.

    Tests using mock_aws get fresh service instances inside the mock
    context rather than reusing ones bound to a previous test.
    """
    from ordering_api.dependencies import reset_services

    get_settings.cache_clear()
    reset_services()
    yield
    get_settings.cache_clear()
    reset_services()
    reset_dynamodb_service()


# === DynamoDB Fixtures ===


@pytest.fixture
def aws_credentials() -> None:
    """Mocked AWS credentials for moto."""
    if not os.environ.get("AWS_PROFILE"):
        os.environ["AWS_ACCESS_KEY_ID"] = "testing"
        os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
        os.environ["AWS_SECURITY_TOKEN"] = "testing"
        os.environ["AWS_SESSION_TOKEN"] = "testing"


@pytest.fixture
def dynamodb_tables(aws_credentials: None) -> Generator[Any, None, None]:
    """Mocked DynamoDB with every ordering table created."""
    with mock_aws():
        client = boto3.client("dynamodb")
        create_tables(client, TABLE_PREFIX)
        yield client


@pytest.fixture
def db(dynamodb_tables: Any) -> DynamoDBService:
    return DynamoDBService(table_prefix=TABLE_PREFIX)


@pytest.fixture
def vault() -> SecretVault:
    return SecretVault()


# === Service Fixtures ===


@pytest.fixture
def config_service(db: DynamoDBService, vault: SecretVault) -> PaymentConfigService:
    return PaymentConfigService(db=db, vault=vault)


@pytest.fixture
def payment_service(db: DynamoDBService, config_service: PaymentConfigService) -> PaymentService:
    return PaymentService(db=db, config_service=config_service)


@pytest.fixture
def order_service(db: DynamoDBService, payment_service: PaymentService) -> OrderService:
    return OrderService(db=db, payment_service=payment_service)


@pytest.fixture
def ledger(db: DynamoDBService) -> WebhookLedger:
    return WebhookLedger(db=db, claim_timeout_seconds=300)


@pytest.fixture
def webhook_handler(
    db: DynamoDBService,
    ledger: WebhookLedger,
    payment_service: PaymentService,
    config_service: PaymentConfigService,
) -> WebhookHandler:
    return WebhookHandler(
        db=db,
        ledger=ledger,
        payment_service=payment_service,
        config_service=config_service,
    )


# === Sample Data Fixtures ===


def sample_menu() -> list[dict[str, Any]]:
    """Menu rows as stored in the menu-items table."""
    return [
        {
            "menu_item_id": "ITEM-PIZZA",
            "name": "Margherita Pizza",
            "price_cents": 1200,
            "is_available": True,
            "options": [
                {
                    "option_id": "size",
                    "name": "Size",
                    "is_required": True,
                    "allow_multiple": False,
                    "values": [
                        {"value_id": "regular", "label": "Regular", "price_modifier_cents": 0},
                        {"value_id": "large", "label": "Large", "price_modifier_cents": 400},
                    ],
                },
                {
                    "option_id": "extras",
                    "name": "Extras",
                    "is_required": False,
                    "allow_multiple": True,
                    "values": [
                        {"value_id": "basil", "label": "Basil", "price_modifier_cents": 100},
                        {"value_id": "burrata", "label": "Burrata", "price_modifier_cents": 350},
                        {
                            "value_id": "truffle",
                            "label": "Truffle oil",
                            "price_modifier_cents": 500,
                            "is_available": False,
                        },
                    ],
                },
            ],
        },
        {
            "menu_item_id": "ITEM-SODA",
            "name": "Soda",
            "price_cents": 300,
            "is_available": True,
            "options": [],
        },
        {
            "menu_item_id": "ITEM-SOLDOUT",
            "name": "Seasonal Special",
            "price_cents": 1800,
            "is_available": False,
            "options": [],
        },
    ]


@pytest.fixture
def catalog_items() -> dict[str, CatalogItem]:
    """Menu as CatalogItem models, keyed by id."""
    return {row["menu_item_id"]: CatalogItem.model_validate(row) for row in sample_menu()}


@pytest.fixture
def seeded_menu(db: DynamoDBService) -> list[dict[str, Any]]:
    """Write the sample menu for TENANT_ID."""
    rows = sample_menu()
    for row in rows:
        db.put_item(MENU_ITEMS_TABLE, {"tenant_id": TENANT_ID, **row})
    return rows


@pytest.fixture
def stripe_config(config_service: PaymentConfigService) -> None:
    """Active Stripe config with a webhook secret for TENANT_ID."""
    config_service.upsert_config(
        TENANT_ID,
        PaymentProvider.STRIPE,
        PaymentConfigUpdate(
            secret_key=SecretStr("sk_test_tenant_bistro"),
            webhook_secret=SecretStr(STRIPE_WEBHOOK_SECRET),
        ),
    )


@pytest.fixture
def square_config(config_service: PaymentConfigService) -> None:
    """Active Square config with a signature key for TENANT_ID."""
    config_service.upsert_config(
        TENANT_ID,
        PaymentProvider.SQUARE,
        PaymentConfigUpdate(
            secret_key=SecretStr("EAAAl_square_access_token"),
            webhook_secret=SecretStr(SQUARE_SIGNATURE_KEY),
            metadata={"location_id": "LOC123"},
        ),
    )


# === Provider Fixtures ===


@pytest.fixture
def fake_adapter() -> Generator[MagicMock, None, None]:
    """Replace real provider adapters with a mock that issues sequential sessions.

    Session ids are ``cs_test_1``, ``cs_test_2``, ... in call order.
    """
    counter = itertools.count(1)
    adapter = MagicMock()

    def create_session(**kwargs: Any) -> CheckoutSession:
        n = next(counter)
        return CheckoutSession(
            provider_payment_id=f"cs_test_{n}",
            checkout_url=f"https://checkout.example.com/pay/cs_test_{n}",
        )

    adapter.create_checkout_session.side_effect = create_session
    with patch(
        "ordering.services.payment_service.get_provider_adapter", return_value=adapter
    ):
        yield adapter
