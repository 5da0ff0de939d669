"""DynamoDB table layouts for the ordering backend.

Names are unprefixed; create_tables() applies the deployment prefix. Used by
the local seed script and the test suite.
"""

from typing import Any

from ordering.services.catalog import MENU_ITEMS_TABLE
from ordering.services.idempotency import IDEMPOTENCY_TABLE
from ordering.services.payment_config_service import PAYMENT_CONFIGS_TABLE
from ordering.services.records import ORDERS_TABLE, PAYMENTS_ORDER_INDEX, PAYMENTS_TABLE
from ordering.services.webhook_ledger import WEBHOOK_EVENTS_TABLE

TABLE_DEFINITIONS: list[dict[str, Any]] = [
    {
        "TableName": ORDERS_TABLE,
        "KeySchema": [
            {"AttributeName": "tenant_id", "KeyType": "HASH"},
            {"AttributeName": "order_id", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "tenant_id", "AttributeType": "S"},
            {"AttributeName": "order_id", "AttributeType": "S"},
        ],
    },
    {
        "TableName": PAYMENTS_TABLE,
        "KeySchema": [{"AttributeName": "provider_payment_key", "KeyType": "HASH"}],
        "AttributeDefinitions": [
            {"AttributeName": "provider_payment_key", "AttributeType": "S"},
            {"AttributeName": "order_id", "AttributeType": "S"},
        ],
        "GlobalSecondaryIndexes": [
            {
                "IndexName": PAYMENTS_ORDER_INDEX,
                "KeySchema": [{"AttributeName": "order_id", "KeyType": "HASH"}],
                "Projection": {"ProjectionType": "ALL"},
            },
        ],
    },
    {
        "TableName": WEBHOOK_EVENTS_TABLE,
        "KeySchema": [{"AttributeName": "ledger_key", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "ledger_key", "AttributeType": "S"}],
    },
    {
        "TableName": PAYMENT_CONFIGS_TABLE,
        "KeySchema": [
            {"AttributeName": "tenant_id", "KeyType": "HASH"},
            {"AttributeName": "provider", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "tenant_id", "AttributeType": "S"},
            {"AttributeName": "provider", "AttributeType": "S"},
        ],
    },
    {
        "TableName": IDEMPOTENCY_TABLE,
        "KeySchema": [{"AttributeName": "cache_key", "KeyType": "HASH"}],
        "AttributeDefinitions": [{"AttributeName": "cache_key", "AttributeType": "S"}],
        "TimeToLiveSpecification": {"AttributeName": "expires_at", "Enabled": True},
    },
    {
        "TableName": MENU_ITEMS_TABLE,
        "KeySchema": [
            {"AttributeName": "tenant_id", "KeyType": "HASH"},
            {"AttributeName": "menu_item_id", "KeyType": "RANGE"},
        ],
        "AttributeDefinitions": [
            {"AttributeName": "tenant_id", "AttributeType": "S"},
            {"AttributeName": "menu_item_id", "AttributeType": "S"},
        ],
    },
]


def create_tables(dynamodb_client: Any, prefix: str) -> list[str]:
    """Create every table under ``<prefix>-<name>``. Returns the created names."""
    created = []
    for definition in TABLE_DEFINITIONS:
        table_config = dict(definition)
        table_config["TableName"] = f"{prefix}-{definition['TableName']}"
        table_config["BillingMode"] = "PAY_PER_REQUEST"

        # TimeToLiveSpecification needs to be set after table creation
        ttl_spec = table_config.pop("TimeToLiveSpecification", None)
        dynamodb_client.create_table(**table_config)
        if ttl_spec:
            dynamodb_client.update_time_to_live(
                TableName=table_config["TableName"],
                TimeToLiveSpecification=ttl_spec,
            )
        created.append(table_config["TableName"])
    return created
