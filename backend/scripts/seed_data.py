#!/usr/bin/env python3
"""Create tables and seed a demo restaurant for local development.

Seeds:
- All ordering tables (with --create-tables)
- A small menu for one tenant, with required and multi-select options
- Optionally a Stripe configuration from STRIPE_SECRET_KEY / STRIPE_WEBHOOK_SECRET

Usage:
    python backend/scripts/seed_data.py --env dev --create-tables
    python backend/scripts/seed_data.py --env dev --tenant demo-bistro
    python backend/scripts/seed_data.py --env dev --with-stripe
"""

import argparse
import os
import sys

import boto3
from pydantic import SecretStr

from ordering.models.enums import PaymentProvider
from ordering.models.payment_config import PaymentConfigUpdate
from ordering.services.catalog import MENU_ITEMS_TABLE
from ordering.services.dynamodb import DynamoDBService
from ordering.services.payment_config_service import PaymentConfigService
from ordering.services.tables import create_tables

DEMO_MENU: list[dict] = [
    {
        "menu_item_id": "ITEM-MARGHERITA",
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
                "name": "Extra toppings",
                "is_required": False,
                "allow_multiple": True,
                "values": [
                    {"value_id": "basil", "label": "Fresh basil", "price_modifier_cents": 100},
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
        "menu_item_id": "ITEM-TIRAMISU",
        "name": "Tiramisu",
        "price_cents": 650,
        "is_available": True,
        "options": [],
    },
    {
        "menu_item_id": "ITEM-LEMONADE",
        "name": "House Lemonade",
        "price_cents": 400,
        "is_available": True,
        "options": [],
    },
]


def seed_menu(db: DynamoDBService, tenant_id: str) -> int:
    """Write the demo menu for a tenant. Returns the number of items."""
    for item in DEMO_MENU:
        db.put_item(MENU_ITEMS_TABLE, {"tenant_id": tenant_id, **item})
        print(f"  Added {item['name']}")
    return len(DEMO_MENU)


def seed_stripe_config(db: DynamoDBService, tenant_id: str) -> bool:
    secret_key = os.environ.get("STRIPE_SECRET_KEY")
    if not secret_key:
        print("  STRIPE_SECRET_KEY not set, skipping Stripe config")
        return False

    webhook_secret = os.environ.get("STRIPE_WEBHOOK_SECRET")
    PaymentConfigService(db=db).upsert_config(
        tenant_id,
        PaymentProvider.STRIPE,
        PaymentConfigUpdate(
            secret_key=SecretStr(secret_key),
            webhook_secret=SecretStr(webhook_secret) if webhook_secret else None,
        ),
    )
    print("  Stored encrypted Stripe config")
    return True


def main() -> int:
    """Run the seed script."""
    parser = argparse.ArgumentParser(description="Seed development database with a demo tenant")
    parser.add_argument(
        "--env",
        choices=["dev", "staging", "prod"],
        default="dev",
        help="Target environment (default: dev)",
    )
    parser.add_argument(
        "--region",
        default=os.environ.get("AWS_DEFAULT_REGION", "eu-west-1"),
        help="AWS region (default: eu-west-1 or AWS_DEFAULT_REGION env var)",
    )
    parser.add_argument("--tenant", default="demo-bistro", help="Tenant ID to seed")
    parser.add_argument(
        "--create-tables",
        action="store_true",
        help="Create the tables first (local DynamoDB or a fresh account)",
    )
    parser.add_argument(
        "--with-stripe",
        action="store_true",
        help="Store a Stripe config from STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET",
    )
    args = parser.parse_args()

    if args.env == "prod":
        confirm = input("WARNING: You are about to modify PRODUCTION data. Type 'yes' to continue: ")
        if confirm.lower() != "yes":
            print("Aborted.")
            return 1

    os.environ["AWS_DEFAULT_REGION"] = args.region
    prefix = os.environ.get("DYNAMODB_TABLE_PREFIX", f"orders-{args.env}")
    print(f"\nSeeding {args.env} environment (region: {args.region}, prefix: {prefix})\n")

    if args.create_tables:
        client = boto3.client("dynamodb", region_name=args.region)
        for name in create_tables(client, prefix):
            print(f"  Created table {name}")
        print()

    db = DynamoDBService(table_prefix=prefix)
    count = seed_menu(db, args.tenant)
    print(f"\nSeeded {count} menu items for tenant {args.tenant}")

    if args.with_stripe:
        print()
        seed_stripe_config(db, args.tenant)

    print("\nSeed completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
