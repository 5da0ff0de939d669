"""Read-only access to the tenant menu for order pricing.

Menu management lives in a separate service; the ordering core only looks
items up by id. Prices always come from here, never from the client.
"""

from abc import ABC, abstractmethod
from typing import Any

from ordering.models.catalog import CatalogItem, CatalogOption, CatalogOptionValue
from ordering.services.dynamodb import DynamoDBService, get_dynamodb_service

MENU_ITEMS_TABLE = "menu-items"


class CatalogClient(ABC):
    """Lookup interface the order service prices carts against."""

    @abstractmethod
    def get_item(self, tenant_id: str, menu_item_id: str) -> CatalogItem | None:
        """Get one menu item, or None if the tenant has no such item."""

    def get_items(self, tenant_id: str, menu_item_ids: list[str]) -> dict[str, CatalogItem]:
        """Get several menu items keyed by id. Missing ids are absent from the result."""
        found: dict[str, CatalogItem] = {}
        for menu_item_id in dict.fromkeys(menu_item_ids):
            item = self.get_item(tenant_id, menu_item_id)
            if item is not None:
                found[menu_item_id] = item
        return found


class DynamoDBCatalogClient(CatalogClient):
    """Catalog reader over the shared ``menu-items`` table."""

    def __init__(self, db: DynamoDBService | None = None) -> None:
        self.db = db or get_dynamodb_service()

    def get_item(self, tenant_id: str, menu_item_id: str) -> CatalogItem | None:
        item = self.db.get_item(
            MENU_ITEMS_TABLE,
            {"tenant_id": tenant_id, "menu_item_id": menu_item_id},
        )
        if not item:
            return None
        return _item_to_catalog_item(item)


def _item_to_catalog_item(item: dict[str, Any]) -> CatalogItem:
    """Convert a DynamoDB item to CatalogItem (numbers arrive as Decimal)."""
    options = [
        CatalogOption(
            option_id=opt["option_id"],
            name=opt.get("name", opt["option_id"]),
            is_required=bool(opt.get("is_required", False)),
            allow_multiple=bool(opt.get("allow_multiple", False)),
            values=[
                CatalogOptionValue(
                    value_id=val["value_id"],
                    label=val.get("label", val["value_id"]),
                    price_modifier_cents=int(val.get("price_modifier_cents", 0)),
                    is_available=bool(val.get("is_available", True)),
                )
                for val in opt.get("values", [])
            ],
        )
        for opt in item.get("options", [])
    ]
    return CatalogItem(
        menu_item_id=item["menu_item_id"],
        name=item["name"],
        price_cents=int(item["price_cents"]),
        is_available=bool(item.get("is_available", True)),
        options=options,
    )
