"""Read-only catalog view used for server-authoritative pricing.

The menu itself is owned by the catalog collaborator; the ordering core
only reads the fields it needs to validate and price a cart.
"""

from pydantic import BaseModel, Field


class CatalogOptionValue(BaseModel):
    value_id: str
    label: str
    price_modifier_cents: int = 0
    is_available: bool = True


class CatalogOption(BaseModel):
    option_id: str
    name: str
    is_required: bool = False
    allow_multiple: bool = False
    values: list[CatalogOptionValue] = Field(default_factory=list)

    @property
    def min_selections(self) -> int:
        return 1 if self.is_required else 0

    @property
    def max_selections(self) -> int:
        return 10 if self.allow_multiple else 1


class CatalogItem(BaseModel):
    """Priced menu item as seen at order time."""

    menu_item_id: str
    name: str
    price_cents: int = Field(..., ge=0)
    is_available: bool = True
    options: list[CatalogOption] = Field(default_factory=list)
