from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class WooProduct(BaseModel):
    """
    WooCommerce REST v3 product (fields used for pricing only).

    Prices arrive as strings and are empty for unpriced products.
    """

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""
    sku: str | None = None
    price: str | None = None
    regular_price: str | None = None
    tax_class: str = ""


class WooTaxRate(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int
    country: str = ""
    rate: str = "0"
    name: str = ""
    priority: int = 1
    tax_class: str = Field("", alias="class")


@dataclass(frozen=True)
class CatalogProduct:
    """What pricing needs from the catalog: current TTC price and tax class."""

    product_id: int
    price: Decimal
    tax_class: str
