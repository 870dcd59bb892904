"""Schemas for pricing externally sourced orders (e.g. WooCommerce orders)."""

from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, Field

from src.modules.pricing.schemas import MAX_QUANTITY, DocumentTotals, LineTotals
from src.shared.schemas.base import BaseSchema
from src.shared.utils.money import MAX_AMOUNT


class ExternalOrderLine(BaseModel):
    """A line as the external system recorded it (historical TTC price)."""

    product_id: int | None = None
    description: str | None = None
    quantity: int = Field(le=MAX_QUANTITY)
    unit_price: Decimal = Field(le=MAX_AMOUNT)
    subtotal_ht: Decimal | None = Field(None, ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    total_tax: Decimal | None = Field(None, ge=-MAX_AMOUNT, le=MAX_AMOUNT)


class ExternalTaxLine(BaseModel):
    rate: Decimal = Field(description="Tax rate in percent")
    tax_total: Decimal = Field(ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    base_ht: Decimal | None = Field(None, ge=-MAX_AMOUNT, le=MAX_AMOUNT)


class ExternalOrder(BaseModel):
    lines: list[ExternalOrderLine]
    total: Decimal = Field(ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    total_tax: Decimal = Field(Decimal("0"), ge=-MAX_AMOUNT, le=MAX_AMOUNT)
    tax_lines: list[ExternalTaxLine] = []


class PriceSource(StrEnum):
    FRESH = "FRESH"
    FALLBACK = "FALLBACK"


class SourcedLine(BaseSchema):
    line: LineTotals
    source: PriceSource
    fallback_reason: str | None = None


class SourcedDocument(BaseSchema):
    """
    Lines with their price provenance and the document totals.

    When degraded is set the totals are the external reference totals
    verbatim, not a recomputation from the lines.
    """

    lines: list[SourcedLine]
    totals: DocumentTotals
    degraded: bool = False
    degradation_reason: str | None = None
