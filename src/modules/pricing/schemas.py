"""Schemas for line and document totals."""

from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel, Field

from src.shared.schemas.base import BaseSchema
from src.shared.utils.money import MAX_AMOUNT

MAX_QUANTITY = 1_000_000


class LineItemInput(BaseModel):
    """One document line as entered: quantity x tax-inclusive unit price."""

    quantity: int = Field(le=MAX_QUANTITY)
    unit_price_ttc: Decimal = Field(le=MAX_AMOUNT)
    tax_rate: Decimal = Field(description="Tax rate in percent, e.g. 20")
    description: str | None = None
    product_id: int | None = None


class LineTotals(BaseSchema):
    """Derived amounts for one line. Each amount is rounded on its own."""

    quantity: int
    unit_price_ttc: Decimal
    tax_rate: Decimal
    line_total_ttc: Decimal
    line_total_ht: Decimal
    line_tax_amount: Decimal
    description: str | None = None
    product_id: int | None = None


class TaxBreakdownEntry(BaseSchema):
    tax_rate: Decimal
    base_ht: Decimal
    tax_amount: Decimal


class ReconciliationStatus(StrEnum):
    MATCH = "MATCH"
    DRIFT = "DRIFT"


class ReconciliationResult(BaseSchema):
    """Computed total vs an externally supplied reference total. Both are kept."""

    reference_total: Decimal
    computed_total: Decimal
    difference: Decimal
    status: ReconciliationStatus

    @property
    def is_drift(self) -> bool:
        return self.status == ReconciliationStatus.DRIFT


class DocumentTotals(BaseSchema):
    subtotal_ht: Decimal
    tax_breakdown: list[TaxBreakdownEntry] = []
    total_tax: Decimal
    total_ttc: Decimal
    reconciliation: ReconciliationResult | None = None
    warnings: list[str] = []


class DocumentTotalsRequest(BaseModel):
    lines: list[LineItemInput]
    reference_total: Decimal | None = Field(None, ge=-MAX_AMOUNT, le=MAX_AMOUNT)
