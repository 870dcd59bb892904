"""Line pricing from the live catalog with per-line fallback to source prices.

Each line starts in FETCH_FRESH: the catalog's current price and tax-class
rate are used. Any failure (no product link, timeout, catalog error, an
unusable catalog price) moves that line alone to FALLBACK_SOURCE_PRICE,
which uses the historical price from the external order. If the catalog
cannot provide tax metadata at all, the whole document degrades to the
external totals.
"""

import asyncio
import logging
from decimal import Decimal
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError

from src.core.config import settings
from src.core.exceptions import CatalogUnavailable, ValidationError
from src.integrations.woocommerce.schemas import CatalogProduct
from src.modules.pricing.schemas import DocumentTotals, LineItemInput, TaxBreakdownEntry
from src.modules.pricing.service import (
    DocumentTotalsAggregator,
    PriceNormalizer,
    infer_tax_rate,
    nearest_allowed_rate,
)
from src.modules.sourcing.schemas import (
    ExternalOrder,
    ExternalOrderLine,
    PriceSource,
    SourcedDocument,
    SourcedLine,
)
from src.shared.utils.money import round_money

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class ProductCatalog(Protocol):
    async def get_product(self, product_id: int) -> CatalogProduct: ...

    async def load_tax_rates(self) -> None: ...

    async def get_tax_rate_for_class(self, tax_class: str | None) -> Decimal: ...


class PriceSourcingService:
    def __init__(
        self,
        catalog: ProductCatalog,
        aggregator: DocumentTotalsAggregator | None = None,
        item_timeout: float | None = None,
        default_tax_rate: Decimal | None = None,
    ):
        self.catalog = catalog
        self.aggregator = aggregator or DocumentTotalsAggregator()
        self.normalizer: PriceNormalizer = self.aggregator.normalizer
        self.item_timeout = (
            item_timeout if item_timeout is not None else settings.catalog_item_timeout_seconds
        )
        self.default_tax_rate = (
            default_tax_rate if default_tax_rate is not None else settings.default_tax_rate
        )

    async def source_document(self, order: ExternalOrder) -> SourcedDocument:
        try:
            await self.catalog.load_tax_rates()
        except CatalogUnavailable as exc:
            logger.warning("Tax metadata unavailable, using external totals: %s", exc.message)
            return self._degraded(order, exc.message)

        lines = await asyncio.gather(*(self.source_line(line) for line in order.lines))
        totals = self.aggregator.aggregate([sourced.line for sourced in lines], order.total)

        fallback_count = sum(1 for sourced in lines if sourced.source == PriceSource.FALLBACK)
        if fallback_count:
            totals.warnings.append(
                f"{fallback_count} of {len(lines)} line(s) priced from source data"
            )
        return SourcedDocument(lines=list(lines), totals=totals)

    async def source_line(self, line: ExternalOrderLine) -> SourcedLine:
        """Run one line through FETCH_FRESH, falling back on any catalog failure."""
        if line.product_id is None:
            return self._fallback(line, "No catalog product linked")

        try:
            price, rate = await asyncio.wait_for(
                self._fetch_fresh(line.product_id), timeout=self.item_timeout
            )
            priced = self.normalizer.compute(
                LineItemInput(
                    quantity=line.quantity,
                    unit_price_ttc=price,
                    tax_rate=rate,
                    description=line.description,
                    product_id=line.product_id,
                )
            )
        except asyncio.TimeoutError:
            reason = f"Catalog lookup timed out after {self.item_timeout}s"
        except CatalogUnavailable as exc:
            reason = exc.message
        except ValidationError as exc:
            reason = f"Catalog price rejected: {exc.message}"
        except PydanticValidationError as exc:
            reason = f"Catalog price rejected: {exc.errors()[0]['msg']}"
        else:
            return SourcedLine(line=priced, source=PriceSource.FRESH)

        logger.warning("Product %s priced from source data: %s", line.product_id, reason)
        return self._fallback(line, reason)

    async def _fetch_fresh(self, product_id: int) -> tuple[Decimal, Decimal]:
        product = await self.catalog.get_product(product_id)
        rate = await self.catalog.get_tax_rate_for_class(product.tax_class)
        return product.price, nearest_allowed_rate(rate, self.normalizer.allowed_tax_rates)

    def _fallback_rate(self, line: ExternalOrderLine) -> Decimal:
        if line.subtotal_ht is None or line.total_tax is None:
            return self.default_tax_rate
        return infer_tax_rate(
            line.subtotal_ht,
            line.total_tax,
            allowed=self.normalizer.allowed_tax_rates,
            default=self.default_tax_rate,
        )

    def _fallback(self, line: ExternalOrderLine, reason: str) -> SourcedLine:
        priced = self.normalizer.compute(
            LineItemInput(
                quantity=line.quantity,
                unit_price_ttc=line.unit_price,
                tax_rate=self._fallback_rate(line),
                description=line.description,
                product_id=line.product_id,
            )
        )
        return SourcedLine(line=priced, source=PriceSource.FALLBACK, fallback_reason=reason)

    def _degraded(self, order: ExternalOrder, reason: str) -> SourcedDocument:
        lines = [self._fallback(line, reason) for line in order.lines]

        breakdown = []
        for tax_line in sorted(order.tax_lines, key=lambda t: t.rate):
            tax_amount = round_money(tax_line.tax_total)
            if tax_amount == 0:
                continue
            base_ht = tax_line.base_ht
            if base_ht is None and tax_line.rate > 0:
                base_ht = tax_amount * HUNDRED / tax_line.rate
            breakdown.append(
                TaxBreakdownEntry(
                    tax_rate=tax_line.rate,
                    base_ht=round_money(base_ht),
                    tax_amount=tax_amount,
                )
            )

        total_ttc = round_money(order.total)
        total_tax = round_money(order.total_tax)
        totals = DocumentTotals(
            subtotal_ht=round_money(total_ttc - total_tax),
            tax_breakdown=breakdown,
            total_tax=total_tax,
            total_ttc=total_ttc,
            warnings=[f"Catalog unavailable, totals taken from the source document: {reason}"],
        )
        return SourcedDocument(
            lines=lines, totals=totals, degraded=True, degradation_reason=reason
        )


async def source_document(order: ExternalOrder, catalog: ProductCatalog) -> SourcedDocument:
    return await PriceSourcingService(catalog).source_document(order)
