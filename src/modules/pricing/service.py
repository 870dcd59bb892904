"""Tax-inclusive pricing: per-line HT/tax breakdown and document totals.

Every monetary step is rounded with round_money as soon as it is computed.
As a consequence line_total_ht + line_tax_amount can differ from
line_total_ttc by 0.01. Fiscal exports expect exactly these figures, so the
difference is kept as is.
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from decimal import Decimal

from src.core.config import settings
from src.core.exceptions import ValidationError
from src.modules.pricing.schemas import (
    DocumentTotals,
    LineItemInput,
    LineTotals,
    ReconciliationResult,
    ReconciliationStatus,
    TaxBreakdownEntry,
)
from src.shared.utils.money import round_money, sum_money, to_decimal

HUNDRED = Decimal("100")


def nearest_allowed_rate(rate: Decimal, allowed: Sequence[Decimal] | None = None) -> Decimal:
    """Snap a rate to the closest allowed rate (lower rate wins a tie)."""
    allowed = allowed or settings.allowed_tax_rates
    rate = to_decimal(rate)
    return min(allowed, key=lambda candidate: (abs(candidate - rate), candidate))


def infer_tax_rate(
    total_ht: Decimal,
    tax_amount: Decimal,
    allowed: Sequence[Decimal] | None = None,
    default: Decimal | None = None,
) -> Decimal:
    """
    Infer the rate of a line from its HT total and tax amount.

    Zero tax means a 0% line; without a usable HT base the default rate applies.
    """
    total_ht = to_decimal(total_ht)
    tax_amount = to_decimal(tax_amount)
    if tax_amount == 0 and total_ht > 0:
        return nearest_allowed_rate(Decimal("0"), allowed)
    if total_ht <= 0 or tax_amount < 0:
        return default if default is not None else settings.default_tax_rate
    return nearest_allowed_rate(round_money(tax_amount / total_ht * HUNDRED), allowed)


def reconcile(
    reference_total: Decimal,
    computed_total: Decimal,
    tolerance: Decimal | None = None,
) -> ReconciliationResult:
    """Compare totals; MATCH when they differ by less than the tolerance."""
    tolerance = tolerance if tolerance is not None else settings.reconciliation_tolerance
    reference_total = round_money(reference_total)
    computed_total = round_money(computed_total)
    difference = round_money(abs(reference_total - computed_total))
    return ReconciliationResult(
        reference_total=reference_total,
        computed_total=computed_total,
        difference=difference,
        status=ReconciliationStatus.MATCH if difference < tolerance else ReconciliationStatus.DRIFT,
    )


class PriceNormalizer:
    """Converts a tax-inclusive line into its tax-exclusive breakdown."""

    def __init__(self, allowed_tax_rates: Iterable[Decimal] | None = None):
        rates = allowed_tax_rates if allowed_tax_rates is not None else settings.allowed_tax_rates
        self.allowed_tax_rates = sorted(to_decimal(rate) for rate in rates)

    def validate(self, line: LineItemInput) -> None:
        if isinstance(line.quantity, bool) or line.quantity <= 0:
            raise ValidationError("Quantity must be a positive integer", field="quantity")
        if line.unit_price_ttc < 0:
            raise ValidationError("Unit price cannot be negative", field="unit_price_ttc")
        if line.tax_rate not in self.allowed_tax_rates:
            allowed = ", ".join(str(rate) for rate in self.allowed_tax_rates)
            raise ValidationError(
                f"Tax rate {line.tax_rate}% is not one of: {allowed}", field="tax_rate"
            )

    def compute(self, line: LineItemInput) -> LineTotals:
        self.validate(line)
        rate = line.tax_rate
        total_ttc = round_money(line.unit_price_ttc * line.quantity)
        total_ht = round_money(total_ttc / (1 + rate / HUNDRED))
        tax_amount = round_money(total_ht * rate / HUNDRED)
        return LineTotals(
            quantity=line.quantity,
            unit_price_ttc=line.unit_price_ttc,
            tax_rate=rate,
            line_total_ttc=total_ttc,
            line_total_ht=total_ht,
            line_tax_amount=tax_amount,
            description=line.description,
            product_id=line.product_id,
        )


class DocumentTotalsAggregator:
    """Sums already-rounded line values into document totals."""

    def __init__(
        self,
        normalizer: PriceNormalizer | None = None,
        tolerance: Decimal | None = None,
    ):
        self.normalizer = normalizer or PriceNormalizer()
        self.tolerance = tolerance if tolerance is not None else settings.reconciliation_tolerance

    def aggregate(
        self,
        lines: Sequence[LineTotals],
        reference_total: Decimal | None = None,
    ) -> DocumentTotals:
        bases: dict[Decimal, list[Decimal]] = defaultdict(list)
        taxes: dict[Decimal, list[Decimal]] = defaultdict(list)
        for line in lines:
            # Decimal("20") and Decimal("20.0") hash alike and share a group
            rate = line.tax_rate
            bases[rate].append(line.line_total_ht)
            taxes[rate].append(line.line_tax_amount)

        breakdown = []
        for rate in sorted(taxes):
            amount = sum_money(taxes[rate])
            if amount == 0:
                continue
            breakdown.append(
                TaxBreakdownEntry(tax_rate=rate, base_ht=sum_money(bases[rate]), tax_amount=amount)
            )

        totals = DocumentTotals(
            subtotal_ht=sum_money(line.line_total_ht for line in lines),
            tax_breakdown=breakdown,
            total_tax=sum_money(entry.tax_amount for entry in breakdown),
            total_ttc=sum_money(line.line_total_ttc for line in lines),
        )

        if reference_total is not None:
            result = reconcile(reference_total, totals.total_ttc, self.tolerance)
            totals.reconciliation = result
            if result.is_drift:
                totals.warnings.append(
                    f"Computed total {result.computed_total} differs from reference total "
                    f"{result.reference_total} by {result.difference}"
                )
        return totals

    def compute(
        self,
        lines: Sequence[LineItemInput],
        reference_total: Decimal | None = None,
    ) -> DocumentTotals:
        """Validate and price every line, then aggregate."""
        return self.aggregate([self.normalizer.compute(line) for line in lines], reference_total)


def compute_line_totals(line: LineItemInput) -> LineTotals:
    return PriceNormalizer().compute(line)


def compute_document_totals(
    lines: Sequence[LineItemInput], reference_total: Decimal | None = None
) -> DocumentTotals:
    return DocumentTotalsAggregator().compute(lines, reference_total)
