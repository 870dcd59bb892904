from decimal import Decimal

import pytest
from httpx import AsyncClient
from pydantic import ValidationError as PydanticValidationError

from src.core.exceptions import ValidationError
from src.modules.pricing.schemas import LineItemInput, ReconciliationStatus
from src.modules.pricing.service import (
    DocumentTotalsAggregator,
    PriceNormalizer,
    compute_document_totals,
    compute_line_totals,
    infer_tax_rate,
    nearest_allowed_rate,
    reconcile,
)


def line(quantity, price, rate) -> LineItemInput:
    return LineItemInput(quantity=quantity, unit_price_ttc=Decimal(price), tax_rate=Decimal(rate))


class TestLineTotals:
    def test_standard_rate(self):
        totals = compute_line_totals(line(2, "120.00", "20"))

        assert totals.line_total_ttc == Decimal("240.00")
        assert totals.line_total_ht == Decimal("200.00")
        assert totals.line_tax_amount == Decimal("40.00")

    def test_seven_percent(self):
        totals = compute_line_totals(line(3, "10.00", "7"))

        assert totals.line_total_ttc == Decimal("30.00")
        assert totals.line_total_ht == Decimal("28.04")
        assert totals.line_tax_amount == Decimal("1.96")

    def test_independent_rounding_drift_is_kept(self):
        """HT + tax may differ from TTC by a cent; exports expect exactly that."""
        totals = compute_line_totals(line(3, "0.41", "20"))

        assert totals.line_total_ttc == Decimal("1.23")
        assert totals.line_total_ht == Decimal("1.03")
        assert totals.line_tax_amount == Decimal("0.21")
        assert totals.line_total_ht + totals.line_tax_amount == Decimal("1.24")

    def test_zero_rate(self):
        totals = compute_line_totals(line(4, "2.50", "0"))
        assert totals.line_total_ht == totals.line_total_ttc == Decimal("10.00")
        assert totals.line_tax_amount == Decimal("0.00")

    def test_keeps_line_metadata(self):
        totals = compute_line_totals(
            LineItemInput(
                quantity=1,
                unit_price_ttc=Decimal("12"),
                tax_rate=Decimal("10"),
                description="Thé vert",
                product_id=7,
            )
        )
        assert totals.description == "Thé vert"
        assert totals.product_id == 7


class TestLineValidation:
    @pytest.mark.parametrize("quantity", [0, -2])
    def test_quantity_must_be_positive(self, quantity):
        with pytest.raises(ValidationError) as exc_info:
            compute_line_totals(line(quantity, "10", "20"))
        assert exc_info.value.details["field"] == "quantity"

    def test_negative_price(self):
        with pytest.raises(ValidationError) as exc_info:
            compute_line_totals(line(1, "-0.01", "20"))
        assert exc_info.value.details["field"] == "unit_price_ttc"

    def test_unknown_rate(self):
        with pytest.raises(ValidationError) as exc_info:
            compute_line_totals(line(1, "10", "5.5"))
        assert exc_info.value.details["field"] == "tax_rate"

    def test_custom_allowed_rates(self):
        normalizer = PriceNormalizer(allowed_tax_rates=[Decimal("5.5"), Decimal("20")])
        assert normalizer.compute(line(1, "10.55", "5.5")).line_total_ht == Decimal("10.00")

    def test_zero_price_allowed(self):
        assert compute_line_totals(line(1, "0", "20")).line_total_ttc == Decimal("0.00")

    def test_price_above_limit_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            line(1, "1e27", "20")

    def test_quantity_above_limit_is_rejected(self):
        with pytest.raises(PydanticValidationError):
            line(10_000_000, "1", "20")


class TestDocumentTotals:
    def test_breakdown_by_rate(self):
        totals = compute_document_totals(
            [
                line(2, "120.00", "20"),
                line(3, "10.00", "7"),
                line(1, "60.00", "20"),
                line(1, "11.00", "10"),
            ]
        )

        assert [e.tax_rate for e in totals.tax_breakdown] == [
            Decimal("7"),
            Decimal("10"),
            Decimal("20"),
        ]
        by_rate = {e.tax_rate: e for e in totals.tax_breakdown}
        assert by_rate[Decimal("20")].tax_amount == Decimal("50.00")
        assert by_rate[Decimal("20")].base_ht == Decimal("250.00")
        assert by_rate[Decimal("10")].tax_amount == Decimal("1.00")
        assert by_rate[Decimal("7")].tax_amount == Decimal("1.96")

        assert totals.subtotal_ht == Decimal("288.04")
        assert totals.total_tax == Decimal("52.96")
        assert totals.total_ttc == Decimal("341.00")
        assert totals.reconciliation is None

    def test_zero_tax_rates_excluded(self):
        totals = compute_document_totals([line(1, "10", "0"), line(1, "12", "20")])

        assert [e.tax_rate for e in totals.tax_breakdown] == [Decimal("20")]
        assert totals.subtotal_ht == Decimal("20.00")
        assert totals.total_ttc == Decimal("22.00")

    def test_sums_rounded_lines(self):
        """Tax is summed from line amounts, not recomputed from the subtotal."""
        totals = compute_document_totals([line(3, "0.41", "20")] * 3)

        assert totals.tax_breakdown[0].tax_amount == Decimal("0.63")
        assert totals.subtotal_ht == Decimal("3.09")
        assert totals.total_ttc == Decimal("3.69")

    def test_equal_rates_share_a_group(self):
        totals = compute_document_totals([line(1, "12", "20"), line(1, "12", "20.0")])
        assert len(totals.tax_breakdown) == 1
        assert totals.tax_breakdown[0].tax_amount == Decimal("4.00")

    def test_empty_document(self):
        totals = compute_document_totals([])
        assert totals.total_ttc == Decimal("0")
        assert totals.tax_breakdown == []

    def test_invalid_line_rejects_document(self):
        with pytest.raises(ValidationError):
            compute_document_totals([line(1, "10", "20"), line(0, "10", "20")])


class TestReconciliation:
    def test_drift(self):
        totals = compute_document_totals([line(1, "999.98", "20")], Decimal("1000.00"))

        result = totals.reconciliation
        assert result.status == ReconciliationStatus.DRIFT
        assert result.difference == Decimal("0.02")
        assert result.reference_total == Decimal("1000.00")
        assert result.computed_total == Decimal("999.98")
        assert totals.total_ttc == Decimal("999.98")
        assert totals.warnings

    def test_match(self):
        totals = compute_document_totals([line(1, "1000.00", "20")], Decimal("1000.00"))

        assert totals.reconciliation.status == ReconciliationStatus.MATCH
        assert totals.reconciliation.difference == Decimal("0.00")
        assert totals.warnings == []

    def test_one_cent_is_drift(self):
        assert reconcile(Decimal("10.00"), Decimal("10.01")).status == ReconciliationStatus.DRIFT

    def test_custom_tolerance(self):
        aggregator = DocumentTotalsAggregator(tolerance=Decimal("0.05"))
        totals = aggregator.compute([line(1, "999.98", "20")], Decimal("1000.00"))
        assert totals.reconciliation.status == ReconciliationStatus.MATCH


class TestRateInference:
    def test_nearest_allowed_rate(self):
        assert nearest_allowed_rate(Decimal("19.6")) == Decimal("20")
        assert nearest_allowed_rate(Decimal("6.9")) == Decimal("7")

    def test_tie_takes_lower_rate(self):
        assert nearest_allowed_rate(Decimal("8.5")) == Decimal("7")

    def test_infer_from_amounts(self):
        assert infer_tax_rate(Decimal("100.00"), Decimal("20.00")) == Decimal("20")
        assert infer_tax_rate(Decimal("28.04"), Decimal("1.96")) == Decimal("7")

    def test_infer_zero_tax(self):
        assert infer_tax_rate(Decimal("50"), Decimal("0")) == Decimal("0")

    def test_infer_without_base_uses_default(self):
        assert infer_tax_rate(Decimal("0"), Decimal("5")) == Decimal("20")
        assert infer_tax_rate(Decimal("0"), Decimal("5"), default=Decimal("10")) == Decimal("10")


class TestPricingApi:
    async def test_line_totals(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/pricing/line-totals",
            json={"quantity": 2, "unit_price_ttc": "120.00", "tax_rate": 20},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert Decimal(data["line_total_ttc"]) == Decimal("240.00")
        assert Decimal(data["line_total_ht"]) == Decimal("200.00")
        assert Decimal(data["line_tax_amount"]) == Decimal("40.00")

    async def test_line_totals_invalid_rate(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/pricing/line-totals",
            json={"quantity": 1, "unit_price_ttc": "10", "tax_rate": 13},
        )

        assert response.status_code == 422
        body = response.json()
        assert body["success"] is False
        assert body["errors"][0]["field"] == "tax_rate"

    async def test_document_totals_with_drift(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/pricing/document-totals",
            json={
                "lines": [{"quantity": 1, "unit_price_ttc": "999.98", "tax_rate": 20}],
                "reference_total": "1000.00",
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["data"]["reconciliation"]["status"] == "DRIFT"
        assert Decimal(body["data"]["reconciliation"]["difference"]) == Decimal("0.02")
        assert body["message"]

    async def test_document_totals_missing_fields(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/pricing/document-totals", json={"lines": [{"quantity": 1}]}
        )
        assert response.status_code == 422

    async def test_line_totals_price_out_of_range(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/pricing/line-totals",
            json={"quantity": 1, "unit_price_ttc": "1e27", "tax_rate": 20},
        )

        assert response.status_code == 422
        assert response.json()["success"] is False

    async def test_document_totals_reference_out_of_range(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/pricing/document-totals",
            json={
                "lines": [{"quantity": 1, "unit_price_ttc": "10", "tax_rate": 20}],
                "reference_total": "1e27",
            },
        )

        assert response.status_code == 422
