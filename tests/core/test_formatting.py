import pytest

from src.core.documents import DocumentType, TYPE_CODES, format_number, parse_number


class TestFormatNumber:
    def test_invoice(self):
        assert format_number(DocumentType.INVOICE, 2026, 1) == "F A20260001"

    def test_purchase_order(self):
        assert format_number(DocumentType.PURCHASE_ORDER, 2026, 42) == "F PO20260042"

    def test_wide_sequence(self):
        """Padding is a minimum; numbers past 9999 keep growing."""
        assert format_number(DocumentType.QUOTE, 2026, 12345) == "F D202612345"

    def test_codes_are_unique(self):
        assert len(set(TYPE_CODES.values())) == len(DocumentType)
        assert TYPE_CODES[DocumentType.INVOICE] != TYPE_CODES[DocumentType.SALES_JOURNAL]

    @pytest.mark.parametrize("sequence", [0, -1])
    def test_rejects_non_positive_sequence(self, sequence):
        with pytest.raises(ValueError):
            format_number(DocumentType.INVOICE, 2026, sequence)

    def test_rejects_short_year(self):
        with pytest.raises(ValueError):
            format_number(DocumentType.INVOICE, 26, 1)


class TestParseNumber:
    def test_parse(self):
        parsed = parse_number("F PO20260042")
        assert parsed.document_type == DocumentType.PURCHASE_ORDER
        assert parsed.year == 2026
        assert parsed.sequence == 42

    def test_parse_sales_journal(self):
        assert parse_number("F G20250007").document_type == DocumentType.SALES_JOURNAL

    @pytest.mark.parametrize("value", ["", "A20260001", "F X20260001", "F A2026001", "INV-2026-000001"])
    def test_invalid(self, value):
        assert parse_number(value) is None
