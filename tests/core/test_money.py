from decimal import Decimal

import pytest

from src.shared.utils.money import round_money, sum_money, to_decimal


class TestRoundMoney:
    """Tests for round_money function."""

    def test_round_half_away_from_zero(self):
        """Halves round away from zero."""
        assert round_money(10.125) == Decimal("10.13")
        assert round_money(10.124) == Decimal("10.12")
        assert round_money(10.115) == Decimal("10.12")  # not banker's rounding
        assert round_money(10.145) == Decimal("10.15")

    def test_from_decimal(self):
        """Test rounding from Decimal input."""
        assert round_money(Decimal("10.125")) == Decimal("10.13")
        assert round_money(Decimal("99.999")) == Decimal("100.00")

    def test_from_string(self):
        """Test rounding from string input."""
        assert round_money("10.125") == Decimal("10.13")
        assert round_money("0.001") == Decimal("0.00")

    def test_from_int(self):
        """Test rounding from int input."""
        assert round_money(100) == Decimal("100.00")
        assert round_money(0) == Decimal("0.00")

    def test_negative_numbers(self):
        """Negative halves round away from zero as well."""
        assert round_money(-10.125) == Decimal("-10.13")
        assert round_money(-10.124) == Decimal("-10.12")
        assert round_money(-10.126) == Decimal("-10.13")

    def test_precision(self):
        """Test that result always has 2 decimal places."""
        result = round_money(10)
        assert str(result) == "10.00"

        result = round_money(10.1)
        assert str(result) == "10.10"

    @pytest.mark.parametrize(
        "value",
        ["0", "0.005", "1.005", "-1.005", "28.037383", "12345.6789", "-0.004"],
    )
    def test_idempotent(self, value):
        """Rounding an already rounded amount changes nothing."""
        once = round_money(value)
        assert round_money(once) == once


class TestMoneyHelpers:
    def test_to_decimal_empty_is_zero(self):
        assert to_decimal("") == Decimal("0")
        assert to_decimal(None) == Decimal("0")

    def test_to_decimal_invalid(self):
        with pytest.raises(ValueError):
            to_decimal("abc")

    def test_sum_money(self):
        assert sum_money([Decimal("0.10"), Decimal("0.20"), Decimal("0.30")]) == Decimal("0.60")
        assert sum_money([]) == Decimal("0.00")

    def test_round_out_of_range(self):
        with pytest.raises(ValueError):
            round_money(Decimal("1e27"))
