"""
Tests for currency validation and precision.

- ISO 4217 codes are validated at the domain boundary.
- Rounding tolerance is derived from currency precision; no fixed epsilon.
"""

from decimal import Decimal

import pytest

from gl_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from gl_kernel.domain.values import Currency


class TestISO4217Enforcement:
    def test_valid_currency_codes_accepted(self):
        for code in ["MYR", "SGD", "USD", "EUR", "GBP", "JPY", "KWD"]:
            assert CurrencyRegistry.is_valid(code)
            assert CurrencyRegistry.validate(code) == code

    def test_lowercase_codes_normalized(self):
        assert CurrencyRegistry.validate("myr") == "MYR"
        assert Currency("usd").code == "USD"

    def test_whitespace_trimmed(self):
        assert CurrencyRegistry.validate(" MYR ") == "MYR"

    def test_invalid_currency_codes_rejected(self):
        for code in ["XXY", "ABC", "123", "US", "USDD", "", "X"]:
            assert not CurrencyRegistry.is_valid(code)

    def test_validate_raises_on_invalid_code(self):
        with pytest.raises(ValueError, match="Invalid ISO 4217 currency code"):
            CurrencyRegistry.validate("XXY")

    def test_validate_raises_on_wrong_length(self):
        with pytest.raises(ValueError, match="must be 3 characters"):
            CurrencyRegistry.validate("US")

    def test_currency_value_object_rejects_unknown(self):
        with pytest.raises(ValueError):
            Currency("ZZZ")


class TestPrecisionDerivedTolerance:
    @pytest.mark.parametrize(
        "code, places, tolerance",
        [
            ("MYR", 2, Decimal("0.01")),
            ("USD", 2, Decimal("0.01")),
            ("JPY", 0, Decimal("1")),
            ("KWD", 3, Decimal("0.001")),
            ("CLF", 4, Decimal("0.0001")),
        ],
    )
    def test_tolerance_is_one_minor_unit(self, code, places, tolerance):
        assert CurrencyRegistry.get_decimal_places(code) == places
        assert CurrencyRegistry.get_rounding_tolerance(code) == tolerance
        assert Currency(code).rounding_tolerance == tolerance

    def test_unknown_code_falls_back_to_two_places(self):
        assert CurrencyRegistry.get_decimal_places("ZZZ") == 2
        assert CurrencyRegistry.get_rounding_tolerance("ZZZ") == Decimal("0.01")

    def test_currency_info_derives_tolerance(self):
        assert CurrencyInfo("BHD", 3).rounding_tolerance == Decimal("0.001")

    def test_registry_is_not_tiny(self):
        assert len(CurrencyRegistry.all_codes()) > 150
