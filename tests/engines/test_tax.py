"""
Tests for the tax/FX line calculator.

Verifies:
- Per-line rounding, then sum (never sum-then-round)
- Batched lookups: one fetch for many lines
- Degradation to zero tax instead of failure
"""

from decimal import Decimal
from unittest.mock import Mock

from gl_engines.tax import (
    TAX_ACCOUNT_MISSING,
    TAX_CODE_INACTIVE,
    TAX_CODE_NOT_FOUND,
    TAX_LOOKUP_UNAVAILABLE,
    TaxCodeLookup,
    batch_lookup_tax_codes,
    calculate_invoice_taxes,
    calculate_line_tax,
    convert_to_functional,
    group_taxes_by_code,
)
from gl_kernel.domain.tax import TaxCode
from gl_kernel.domain.values import ExchangeRate, Money
from gl_kernel.exceptions import UpstreamUnavailableError
from tests.factories import SST, TAX_PAYABLE, make_tax_lookup

GST5 = TaxCode(code="GST5", rate=Decimal("0.05"), tax_account_id=TAX_PAYABLE)


class TestCalculateLineTax:
    def test_simple_rate(self):
        lt = calculate_line_tax(0, Money.of("100.00", "MYR"), "SST", make_tax_lookup(SST))
        assert lt.tax_amount == Decimal("6.00")
        assert lt.tax_rate == Decimal("0.06")
        assert lt.tax_account_id == TAX_PAYABLE
        assert lt.taxable_amount == Decimal("100.00")
        assert not lt.degraded

    def test_half_up_at_minor_unit(self):
        lt = calculate_line_tax(0, Money.of("0.25", "MYR"), "SST", make_tax_lookup(SST))
        # 0.015 -> 0.02
        assert lt.tax_amount == Decimal("0.02")

    def test_zero_decimal_currency(self):
        lt = calculate_line_tax(0, Money.of("1250", "JPY"), "SST", make_tax_lookup(SST))
        assert lt.tax_amount == Decimal("75")

    def test_no_tax_code_is_zero(self):
        lt = calculate_line_tax(3, Money.of("100", "MYR"), None, TaxCodeLookup.empty())
        assert lt.tax_amount == 0
        assert lt.tax_code is None
        assert not lt.degraded

    def test_unknown_code_degrades(self):
        lt = calculate_line_tax(0, Money.of("100", "MYR"), "NOPE", make_tax_lookup(SST))
        assert lt.degraded
        assert lt.reason == TAX_CODE_NOT_FOUND
        assert lt.tax_amount == 0

    def test_inactive_code_degrades(self):
        inactive = TaxCode(code="OLD", rate=Decimal("0.05"), tax_account_id=TAX_PAYABLE, is_active=False)
        lt = calculate_line_tax(0, Money.of("100", "MYR"), "OLD", make_tax_lookup(inactive))
        assert lt.reason == TAX_CODE_INACTIVE

    def test_code_without_account_degrades(self):
        orphan = TaxCode(code="ORPH", rate=Decimal("0.10"), tax_account_id=None)
        lt = calculate_line_tax(0, Money.of("100", "MYR"), "ORPH", make_tax_lookup(orphan))
        assert lt.reason == TAX_ACCOUNT_MISSING

    def test_zero_rate_without_account_is_fine(self):
        exempt = TaxCode(code="EX", rate=Decimal("0"), tax_account_id=None)
        lt = calculate_line_tax(0, Money.of("100", "MYR"), "EX", make_tax_lookup(exempt))
        assert not lt.degraded
        assert lt.tax_amount == 0

    def test_unavailable_lookup_degrades(self):
        lookup = TaxCodeLookup(unavailable=True, error="timeout")
        lt = calculate_line_tax(0, Money.of("100", "MYR"), "SST", lookup)
        assert lt.degraded
        assert lt.reason == TAX_LOOKUP_UNAVAILABLE


class TestPerLineRounding:
    """Tax is rounded per line, then summed."""

    def test_three_lines_of_ten_cents_at_five_percent(self):
        lines = [(i, Money.of("0.10", "MYR"), "GST5") for i in range(3)]
        taxes = calculate_invoice_taxes(lines, make_tax_lookup(GST5))

        line_rounded = sum(lt.tax_amount for lt in taxes)
        sum_then_round = Money.of("0.30", "MYR").multiply_rate("0.05").amount

        assert [lt.tax_amount for lt in taxes] == [Decimal("0.01")] * 3
        assert line_rounded == Decimal("0.03")
        assert sum_then_round == Decimal("0.02")

    def test_group_sums_rounded_line_taxes(self):
        lines = [(i, Money.of("0.10", "MYR"), "GST5") for i in range(3)]
        lines.append((3, Money.of("100.00", "MYR"), "SST"))
        groups = group_taxes_by_code(
            calculate_invoice_taxes(lines, make_tax_lookup(GST5, SST))
        )
        assert [g.tax_code for g in groups] == ["GST5", "SST"]
        gst = groups[0]
        assert gst.tax_amount == Decimal("0.03")
        assert gst.line_count == 3
        assert gst.taxable_amount == Decimal("0.30")
        assert gst.line_indexes == (0, 1, 2)

    def test_group_skips_degraded_and_untaxed(self):
        taxes = calculate_invoice_taxes(
            [(0, Money.of("10", "MYR"), None), (1, Money.of("10", "MYR"), "NOPE")],
            make_tax_lookup(SST),
        )
        assert group_taxes_by_code(taxes) == ()


class TestBatchLookup:
    def test_fetch_called_once_with_distinct_sorted_codes(self):
        fetch = Mock(return_value=[SST, GST5])
        lookup = batch_lookup_tax_codes(["SST", None, "GST5", "SST", ""], fetch)

        fetch.assert_called_once_with(["GST5", "SST"])
        assert set(lookup.codes) == {"SST", "GST5"}
        assert not lookup.unavailable

    def test_no_codes_no_fetch(self):
        fetch = Mock()
        assert batch_lookup_tax_codes([None, None], fetch) == TaxCodeLookup.empty()
        fetch.assert_not_called()

    def test_upstream_failure_absorbed(self):
        fetch = Mock(side_effect=UpstreamUnavailableError("tax_codes", "lookup_tax_codes", "timeout"))
        lookup = batch_lookup_tax_codes(["SST"], fetch)
        assert lookup.unavailable
        assert "timeout" in lookup.error


class TestFunctionalConversion:
    def test_rounded_once_to_target(self):
        rate = ExchangeRate.of("USD", "MYR", "4.47256")
        assert convert_to_functional(Money.of("100.00", "USD"), rate).amount == Decimal("447.26")
