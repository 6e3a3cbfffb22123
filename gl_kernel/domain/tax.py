"""Tax master-data and computed tax types."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class TaxCode:
    """A tax code as stored in tax master data.

    ``rate`` is a fraction (0.06 for 6%), not a percentage.
    """

    code: str
    rate: Decimal
    tax_account_id: str | None
    name: str = ""
    is_active: bool = True


@dataclass(frozen=True)
class LineTax:
    """Tax computed for one line.

    ``degraded`` is True when a tax code was requested but could not be
    resolved, so the amount was taken as zero.
    """

    line_index: int
    tax_code: str | None
    tax_rate: Decimal
    tax_amount: Decimal
    tax_account_id: str | None = None
    taxable_amount: Decimal = Decimal("0")
    degraded: bool = False
    reason: str | None = None


@dataclass(frozen=True)
class TaxGroup:
    """Tax aggregated per code for a single tax-liability posting."""

    tax_code: str
    tax_account_id: str | None
    tax_rate: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    line_count: int
    line_indexes: tuple[int, ...] = ()
