"""
Invoice and bill domain types (``gl_kernel.domain.invoice``).

Responsibility
--------------
Source documents that derive a journal: a customer invoice (debit the
receivable control account, credit revenue) or a supplier bill (debit
expense, credit the payable control account).  The document is turned
into a ``JournalPostingInput`` by ``gl_engines.invoice`` and then posts
through the ordinary pipeline.

Invariants enforced
-------------------
* Amounts are Decimal; quantities may be fractional.
* Tax is never supplied as a posting amount.  Lines carry a tax code;
  ``tax_amount`` on a line is only a figure the caller expects, checked
  against the computed tax.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from gl_kernel.domain.values import ExchangeRate, to_decimal


class DocumentKind(str, Enum):
    INVOICE = "invoice"
    BILL = "bill"

    @property
    def module(self) -> str:
        """SoD module the derived journal is evaluated under."""
        return "ar" if self is DocumentKind.INVOICE else "ap"


@dataclass(frozen=True)
class InvoiceLine:
    """One priced line.  ``account_id`` is the revenue or expense account."""

    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    line_amount: Decimal
    account_id: str
    tax_code: str | None = None
    tax_amount: Decimal | None = None
    project_id: str | None = None
    cost_center: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_decimal(self.quantity, "quantity"))
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price, "unit price"))
        object.__setattr__(self, "line_amount", to_decimal(self.line_amount, "line amount"))
        if self.tax_amount is not None:
            object.__setattr__(self, "tax_amount", to_decimal(self.tax_amount, "tax amount"))


@dataclass(frozen=True)
class InvoicePostingInput:
    """A customer invoice or supplier bill ready to post.

    ``control_account_id`` is the receivable account for an invoice and
    the payable account for a bill.  ``exchange_rate`` converts the
    document currency into the company's functional currency and is
    required when the two differ.
    """

    document_id: str
    document_number: str
    party_id: str
    party_name: str
    document_date: date
    currency: str
    control_account_id: str
    lines: tuple[InvoiceLine, ...]
    kind: DocumentKind = DocumentKind.INVOICE
    exchange_rate: ExchangeRate | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", tuple(self.lines))


@dataclass(frozen=True)
class InvoiceTotals:
    """Document totals in the document currency.

    ``tax_amount`` is the sum of per-line rounded taxes, so it always
    equals what the tax lines of the derived journal add up to.
    """

    subtotal: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    currency: str
