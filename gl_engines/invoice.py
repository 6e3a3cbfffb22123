"""
Invoice and bill posting builder.

Responsibility:
    Checks a customer invoice or supplier bill, computes its totals and
    derives the balanced ``JournalPostingInput`` that posts it.  The
    derived journal goes through ``PostingService.post`` like any other
    entry, so COA, balance, SoD and idempotency apply unchanged.

Architecture position:
    Engines -- pure, zero I/O.  Tax codes arrive as a ``TaxCodeLookup``
    fetched once by the caller.

Algorithm:
    1. One journal line for the control account (receivable or payable)
       carrying the gross total.
    2. One line per non-zero document line on its revenue or expense
       account, keeping the line's tax code.
    3. The journal validator expands those tax codes into one tax line
       per code, so the control total and the tax lines come from the
       same per-line rounded figures.

Invariants enforced:
    - ``total_amount == subtotal + tax_amount`` exactly.
    - ``tax_amount`` is the sum of per-line rounded taxes.
    - A document in a foreign currency must carry an exchange rate into
      the functional currency.
"""

from __future__ import annotations

from decimal import Decimal

from gl_kernel.domain.currency import CurrencyRegistry
from gl_kernel.domain.invoice import (
    DocumentKind,
    InvoiceLine,
    InvoicePostingInput,
    InvoiceTotals,
)
from gl_kernel.domain.journal import JournalLineInput, JournalPostingInput, PostingContext
from gl_kernel.domain.results import Issue
from gl_kernel.domain.tax import LineTax
from gl_kernel.domain.values import Money
from gl_kernel.exceptions import ErrorKind
from gl_kernel.logging_config import get_logger
from gl_engines.tax import TaxCodeLookup, calculate_invoice_taxes, group_taxes_by_code

logger = get_logger("engines.invoice")

MISSING_FIELD = "MISSING_FIELD"
INVALID_CURRENCY = "INVALID_CURRENCY"
NO_LINES = "NO_LINES"
NON_POSITIVE_QUANTITY = "NON_POSITIVE_QUANTITY"
NEGATIVE_UNIT_PRICE = "NEGATIVE_UNIT_PRICE"
NEGATIVE_LINE_AMOUNT = "NEGATIVE_LINE_AMOUNT"
LINE_AMOUNT_MISMATCH = "LINE_AMOUNT_MISMATCH"
TAX_AMOUNT_MISMATCH = "TAX_AMOUNT_MISMATCH"
NON_POSITIVE_TOTAL = "NON_POSITIVE_TOTAL"
EXCHANGE_RATE_REQUIRED = "EXCHANGE_RATE_REQUIRED"
EXCHANGE_RATE_MISMATCH = "EXCHANGE_RATE_MISMATCH"

_ZERO = Decimal("0")


def calculate_invoice_totals(
    invoice: InvoicePostingInput, tax_lookup: TaxCodeLookup
) -> InvoiceTotals:
    """Subtotal, tax and gross total in the document currency."""
    currency = invoice.currency.strip().upper()
    subtotal = sum((line.line_amount for line in invoice.lines), _ZERO)
    groups = group_taxes_by_code(_line_taxes(invoice, tax_lookup))
    tax = sum((group.tax_amount for group in groups), _ZERO)
    return InvoiceTotals(
        subtotal=subtotal,
        tax_amount=tax,
        total_amount=subtotal + tax,
        currency=currency,
    )


def validate_invoice(
    invoice: InvoicePostingInput,
    tax_lookup: TaxCodeLookup,
    functional_currency: str,
) -> tuple[Issue, ...]:
    """
    Every problem with the document itself, before a journal is built.

    Line arithmetic and expected tax are compared within one minor unit
    of the document currency.  Account and tax-code master data are not
    checked here; the journal validator reports those.

    Returns:
        An empty tuple when the document can be posted.
    """
    issues: list[Issue] = []

    for name in ("document_number", "party_id", "control_account_id"):
        if not str(getattr(invoice, name) or "").strip():
            issues.append(_error(MISSING_FIELD, f"{name} is required", None, field=name))

    currency = (invoice.currency or "").strip().upper()
    if not CurrencyRegistry.is_valid(currency):
        issues.append(_error(
            INVALID_CURRENCY, f"Unknown currency {invoice.currency!r}", None,
            currency=invoice.currency,
        ))
        currency = ""

    if not invoice.lines:
        issues.append(_error(NO_LINES, "Document has no lines", None))
        return tuple(issues)

    tolerance = CurrencyRegistry.get_rounding_tolerance(currency) if currency else _ZERO
    for index, line in enumerate(invoice.lines):
        issues.extend(_check_line(index, line, tolerance))

    if currency:
        line_taxes = _line_taxes(invoice, tax_lookup)
        for index, (line, lt) in enumerate(zip(invoice.lines, line_taxes)):
            if line.tax_amount is None or lt.degraded:
                continue
            if abs(line.tax_amount - lt.tax_amount) > tolerance:
                issues.append(_error(
                    TAX_AMOUNT_MISMATCH,
                    f"Line {line.line_number} tax {line.tax_amount} "
                    f"differs from computed {lt.tax_amount}",
                    index,
                    expected=lt.tax_amount,
                    received=line.tax_amount,
                ))

        totals = calculate_invoice_totals(invoice, tax_lookup)
        if totals.subtotal <= 0 or totals.total_amount <= 0:
            issues.append(_error(
                NON_POSITIVE_TOTAL,
                f"Document total must be positive, got {totals.total_amount}",
                None,
                subtotal=totals.subtotal,
                total_amount=totals.total_amount,
            ))

        issues.extend(_check_rate(invoice, currency, functional_currency.strip().upper()))

    return tuple(issues)


def build_invoice_posting(
    invoice: InvoicePostingInput,
    context: PostingContext,
    idempotency_key: str,
    tax_lookup: TaxCodeLookup,
) -> JournalPostingInput:
    """
    Derive the journal for an invoice or bill.

    An invoice debits the control account with the gross total and
    credits each line's revenue account; a bill mirrors both sides.  The
    result is not validated here; pass it to ``PostingService.post``.
    """
    totals = calculate_invoice_totals(invoice, tax_lookup)
    is_invoice = invoice.kind is DocumentKind.INVOICE
    label = "Invoice" if is_invoice else "Bill"

    control = JournalLineInput(
        account_id=invoice.control_account_id,
        debit=totals.total_amount if is_invoice else _ZERO,
        credit=_ZERO if is_invoice else totals.total_amount,
        description=f"{label} {invoice.document_number} - {invoice.party_name}",
    )
    lines = [control]
    for line in invoice.lines:
        if line.line_amount == 0:
            continue
        lines.append(JournalLineInput(
            account_id=line.account_id,
            debit=_ZERO if is_invoice else line.line_amount,
            credit=line.line_amount if is_invoice else _ZERO,
            description=line.description,
            tax_code=line.tax_code,
            project_id=line.project_id,
            cost_center=line.cost_center,
        ))

    logger.debug(
        "invoice_journal_built",
        extra={
            "document_number": invoice.document_number,
            "kind": invoice.kind.value,
            "line_count": len(lines),
            "total_amount": totals.total_amount,
        },
    )
    return JournalPostingInput(
        journal_number=invoice.document_number,
        description=invoice.description
        or f"{label} {invoice.document_number} - {invoice.party_name}",
        journal_date=invoice.document_date,
        currency=totals.currency,
        lines=tuple(lines),
        idempotency_key=idempotency_key,
        context=context,
        module=invoice.kind.module,
        exchange_rate=invoice.exchange_rate,
        reference=invoice.document_id,
    )


def _line_taxes(
    invoice: InvoicePostingInput, tax_lookup: TaxCodeLookup
) -> tuple[LineTax, ...]:
    currency = invoice.currency.strip().upper()
    return calculate_invoice_taxes(
        [
            (index, Money(line.line_amount, currency), line.tax_code)
            for index, line in enumerate(invoice.lines)
        ],
        tax_lookup,
    )


def _check_line(index: int, line: InvoiceLine, tolerance: Decimal) -> list[Issue]:
    issues = []
    if not line.account_id or not line.account_id.strip():
        issues.append(_error(MISSING_FIELD, "Line has no account", index, field="account_id"))
    if line.quantity <= 0:
        issues.append(_error(
            NON_POSITIVE_QUANTITY,
            f"Line {line.line_number} quantity must be positive",
            index,
            quantity=line.quantity,
        ))
    if line.unit_price < 0:
        issues.append(_error(
            NEGATIVE_UNIT_PRICE,
            f"Line {line.line_number} unit price cannot be negative",
            index,
            unit_price=line.unit_price,
        ))
    if line.line_amount < 0:
        issues.append(_error(
            NEGATIVE_LINE_AMOUNT,
            f"Line {line.line_number} amount cannot be negative",
            index,
            line_amount=line.line_amount,
        ))
    expected = line.quantity * line.unit_price
    if abs(expected - line.line_amount) > tolerance:
        issues.append(_error(
            LINE_AMOUNT_MISMATCH,
            f"Line {line.line_number} amount {line.line_amount} "
            f"is not quantity x unit price ({expected})",
            index,
            expected=expected,
            received=line.line_amount,
        ))
    return issues


def _check_rate(
    invoice: InvoicePostingInput, currency: str, functional_currency: str
) -> list[Issue]:
    rate = invoice.exchange_rate
    if currency == functional_currency:
        return []
    if rate is None:
        return [_error(
            EXCHANGE_RATE_REQUIRED,
            f"An exchange rate from {currency} to {functional_currency} is required",
            None,
            currency=currency,
            functional_currency=functional_currency,
        )]
    if rate.pair != (currency, functional_currency):
        return [_error(
            EXCHANGE_RATE_MISMATCH,
            f"Exchange rate {rate} does not convert {currency} to {functional_currency}",
            None,
            rate_from=rate.from_currency.code,
            rate_to=rate.to_currency.code,
        )]
    return []


def _error(code: str, message: str, line_index: int | None, **details) -> Issue:
    return Issue(
        kind=ErrorKind.VALIDATION,
        code=code,
        message=message,
        line_index=line_index,
        details=details,
    )
