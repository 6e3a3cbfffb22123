"""
Tax/FX line calculator.

Responsibility:
    Computes per-line tax from tax master data, batches tax-code lookups,
    aggregates tax per code for a single liability posting, and converts
    amounts to the functional currency with a caller-supplied rate.

Architecture position:
    Engines -- pure calculation layer.  The one I/O collaborator (the tax
    master-data fetch) is injected as a callable into
    ``batch_lookup_tax_codes``; nothing here touches the database.

Invariants enforced:
    - Tax is ``round(line_amount * rate)`` to the currency's minor unit,
      independently per line, then summed.  It is never rounded once after
      summing; the two can differ by a minor unit and the line-level
      figure is the one that posts.
    - Tax lookup failure degrades to zero tax with a warning.  This
      leniency is specific to tax: account lookups fail closed.

Failure modes:
    - Unknown, inactive, or account-less tax codes produce a ``LineTax``
      with ``degraded=True`` and zero tax, never an exception.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal

from gl_kernel.domain.tax import LineTax, TaxCode, TaxGroup
from gl_kernel.domain.values import ExchangeRate, Money
from gl_kernel.exceptions import UpstreamUnavailableError
from gl_kernel.logging_config import get_logger

logger = get_logger("engines.tax")

TAX_LOOKUP_UNAVAILABLE = "TAX_LOOKUP_UNAVAILABLE"
TAX_CODE_NOT_FOUND = "TAX_CODE_NOT_FOUND"
TAX_CODE_INACTIVE = "TAX_CODE_INACTIVE"
TAX_ACCOUNT_MISSING = "TAX_ACCOUNT_MISSING"

_ZERO = Decimal("0")


@dataclass(frozen=True)
class TaxCodeLookup:
    """Result of one batched tax-code fetch.

    ``unavailable`` is True when the fetch itself failed; every requested
    code then degrades to zero tax.
    """

    codes: Mapping[str, TaxCode] = field(default_factory=dict)
    unavailable: bool = False
    error: str | None = None

    @classmethod
    def empty(cls) -> TaxCodeLookup:
        return cls()


def batch_lookup_tax_codes(
    codes: Iterable[str | None],
    fetch: Callable[[Sequence[str]], Iterable[TaxCode]],
) -> TaxCodeLookup:
    """
    Dedupe the requested codes, fetch them once, and index the result.

    ``fetch`` is called at most once, with the distinct non-empty codes in
    sorted order.  An ``UpstreamUnavailableError`` from it is absorbed into
    ``TaxCodeLookup.unavailable``.
    """
    wanted = sorted({code for code in codes if code})
    if not wanted:
        return TaxCodeLookup.empty()

    try:
        fetched = list(fetch(wanted))
    except UpstreamUnavailableError as exc:
        logger.warning(
            "tax_lookup_unavailable",
            extra={"tax_codes": wanted, "error": str(exc)},
        )
        return TaxCodeLookup(unavailable=True, error=str(exc))

    return TaxCodeLookup(codes={tc.code: tc for tc in fetched})


def calculate_line_tax(
    line_index: int,
    line_amount: Money,
    tax_code: str | None,
    lookup: TaxCodeLookup,
) -> LineTax:
    """Tax for a single line; zero when the line carries no tax code."""
    if not tax_code:
        return LineTax(line_index, None, _ZERO, _ZERO)

    if lookup.unavailable:
        return _degraded(line_index, tax_code, TAX_LOOKUP_UNAVAILABLE)

    resolved = lookup.codes.get(tax_code)
    if resolved is None:
        return _degraded(line_index, tax_code, TAX_CODE_NOT_FOUND)
    if not resolved.is_active:
        return _degraded(line_index, tax_code, TAX_CODE_INACTIVE)

    tax = line_amount.multiply_rate(resolved.rate)
    if not tax.is_zero and not resolved.tax_account_id:
        return _degraded(line_index, tax_code, TAX_ACCOUNT_MISSING)

    return LineTax(
        line_index=line_index,
        tax_code=tax_code,
        tax_rate=resolved.rate,
        tax_amount=tax.amount,
        tax_account_id=resolved.tax_account_id,
        taxable_amount=line_amount.amount,
    )


def calculate_invoice_taxes(
    lines: Sequence[tuple[int, Money, str | None]],
    lookup: TaxCodeLookup,
) -> tuple[LineTax, ...]:
    """
    Tax for many lines against one batched lookup.

    Semantically identical to calling ``calculate_line_tax`` per line;
    ``lines`` holds ``(line_index, amount, tax_code)`` triples.
    """
    return tuple(
        calculate_line_tax(index, amount, code, lookup)
        for index, amount, code in lines
    )


def group_taxes_by_code(line_taxes: Iterable[LineTax]) -> tuple[TaxGroup, ...]:
    """
    Aggregate line taxes per tax code, ordered by code.

    ``tax_amount`` is the sum of already-rounded line taxes.  Degraded and
    untaxed lines are left out.
    """
    groups: dict[str, dict] = {}
    for lt in line_taxes:
        if lt.tax_code is None or lt.degraded:
            continue
        group = groups.setdefault(
            lt.tax_code,
            {
                "tax_account_id": lt.tax_account_id,
                "tax_rate": lt.tax_rate,
                "tax_amount": _ZERO,
                "line_count": 0,
                "taxable_amount": _ZERO,
                "line_indexes": [],
            },
        )
        group["tax_amount"] += lt.tax_amount
        group["line_count"] += 1
        group["taxable_amount"] += lt.taxable_amount
        group["line_indexes"].append(lt.line_index)

    return tuple(
        TaxGroup(
            tax_code=code,
            tax_account_id=g["tax_account_id"],
            tax_rate=g["tax_rate"],
            taxable_amount=g["taxable_amount"],
            tax_amount=g["tax_amount"],
            line_count=g["line_count"],
            line_indexes=tuple(g["line_indexes"]),
        )
        for code, g in sorted(groups.items())
    )


def convert_to_functional(amount: Money, rate: ExchangeRate) -> Money:
    """Functional-currency equivalent, rounded once to its minor unit."""
    return rate.convert(amount)


def _degraded(line_index: int, tax_code: str, reason: str) -> LineTax:
    return LineTax(
        line_index=line_index,
        tax_code=tax_code,
        tax_rate=_ZERO,
        tax_amount=_ZERO,
        degraded=True,
        reason=reason,
    )
