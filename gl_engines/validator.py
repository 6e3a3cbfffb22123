"""
Journal validator.

Responsibility:
    Checks a proposed journal against the double-entry invariants and
    returns ``Valid`` (with totals after tax expansion) or ``Invalid``
    (with every blocking finding).

Architecture position:
    Engines -- pure, zero I/O.  Accounts and tax codes arrive pre-fetched;
    the policy and "today" are injected so the result is reproducible.

Algorithm:
    1. Entry checks: journal number, date, currency, line count.
    2. Line checks: account present, line currency, amount shape
       (exactly one positive side), amount precision.
    3. COA: one check per distinct account.  Lines whose account failed
       are not expanded further, but every failing account is reported.
    4. Tax expansion: line taxes are grouped per tax code and side, and
       each group posts one line to the tax code's account on the side of
       its base lines.  Tax accounts are COA-checked too.
    5. Balance: sum(debit) - sum(credit) after expansion, within one minor
       unit.  The finding carries the exact difference and the short side.
    6. Functional amounts, when an exchange rate is supplied.

Invariants enforced:
    - ``Invalid.issues`` holds every finding, never only the first.
    - The balance check is skipped only when a line's own amounts are
      malformed, or when a taxed line's account failed so its tax
      contribution is unknown.  A reported delta is always a real delta.
    - Warnings (degraded tax, contra-balance postings) never block.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import replace
from datetime import date
from decimal import Decimal

from gl_kernel.domain.accounts import AccountInfo
from gl_kernel.domain.currency import CurrencyRegistry
from gl_kernel.domain.journal import JournalPostingInput, PostingLine
from gl_kernel.domain.policy import PostingPolicy
from gl_kernel.domain.results import Invalid, Issue, Valid, ValidationOutcome
from gl_kernel.domain.tax import LineTax
from gl_kernel.domain.values import Currency, ExchangeRate, Money, round_money
from gl_kernel.exceptions import ErrorKind
from gl_kernel.logging_config import get_logger
from gl_engines.coa import check_accounts, normal_balance_warnings
from gl_engines.tax import (
    TAX_LOOKUP_UNAVAILABLE,
    TaxCodeLookup,
    calculate_invoice_taxes,
    convert_to_functional,
    group_taxes_by_code,
)

logger = get_logger("engines.validator")

MISSING_FIELD = "MISSING_FIELD"
INVALID_CURRENCY = "INVALID_CURRENCY"
FUTURE_DATE = "FUTURE_DATE"
NO_LINES = "NO_LINES"
INSUFFICIENT_LINES = "INSUFFICIENT_LINES"
TOO_MANY_LINES = "TOO_MANY_LINES"
CURRENCY_MISMATCH = "CURRENCY_MISMATCH"
NEGATIVE_AMOUNT = "NEGATIVE_AMOUNT"
ZERO_AMOUNTS = "ZERO_AMOUNTS"
INVALID_LINE_AMOUNTS = "INVALID_LINE_AMOUNTS"
PRECISION_EXCEEDED = "PRECISION_EXCEEDED"
EXCHANGE_RATE_MISMATCH = "EXCHANGE_RATE_MISMATCH"
UNBALANCED_JOURNAL = "UNBALANCED_JOURNAL"

_ZERO = Decimal("0")


def validate_journal(
    request: JournalPostingInput,
    accounts: Mapping[str, AccountInfo],
    tax_lookup: TaxCodeLookup,
    policy: PostingPolicy,
    today: date,
) -> ValidationOutcome:
    """
    Validate ``request`` and expand its tax lines.

    Args:
        request: The proposed journal.
        accounts: Every account the journal (and its tax codes) may
            reference, keyed by id.  A missing key means "not found".
        tax_lookup: Result of one batched tax-code fetch.
        policy: Limits and COA options for the tenant.
        today: The business date future-dated entries are compared to.

    Returns:
        ``Valid`` or ``Invalid``.
    """
    issues: list[Issue] = []
    warnings: list[Issue] = []

    currency = _check_entry(request, policy, today, issues)
    currency_code = currency.code if currency else None
    tolerance = CurrencyRegistry.get_rounding_tolerance(currency_code or "")

    # -- per-line shape ----------------------------------------------------
    malformed: set[int] = set()
    for index, line in enumerate(request.lines):
        if not line.account_id or not line.account_id.strip():
            issues.append(_error(MISSING_FIELD, "Line has no account", index, field="account_id"))
        if (
            currency_code
            and line.currency
            and line.currency.strip().upper() != currency_code
        ):
            issues.append(_error(
                CURRENCY_MISMATCH,
                f"Line currency {line.currency} differs from entry currency {currency_code}",
                index,
                line_currency=line.currency,
                entry_currency=currency_code,
            ))
        amount_issue = _check_line_amounts(index, line.debit, line.credit, currency)
        if amount_issue is not None:
            issues.append(amount_issue)
            malformed.add(index)

    # -- chart of accounts -------------------------------------------------
    references = [
        (index, line.account_id)
        for index, line in enumerate(request.lines)
        if line.account_id and line.account_id.strip()
    ]
    coa = check_accounts(
        references,
        accounts,
        request.context.tenant_id,
        request.context.company_id,
        currency_code,
        policy.coa,
    )
    issues.extend(coa.issues)

    # -- tax expansion -----------------------------------------------------
    balance_deferred = False
    taxable: list[tuple[int, Money, str | None]] = []
    for index, line in enumerate(request.lines):
        if not line.tax_code or index in malformed or currency is None:
            continue
        if line.account_id in coa.failed_account_ids:
            balance_deferred = True
            continue
        taxable.append((index, Money(line.debit or line.credit, currency), line.tax_code))

    line_taxes = {lt.line_index: lt for lt in calculate_invoice_taxes(taxable, tax_lookup)}
    for lt in line_taxes.values():
        if lt.degraded:
            warnings.append(Issue.warning(
                ErrorKind.UPSTREAM_UNAVAILABLE
                if lt.reason == TAX_LOOKUP_UNAVAILABLE
                else ErrorKind.VALIDATION,
                lt.reason or TAX_LOOKUP_UNAVAILABLE,
                f"Tax code {lt.tax_code} could not be applied; tax taken as zero",
                line_index=lt.line_index,
                details={"tax_code": lt.tax_code},
            ))

    posting_lines: list[PostingLine] = []
    for index, line in enumerate(request.lines):
        if index in malformed:
            continue
        posting_lines.append(PostingLine(
            source_index=index,
            account_id=line.account_id,
            debit=line.debit,
            credit=line.credit,
            description=line.description,
            tax_code=line.tax_code,
            project_id=line.project_id,
            cost_center=line.cost_center,
        ))
    posting_lines.extend(_grouped_tax_lines(request, line_taxes.values()))

    checked = {account_id for _, account_id in references}
    tax_references = [
        (pl.source_index, pl.account_id)
        for pl in posting_lines
        if pl.is_tax_line and pl.account_id not in checked
    ]
    if tax_references:
        tax_coa = check_accounts(
            tax_references,
            accounts,
            request.context.tenant_id,
            request.context.company_id,
            currency_code,
            policy.coa,
        )
        issues.extend(tax_coa.issues)

    # -- balance -----------------------------------------------------------
    total_debit = sum((pl.debit for pl in posting_lines), _ZERO)
    total_credit = sum((pl.credit for pl in posting_lines), _ZERO)
    if not malformed and not balance_deferred:
        difference = total_debit - total_credit
        if abs(difference) > tolerance:
            issues.append(_unbalanced(total_debit, total_credit, difference, currency))

    # -- functional currency -----------------------------------------------
    rate = request.exchange_rate
    if rate is not None and currency is not None and rate.from_currency != currency:
        issues.append(_error(
            EXCHANGE_RATE_MISMATCH,
            f"Exchange rate {rate} does not convert from {currency_code}",
            None,
            rate_from=rate.from_currency.code,
            entry_currency=currency_code,
        ))

    if issues:
        logger.debug(
            "journal_invalid",
            extra={"journal_number": request.journal_number, "codes": [i.code for i in issues]},
        )
        return Invalid(tuple(issues), tuple(warnings))

    functional_debit = functional_credit = None
    if rate is not None:
        posting_lines = [_with_functional(pl, rate, currency) for pl in posting_lines]
        functional_debit = Money(
            sum((pl.functional_debit for pl in posting_lines), _ZERO), rate.to_currency
        )
        functional_credit = Money(
            sum((pl.functional_credit for pl in posting_lines), _ZERO), rate.to_currency
        )

    warnings.extend(normal_balance_warnings(posting_lines, accounts, policy.coa))
    return Valid(
        total_debit=Money(total_debit, currency),
        total_credit=Money(total_credit, currency),
        lines=tuple(posting_lines),
        warnings=tuple(warnings),
        functional_total_debit=functional_debit,
        functional_total_credit=functional_credit,
    )


def _check_entry(
    request: JournalPostingInput,
    policy: PostingPolicy,
    today: date,
    issues: list[Issue],
) -> Currency | None:
    if not request.journal_number or not request.journal_number.strip():
        issues.append(_error(MISSING_FIELD, "Journal number is required", None, field="journal_number"))
    if request.journal_date is None:
        issues.append(_error(MISSING_FIELD, "Journal date is required", None, field="journal_date"))
    elif request.journal_date > today and not policy.allow_future_dates:
        issues.append(_error(
            FUTURE_DATE,
            f"Journal date {request.journal_date} is after {today}",
            None,
            journal_date=request.journal_date.isoformat(),
            today=today.isoformat(),
        ))

    currency = None
    try:
        currency = Currency(request.currency)
    except ValueError:
        issues.append(_error(
            INVALID_CURRENCY,
            f"Invalid currency code: {request.currency!r}",
            None,
            currency=request.currency,
        ))

    count = len(request.lines)
    if count == 0:
        issues.append(_error(NO_LINES, "Journal has no lines", None))
    elif count == 1:
        issues.append(_error(
            INSUFFICIENT_LINES,
            "A journal needs at least two lines",
            None,
            line_count=count,
        ))
    elif count > policy.max_lines:
        issues.append(_error(
            TOO_MANY_LINES,
            f"Journal has {count} lines; the limit is {policy.max_lines}",
            None,
            line_count=count,
            max_lines=policy.max_lines,
        ))
    return currency


def _check_line_amounts(
    index: int, debit: Decimal, credit: Decimal, currency: Currency | None
) -> Issue | None:
    """First problem with a line's debit/credit pair, or None."""
    if debit < 0 or credit < 0:
        return _error(
            NEGATIVE_AMOUNT,
            "Debit and credit must not be negative",
            index,
            debit=debit,
            credit=credit,
        )
    if debit == 0 and credit == 0:
        return _error(ZERO_AMOUNTS, "Line has neither a debit nor a credit", index)
    if debit > 0 and credit > 0:
        return _error(
            INVALID_LINE_AMOUNTS,
            "Line has both a debit and a credit",
            index,
            debit=debit,
            credit=credit,
        )
    if currency is not None:
        amount = debit or credit
        if round_money(amount, currency) != amount:
            return _error(
                PRECISION_EXCEEDED,
                f"{amount} has more than {currency.decimal_places} decimal places for {currency}",
                index,
                amount=amount,
                decimal_places=currency.decimal_places,
            )
    return None


def _grouped_tax_lines(
    request: JournalPostingInput, line_taxes: Iterable[LineTax]
) -> list[PostingLine]:
    """One tax line per (side, tax code), on the side of its base lines."""
    debit_side, credit_side = [], []
    for lt in line_taxes:
        base = request.lines[lt.line_index]
        (debit_side if base.debit > 0 else credit_side).append(lt)

    tax_lines = []
    for is_debit, taxes in ((True, debit_side), (False, credit_side)):
        for group in group_taxes_by_code(taxes):
            if group.tax_amount == 0:
                continue
            bases = [request.lines[i] for i in group.line_indexes]
            tax_lines.append(PostingLine(
                source_index=min(group.line_indexes),
                account_id=group.tax_account_id,
                debit=group.tax_amount if is_debit else _ZERO,
                credit=_ZERO if is_debit else group.tax_amount,
                description=f"{group.tax_code} @ {group.tax_rate}",
                tax_code=group.tax_code,
                is_tax_line=True,
                project_id=_shared(base.project_id for base in bases),
                cost_center=_shared(base.cost_center for base in bases),
            ))
    return tax_lines


def _shared(values: Iterable[str | None]) -> str | None:
    distinct = set(values)
    return distinct.pop() if len(distinct) == 1 else None


def _unbalanced(
    total_debit: Decimal,
    total_credit: Decimal,
    difference: Decimal,
    currency: Currency | None,
) -> Issue:
    delta = abs(difference)
    if currency is not None:
        delta = round_money(delta, currency)
    short_side = "credit" if difference > 0 else "debit"
    return _error(
        UNBALANCED_JOURNAL,
        f"Journal is unbalanced: debits {total_debit}, credits {total_credit}, "
        f"{short_side} side short by {delta}",
        None,
        total_debit=total_debit,
        total_credit=total_credit,
        difference=delta,
        short_side=short_side,
    )


def _with_functional(line: PostingLine, rate: ExchangeRate, currency: Currency) -> PostingLine:
    return replace(
        line,
        functional_debit=convert_to_functional(Money(line.debit, currency), rate).amount,
        functional_credit=convert_to_functional(Money(line.credit, currency), rate).amount,
    )


def _error(code: str, message: str, line_index: int | None, **details) -> Issue:
    return Issue(
        kind=ErrorKind.VALIDATION,
        code=code,
        message=message,
        line_index=line_index,
        details=details,
    )
