"""
Chart-of-accounts posting policy.

Responsibility:
    Answers whether an account may receive a posting, and collects one
    finding per offending account for a whole journal.

Architecture position:
    Engines -- pure, zero I/O.  Accounts arrive as ``AccountInfo`` snapshots
    already fetched (in one batch) by the posting service.

Invariants enforced:
    - A missing account is never assumed valid (fail closed).
    - Group/header accounts never receive postings, whatever the amount.
    - An account outside the entry's tenant/company scope is rejected.
    - Normal-balance findings are warnings only; they never block.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

from gl_kernel.domain.accounts import AccountInfo, NormalBalance
from gl_kernel.domain.journal import PostingLine
from gl_kernel.domain.policy import CoaPolicy
from gl_kernel.domain.results import Issue
from gl_kernel.exceptions import ErrorKind

ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
ACCOUNT_SCOPE_MISMATCH = "ACCOUNT_SCOPE_MISMATCH"
ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
GROUP_ACCOUNT = "GROUP_ACCOUNT"
ACCOUNT_CURRENCY_MISMATCH = "ACCOUNT_CURRENCY_MISMATCH"
CONTRA_BALANCE = "CONTRA_BALANCE"


@dataclass(frozen=True)
class CoaCheck:
    """Outcome of checking every distinct account of a journal."""

    issues: tuple[Issue, ...]
    failed_account_ids: frozenset[str]

    @property
    def ok(self) -> bool:
        return not self.issues


def can_post(
    account_id: str,
    account: AccountInfo | None,
    tenant_id: str,
    company_id: str,
    currency: str | None = None,
    policy: CoaPolicy = CoaPolicy(),
) -> Issue | None:
    """
    First reason ``account`` cannot receive a posting, or None.

    Checks, in order: exists, in scope, active, not a group account, and
    (when the policy enforces it) currency restriction.
    """
    if account is None:
        return _issue(ACCOUNT_NOT_FOUND, account_id, f"Account {account_id} not found")

    if account.tenant_id != tenant_id or account.company_id != company_id:
        return _issue(
            ACCOUNT_SCOPE_MISMATCH,
            account_id,
            f"Account {account.label} does not belong to this company",
        )
    if not account.is_active:
        return _issue(ACCOUNT_INACTIVE, account_id, f"Account {account.label} is inactive")
    if account.is_group:
        return _issue(
            GROUP_ACCOUNT,
            account_id,
            f"Account {account.label} is a group account and cannot receive postings",
        )
    if (
        policy.enforce_account_currency
        and currency is not None
        and account.currency is not None
        and account.currency != currency
    ):
        return _issue(
            ACCOUNT_CURRENCY_MISMATCH,
            account_id,
            f"Account {account.label} only accepts {account.currency}, not {currency}",
            account_currency=account.currency,
            entry_currency=currency,
        )
    return None


def check_accounts(
    references: Iterable[tuple[int, str]],
    accounts: Mapping[str, AccountInfo],
    tenant_id: str,
    company_id: str,
    currency: str | None = None,
    policy: CoaPolicy = CoaPolicy(),
) -> CoaCheck:
    """
    Check every distinct account referenced by ``(line_index, account_id)``.

    Each failing account yields exactly one issue carrying all of the line
    indices that reference it, so the caller sees every offending account
    at once.
    """
    line_indices: dict[str, list[int]] = {}
    for index, account_id in references:
        line_indices.setdefault(account_id, []).append(index)

    issues: list[Issue] = []
    failed: set[str] = set()
    for account_id, indices in line_indices.items():
        issue = can_post(
            account_id,
            accounts.get(account_id),
            tenant_id,
            company_id,
            currency,
            policy,
        )
        if issue is None:
            continue
        failed.add(account_id)
        issues.append(
            Issue(
                kind=issue.kind,
                code=issue.code,
                message=issue.message,
                line_index=indices[0],
                account_id=account_id,
                details={**issue.details, "line_indices": indices},
            )
        )
    return CoaCheck(tuple(issues), frozenset(failed))


def normal_balance_warnings(
    lines: Sequence[PostingLine],
    accounts: Mapping[str, AccountInfo],
    policy: CoaPolicy = CoaPolicy(),
) -> tuple[Issue, ...]:
    """Warn for lines posted against an account's normal balance side."""
    if not policy.warn_on_contra_balance:
        return ()

    warnings: list[Issue] = []
    for line in lines:
        account = accounts.get(line.account_id)
        if account is None:
            continue
        side = NormalBalance.DEBIT if line.is_debit else NormalBalance.CREDIT
        if side == account.normal_balance:
            continue
        warnings.append(
            Issue.warning(
                ErrorKind.COA,
                CONTRA_BALANCE,
                f"{side.value.title()} to {account.label} is against its "
                f"{account.normal_balance.value} normal balance",
                line_index=line.source_index,
                account_id=line.account_id,
            )
        )
    return tuple(warnings)


def _issue(code: str, account_id: str, message: str, **details) -> Issue:
    return Issue(
        kind=ErrorKind.COA,
        code=code,
        message=message,
        account_id=account_id,
        details=details,
    )
