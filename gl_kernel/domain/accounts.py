"""
Account domain types (``gl_kernel.domain.accounts``).

Read-only snapshots of chart-of-accounts rows as the posting engine sees
them.  Accounts are created and maintained by COA management; the engine
only asks whether one may receive a posting.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class AccountType(str, Enum):
    """Top-level account classification."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"


class AccountSubKind(str, Enum):
    """Optional refinement of an account's type."""

    RECEIVABLE = "receivable"
    PAYABLE = "payable"
    BANK = "bank"
    CASH = "cash"
    STOCK = "stock"
    TAX = "tax"


class NormalBalance(str, Enum):
    """The side on which an account's balance normally sits."""

    DEBIT = "debit"
    CREDIT = "credit"


DEFAULT_NORMAL_BALANCE: dict[AccountType, NormalBalance] = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.EQUITY: NormalBalance.CREDIT,
    AccountType.INCOME: NormalBalance.CREDIT,
}


@dataclass(frozen=True)
class AccountInfo:
    """Snapshot of an account row.

    ``currency`` is None for accounts that accept any posting currency.
    """

    id: str
    code: str
    name: str
    account_type: AccountType
    normal_balance: NormalBalance
    tenant_id: str
    company_id: str
    sub_kind: AccountSubKind | None = None
    is_group: bool = False
    is_active: bool = True
    currency: str | None = None

    @property
    def label(self) -> str:
        return f"{self.code} {self.name}"
