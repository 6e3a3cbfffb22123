"""
Posting policy types (``gl_kernel.domain.policy``).

Responsibility
--------------
The immutable configuration object injected into the engines: the SoD
role matrix, COA posting options and per-entry limits.  Built from YAML
policy packs by ``gl_config``; the kernel never reads configuration
itself.

Invariants enforced
-------------------
* Policies are frozen values.  Per-tenant variation is achieved by handing
  a different ``PostingPolicy`` to the engine, never by mutating one.
* ``checksum`` identifies the exact table that governed a decision and is
  stored on every journal for audit replay.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol

WILDCARD = "*"


class SoDEffect(str, Enum):
    ALLOW = "allow"
    REQUIRE_APPROVAL = "require_approval"
    DENY = "deny"


@dataclass(frozen=True)
class SoDRule:
    """One row of the role x action x amount matrix.

    The amount window is half-open: ``min_amount <= amount < max_amount``.
    Lower ``priority`` numbers are evaluated first; the first match wins.
    """

    name: str
    role: str
    action: str
    effect: SoDEffect
    priority: int = 100
    module: str = WILDCARD
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    approver_roles: tuple[str, ...] = ()

    def matches_amount(self, amount: Decimal | None) -> bool:
        if amount is None:
            return True
        if self.min_amount is not None and amount < self.min_amount:
            return False
        if self.max_amount is not None and amount >= self.max_amount:
            return False
        return True


@dataclass(frozen=True)
class CoaPolicy:
    """Options for chart-of-accounts checks."""

    enforce_account_currency: bool = True
    warn_on_contra_balance: bool = True


@dataclass(frozen=True)
class PostingPolicy:
    """Complete policy for one tenant/company."""

    name: str
    version: int
    roles: frozenset[str]
    rules: tuple[SoDRule, ...]
    checksum: str = ""
    currency: str = "MYR"
    approval_threshold: Decimal | None = None
    max_lines: int = 100
    allow_future_dates: bool = False
    forbid_same_role_approval: bool = False
    coa: CoaPolicy = CoaPolicy()

    def has_role(self, role: str) -> bool:
        return role in self.roles


class PolicyProvider(Protocol):
    """Supplies the policy governing a tenant/company."""

    def get_policy(self, tenant_id: str, company_id: str) -> PostingPolicy:
        ...
