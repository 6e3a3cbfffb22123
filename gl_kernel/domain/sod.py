"""Segregation-of-duties request and decision values."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class SoDRequest:
    """What is being attempted, beyond who is attempting it.

    ``creator_id`` and ``creator_role`` describe the entry's original
    author; they matter for approval actions only.
    """

    amount: Decimal | None = None
    module: str = "gl"
    creator_role: str | None = None
    creator_id: str | None = None


@dataclass(frozen=True)
class SoDDecision:
    """Outcome of evaluating the SoD matrix.

    Derived, never persisted by the evaluator.  ``matched_rule`` and
    ``policy_checksum`` let an audit replay confirm the same table row
    produced the same answer.
    """

    allowed: bool
    requires_approval: bool = False
    approver_roles: tuple[str, ...] = ()
    reason: str | None = None
    matched_rule: str | None = None
    policy_checksum: str | None = None

    @classmethod
    def deny(
        cls,
        reason: str,
        *,
        matched_rule: str | None = None,
        policy_checksum: str | None = None,
    ) -> SoDDecision:
        return cls(
            allowed=False,
            reason=reason,
            matched_rule=matched_rule,
            policy_checksum=policy_checksum,
        )
