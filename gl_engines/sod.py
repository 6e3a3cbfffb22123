"""
gl_engines.sod -- Segregation-of-duties policy evaluator.

Responsibility:
    Maps {role, action, amount, module} onto {allow, deny, requires
    approval by} using the declarative matrix in ``PostingPolicy``.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The policy is injected
    at call time; there is no process-wide role table.

Invariants enforced:
    - Deterministic: rules are sorted by ``(priority, declaration order)``
      and the first match wins.  The same inputs always give the same
      decision, so an audit replay reproduces the live answer.
    - Fail closed: an unknown role, or a role with no matching rule, is
      denied.  Nothing is allowed by default.
    - Self-approval is denied for approve/reject actions whenever the
      actor created the entry, before any rule is consulted.  This holds
      even if the policy table would allow it.

Failure modes:
    - PolicyConfigurationError when no policy is supplied or the matched
      rule is unusable (``require_approval`` with no approvers, or
      approvers that are not declared roles).
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal

from gl_kernel.domain.journal import APPROVAL_ACTIONS, PostingContext
from gl_kernel.domain.policy import WILDCARD, PostingPolicy, SoDEffect, SoDRule
from gl_kernel.domain.sod import SoDDecision, SoDRequest
from gl_kernel.exceptions import PolicyConfigurationError


def normalize_role(role: str | None) -> str:
    return (role or "").strip().lower()


def evaluate(
    policy: PostingPolicy | None,
    context: PostingContext,
    action: str,
    request: SoDRequest,
) -> SoDDecision:
    """Decide whether ``context`` may perform ``action``.

    Args:
        policy: The tenant's posting policy.
        context: Who is acting, and in which tenant/company.
        action: e.g. ``journal:post``, ``journal:approve``.
        request: Amount, module and (for approvals) the entry's creator.

    Returns:
        SoDDecision; ``allowed=False`` for every denial.
    """
    if policy is None:
        raise PolicyConfigurationError("<none>", ["no posting policy supplied"])

    checksum = policy.checksum or None
    role = normalize_role(context.user_role)

    if action in APPROVAL_ACTIONS:
        if request.creator_id is not None and request.creator_id == context.user_id:
            return SoDDecision.deny(
                "self-approval is forbidden: the actor created this entry",
                policy_checksum=checksum,
            )
        if (
            policy.forbid_same_role_approval
            and request.creator_role is not None
            and normalize_role(request.creator_role) == role
        ):
            return SoDDecision.deny(
                f"role '{role}' may not act on entries created by the same role",
                policy_checksum=checksum,
            )

    if not policy.has_role(role):
        return SoDDecision.deny(f"unknown role '{role}'", policy_checksum=checksum)

    rule = select_matching_rule(policy.rules, role, action, request.module, request.amount)
    if rule is None:
        return SoDDecision.deny(
            f"no rule grants '{action}' to role '{role}'", policy_checksum=checksum
        )

    if rule.effect == SoDEffect.DENY:
        return SoDDecision.deny(
            f"rule '{rule.name}' denies '{action}' to role '{role}'",
            matched_rule=rule.name,
            policy_checksum=checksum,
        )

    if rule.effect == SoDEffect.ALLOW:
        return SoDDecision(
            allowed=True,
            reason=f"allowed by rule '{rule.name}'",
            matched_rule=rule.name,
            policy_checksum=checksum,
        )

    approvers = _approver_roles(policy, rule, role)
    return SoDDecision(
        allowed=True,
        requires_approval=True,
        approver_roles=approvers,
        reason=f"approval required by rule '{rule.name}'",
        matched_rule=rule.name,
        policy_checksum=checksum,
    )


def select_matching_rule(
    rules: Sequence[SoDRule],
    role: str,
    action: str,
    module: str,
    amount: Decimal | None,
) -> SoDRule | None:
    """First rule, by priority then declaration order, matching all criteria.

    ``*`` in a rule's role, action or module matches anything.  The amount
    window is ``[min_amount, max_amount)``.
    """
    ordered = sorted(enumerate(rules), key=lambda pair: (pair[1].priority, pair[0]))
    for _, rule in ordered:
        if rule.role not in (role, WILDCARD):
            continue
        if rule.action not in (action, WILDCARD):
            continue
        if rule.module not in (module, WILDCARD):
            continue
        if not rule.matches_amount(amount):
            continue
        return rule
    return None


def _approver_roles(policy: PostingPolicy, rule: SoDRule, role: str) -> tuple[str, ...]:
    if not rule.approver_roles:
        raise PolicyConfigurationError(
            policy.name, [f"rule '{rule.name}' requires approval but names no approvers"]
        )
    undeclared = [r for r in rule.approver_roles if not policy.has_role(r)]
    if undeclared:
        raise PolicyConfigurationError(
            policy.name,
            [f"rule '{rule.name}' names undeclared approver roles: {', '.join(undeclared)}"],
        )

    approvers = rule.approver_roles
    if policy.forbid_same_role_approval:
        approvers = tuple(r for r in approvers if r != role)
        if not approvers:
            raise PolicyConfigurationError(
                policy.name,
                [f"rule '{rule.name}' leaves no approver other than the creator's role"],
            )
    return approvers
