"""
Policy validator (``gl_config.validator``).

Structural checks on a parsed ``PostingPolicy``, run before the policy is
handed to any engine.  A policy with errors must never reach the SoD
evaluator: a malformed table is a deployment defect, not a user error.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from gl_kernel.domain.journal import APPROVAL_ACTIONS
from gl_kernel.domain.policy import WILDCARD, PostingPolicy, SoDEffect
from gl_kernel.exceptions import PolicyConfigurationError


@dataclass
class PolicyValidationResult:
    """``is_valid`` only when ``errors`` is empty."""

    errors: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)


def check_posting_policy(policy: PostingPolicy) -> PolicyValidationResult:
    """Collect every structural problem in ``policy``."""
    result = PolicyValidationResult()

    if not policy.roles:
        result.add_error("no roles declared")
    if policy.max_lines <= 0:
        result.add_error(f"max_lines must be positive, got {policy.max_lines}")
    if policy.approval_threshold is not None and policy.approval_threshold < 0:
        result.add_error("approval_threshold must not be negative")

    seen: set[str] = set()
    for rule in policy.rules:
        label = f"rule '{rule.name}'"
        if rule.name in seen:
            result.add_error(f"{label}: duplicate rule name")
        seen.add(rule.name)

        if rule.role != WILDCARD and not policy.has_role(rule.role):
            result.add_error(f"{label}: role '{rule.role}' is not declared")
        for approver in rule.approver_roles:
            if not policy.has_role(approver):
                result.add_error(f"{label}: approver role '{approver}' is not declared")

        if rule.effect == SoDEffect.REQUIRE_APPROVAL:
            if not rule.approver_roles:
                result.add_error(f"{label}: require_approval without approver_roles")
            if rule.action in APPROVAL_ACTIONS:
                result.add_error(
                    f"{label}: '{rule.action}' cannot itself require approval"
                )

        for bound, value in (("min_amount", rule.min_amount), ("max_amount", rule.max_amount)):
            if value is not None and value < 0:
                result.add_error(f"{label}: {bound} must not be negative")
        if (
            rule.min_amount is not None
            and rule.max_amount is not None
            and rule.min_amount >= rule.max_amount
        ):
            result.add_error(f"{label}: min_amount must be below max_amount")

    return result


def validate_posting_policy(policy: PostingPolicy) -> PostingPolicy:
    """
    Return ``policy`` unchanged if it is well formed.

    Raises:
        PolicyConfigurationError: listing every problem found.
    """
    result = check_posting_policy(policy)
    if not result.is_valid:
        raise PolicyConfigurationError(policy.name, result.errors)
    return policy
