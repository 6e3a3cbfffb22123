"""
Tests for the segregation-of-duties evaluator.

Verifies:
- First match by (priority, declaration order) wins
- Half-open amount windows
- Fail closed for unknown roles and unmatched actions
- Self-approval denied before any rule is consulted
- Misconfigured require_approval rules raise PolicyConfigurationError
"""

from decimal import Decimal

import pytest

from gl_config import load_policy_pack
from gl_engines.sod import evaluate, normalize_role, select_matching_rule
from gl_kernel.domain.journal import APPROVE_ACTION, POST_ACTION, REJECT_ACTION, REVERSE_ACTION
from gl_kernel.domain.sod import SoDRequest
from gl_kernel.exceptions import PolicyConfigurationError
from tests.factories import make_context, make_policy, rule


def _post(policy, role, amount, user_id="user-1"):
    return evaluate(
        policy,
        make_context(role=role, user_id=user_id),
        POST_ACTION,
        SoDRequest(amount=Decimal(amount)),
    )


@pytest.fixture(scope="module")
def business():
    return load_policy_pack("business")


class TestRuleSelection:
    def test_priority_beats_declaration_order(self):
        rules = [
            rule("late", "clerk", POST_ACTION, "deny", priority=100),
            rule("early", "clerk", POST_ACTION, "allow", priority=5),
        ]
        assert select_matching_rule(rules, "clerk", POST_ACTION, "gl", Decimal("1")).name == "early"

    def test_declaration_order_breaks_ties(self):
        rules = [
            rule("first", "clerk", POST_ACTION, "allow"),
            rule("second", "clerk", POST_ACTION, "deny"),
        ]
        assert select_matching_rule(rules, "clerk", POST_ACTION, "gl", None).name == "first"

    def test_wildcards(self):
        rules = [rule("any", "*", "*", "allow", module="*")]
        assert select_matching_rule(rules, "clerk", REVERSE_ACTION, "ap", None).name == "any"

    def test_module_must_match(self):
        rules = [rule("ap-only", "clerk", POST_ACTION, "allow", module="ap")]
        assert select_matching_rule(rules, "clerk", POST_ACTION, "gl", None) is None

    @pytest.mark.parametrize(
        "amount, expected",
        [("4999.99", "small"), ("5000", "large"), ("0", "small")],
    )
    def test_amount_window_is_half_open(self, amount, expected):
        rules = [
            rule("small", "clerk", POST_ACTION, "allow", max_amount="5000"),
            rule("large", "clerk", POST_ACTION, "deny", min_amount="5000"),
        ]
        chosen = select_matching_rule(rules, "clerk", POST_ACTION, "gl", Decimal(amount))
        assert chosen.name == expected


class TestEvaluate:
    def test_allow(self):
        policy = make_policy([rule("clerk-post", "clerk", POST_ACTION, "allow")])
        decision = _post(policy, "clerk", "100")
        assert decision.allowed
        assert not decision.requires_approval
        assert decision.matched_rule == "clerk-post"
        assert decision.policy_checksum == "test-checksum"

    def test_deny_rule(self):
        policy = make_policy([rule("no-post", "clerk", POST_ACTION, "deny")])
        decision = _post(policy, "clerk", "100")
        assert not decision.allowed
        assert decision.matched_rule == "no-post"

    def test_require_approval(self):
        policy = make_policy([
            rule("clerk-post", "clerk", POST_ACTION, "require_approval", approver_roles=["manager"]),
        ])
        decision = _post(policy, "clerk", "100")
        assert decision.allowed
        assert decision.requires_approval
        assert decision.approver_roles == ("manager",)

    def test_unknown_role_denied(self):
        policy = make_policy([rule("anyone", "*", "*", "allow")])
        decision = _post(policy, "intern", "1")
        assert not decision.allowed
        assert "unknown role" in decision.reason

    def test_no_matching_rule_denied(self):
        policy = make_policy([rule("clerk-post", "clerk", POST_ACTION, "allow", max_amount="10")])
        decision = _post(policy, "clerk", "10")
        assert not decision.allowed
        assert decision.matched_rule is None

    def test_role_is_normalized(self):
        policy = make_policy([rule("clerk-post", "clerk", POST_ACTION, "allow")])
        assert _post(policy, "  Clerk ", "1").allowed
        assert normalize_role(None) == ""

    def test_missing_policy_raises(self):
        with pytest.raises(PolicyConfigurationError):
            evaluate(None, make_context(), POST_ACTION, SoDRequest())

    def test_approval_without_approvers_raises(self):
        policy = make_policy([rule("broken", "clerk", POST_ACTION, "require_approval")])
        with pytest.raises(PolicyConfigurationError, match="names no approvers"):
            _post(policy, "clerk", "1")

    def test_undeclared_approver_raises(self):
        policy = make_policy([
            rule("broken", "clerk", POST_ACTION, "require_approval", approver_roles=["cfo"]),
        ])
        with pytest.raises(PolicyConfigurationError, match="cfo"):
            _post(policy, "clerk", "1")

    def test_deterministic(self, business):
        first = _post(business, "accountant", "12000")
        second = _post(business, "accountant", "12000")
        assert first == second


class TestSelfApproval:
    def test_creator_cannot_approve_even_if_rule_allows(self):
        policy = make_policy([rule("admin-all", "admin", "*", "allow")])
        decision = evaluate(
            policy,
            make_context(role="admin", user_id="u-7"),
            APPROVE_ACTION,
            SoDRequest(creator_id="u-7", creator_role="admin"),
        )
        assert not decision.allowed
        assert "self-approval" in decision.reason

    def test_creator_cannot_reject_either(self):
        policy = make_policy([rule("admin-all", "admin", "*", "allow")])
        decision = evaluate(
            policy,
            make_context(role="admin", user_id="u-7"),
            REJECT_ACTION,
            SoDRequest(creator_id="u-7"),
        )
        assert not decision.allowed

    def test_same_role_forbidden_when_configured(self):
        policy = make_policy(
            [rule("mgr-approve", "manager", APPROVE_ACTION, "allow")],
            forbid_same_role_approval=True,
        )
        decision = evaluate(
            policy,
            make_context(role="manager", user_id="u-2"),
            APPROVE_ACTION,
            SoDRequest(creator_id="u-1", creator_role="manager"),
        )
        assert not decision.allowed

    def test_same_role_filtered_from_approvers(self):
        policy = make_policy(
            [rule("mgr-post", "manager", POST_ACTION, "require_approval",
                  approver_roles=["manager", "finance-lead"])],
            forbid_same_role_approval=True,
        )
        assert _post(policy, "manager", "1").approver_roles == ("finance-lead",)

    def test_same_role_filter_leaving_nobody_raises(self):
        policy = make_policy(
            [rule("mgr-post", "manager", POST_ACTION, "require_approval", approver_roles=["manager"])],
            forbid_same_role_approval=True,
        )
        with pytest.raises(PolicyConfigurationError):
            _post(policy, "manager", "1")


class TestBusinessPack:
    """The shipped business pack behaves as documented."""

    def test_admin_posts_directly(self, business):
        assert not _post(business, "admin", "1000000").requires_approval

    def test_clerk_always_needs_approval(self, business):
        decision = _post(business, "clerk", "1000")
        assert decision.requires_approval
        assert "manager" in decision.approver_roles

    def test_clerk_over_threshold_skips_manager(self, business):
        decision = _post(business, "clerk", "30000")
        assert decision.requires_approval
        assert "manager" not in decision.approver_roles

    @pytest.mark.parametrize(
        "amount, needs_approval",
        [("4999.99", False), ("5000", True), ("29999.99", True)],
    )
    def test_accountant_windows(self, business, amount, needs_approval):
        assert _post(business, "accountant", amount).requires_approval is needs_approval

    def test_viewer_cannot_post(self, business):
        assert not _post(business, "viewer", "1").allowed

    def test_manager_cannot_approve_over_threshold(self, business):
        decision = evaluate(
            business,
            make_context(role="manager", user_id="m-1"),
            APPROVE_ACTION,
            SoDRequest(amount=Decimal("30000"), creator_id="c-1", creator_role="clerk"),
        )
        assert not decision.allowed
