"""
gl_kernel.services.approval_service -- decisions on pending journals.

Responsibility:
    Approves or rejects a PENDING_APPROVAL journal entry.  Approval moves
    it to POSTED (its ledger effect starts here); rejection moves it to
    REJECTED.

Architecture position:
    Kernel > Services.  Delegates the rules to ``gl_engines.sod`` and
    ``gl_engines.decision``; persists through ``LedgerRepository``.

Invariants enforced:
    - Self-approval is always forbidden, whatever the role or policy.
    - The actor's role must be one of the entry's stored approver roles,
      and the live policy must allow the action for the entry's amount.
    - Only PENDING_APPROVAL -> POSTED | REJECTED; the row is locked and
      the status re-checked, so two approvers cannot both decide.

Failure modes (raised):
    - JournalNotFoundError, InvalidStatusTransitionError
    - SelfApprovalError, UnauthorizedApproverError, SoDViolationError
    - PolicyConfigurationError

Non-goals:
    - Does NOT re-validate accounts at approval time.  An account
      deactivated between submission and approval is an accepted stale
      read; period locking belongs to the transactional collaborator.
"""

from __future__ import annotations

from decimal import Decimal

from gl_engines.decision import authorize_approval
from gl_engines.sod import evaluate
from gl_kernel.domain.clock import Clock, SystemClock
from gl_kernel.domain.journal import (
    APPROVE_ACTION,
    REJECT_ACTION,
    JournalRecord,
    PostingContext,
)
from gl_kernel.domain.policy import PolicyProvider, PostingPolicy
from gl_kernel.domain.sod import SoDRequest
from gl_kernel.exceptions import (
    JournalNotFoundError,
    PolicyConfigurationError,
    SoDViolationError,
)
from gl_kernel.logging_config import LogContext, get_audit_logger, get_logger
from gl_kernel.services.repository import LedgerRepository

logger = get_logger("services.approval")
audit_logger = get_audit_logger()


class ApprovalService:
    """Records approve/reject decisions on pending journals."""

    def __init__(
        self,
        repository: LedgerRepository,
        policy_provider: PolicyProvider,
        clock: Clock | None = None,
    ):
        self._repository = repository
        self._policy_provider = policy_provider
        self._clock = clock or SystemClock()

    def approve(
        self, context: PostingContext, entry_id: str, note: str | None = None
    ) -> JournalRecord:
        """Approve a pending entry; it becomes POSTED."""
        return self._decide(context, entry_id, APPROVE_ACTION, note)

    def reject(
        self, context: PostingContext, entry_id: str, note: str | None = None
    ) -> JournalRecord:
        """Reject a pending entry; it becomes REJECTED and never posts."""
        return self._decide(context, entry_id, REJECT_ACTION, note)

    def _decide(
        self,
        context: PostingContext,
        entry_id: str,
        action: str,
        note: str | None,
    ) -> JournalRecord:
        with LogContext.bind(
            tenant_id=context.tenant_id,
            company_id=context.company_id,
            actor_id=context.user_id,
            entry_id=entry_id,
        ):
            record = self._repository.get_journal(
                context.tenant_id, context.company_id, entry_id
            )
            if record is None:
                raise JournalNotFoundError(entry_id)

            policy = self._policy_provider.get_policy(context.tenant_id, context.company_id)
            if policy is None:
                error = PolicyConfigurationError(
                    "<none>",
                    [f"no posting policy for {context.tenant_id}/{context.company_id}"],
                )
                logger.error("policy_configuration_error", extra={"problems": list(error.problems)})
                raise error

            sod = evaluate(
                policy,
                context,
                action,
                SoDRequest(
                    amount=_approval_amount(record, policy),
                    creator_role=record.created_by_role,
                    creator_id=record.created_by,
                ),
            )
            try:
                target = authorize_approval(record, context, action, sod)
            except SoDViolationError as exc:
                extra = {
                    "action": action,
                    "error_code": exc.code,
                    "role": exc.role,
                    "reason": exc.reason,
                }
                logger.warning("approval_denied", extra=extra)
                audit_logger.warning("approval_denied", extra=extra)
                raise

            updated = self._repository.transition_status(
                context.tenant_id,
                context.company_id,
                entry_id,
                record.status,
                target,
                context.user_id,
                self._clock.now(),
                note,
            )

            extra = {
                "action": action,
                "from_status": record.status.value,
                "to_status": updated.status.value,
                "journal_number": updated.journal_number,
                "created_by": record.created_by,
                "matched_rule": sod.matched_rule,
                "policy_checksum": sod.policy_checksum,
            }
            logger.info("approval_recorded", extra=extra)
            audit_logger.info("approval_recorded", extra=extra)
            return updated


def _approval_amount(record: JournalRecord, policy: PostingPolicy) -> Decimal:
    if (
        record.functional_total_debit is not None
        and record.functional_currency == policy.currency
    ):
        return record.functional_total_debit
    return record.total_debit
