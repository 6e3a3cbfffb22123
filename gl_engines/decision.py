"""
Posting decision state machine.

Combines the validator's outcome and the SoD decision into the entry's
initial status, and guards every later status change.

    DRAFT --> POSTED                       (valid, no approval needed)
    DRAFT --> PENDING_APPROVAL --> POSTED  (approved by an allowed role)
                              \\-> REJECTED
    DRAFT --> REJECTED                     (invalid, or SoD denies)

Invalid journals are rejected before SoD is consulted: authority is moot
when the entry is malformed.  POSTED and REJECTED are terminal.
"""

from __future__ import annotations

from dataclasses import dataclass

from gl_kernel.domain.journal import (
    APPROVAL_ACTIONS,
    JOURNAL_TRANSITIONS,
    JournalRecord,
    JournalStatus,
    PostingContext,
)
from gl_kernel.domain.results import Invalid, ValidationOutcome
from gl_kernel.domain.sod import SoDDecision
from gl_kernel.exceptions import (
    ErrorKind,
    InvalidStatusTransitionError,
    SelfApprovalError,
    SoDViolationError,
    UnauthorizedApproverError,
)
from gl_engines.sod import normalize_role


@dataclass(frozen=True)
class PostingDecision:
    """Initial status for a proposed entry and what must happen next."""

    status: JournalStatus
    requires_approval: bool = False
    approver_roles: tuple[str, ...] = ()
    reason: str | None = None
    rejected_by: ErrorKind | None = None

    @property
    def writes_ledger(self) -> bool:
        """Only an immediate post has a ledger effect."""
        return self.status == JournalStatus.POSTED


def decide(validation: ValidationOutcome, sod: SoDDecision | None) -> PostingDecision:
    """
    Initial status for a journal.

    ``sod`` may be None only when ``validation`` is Invalid.

    Raises:
        ValueError: If a valid journal is decided without an SoD decision.
    """
    if isinstance(validation, Invalid):
        return PostingDecision(
            status=JournalStatus.REJECTED,
            reason=", ".join(validation.codes),
            rejected_by=validation.kind,
        )

    if sod is None:
        raise ValueError("a valid journal cannot be decided without an SoD decision")

    if not sod.allowed:
        return PostingDecision(
            status=JournalStatus.REJECTED,
            reason=sod.reason,
            rejected_by=ErrorKind.SOD_VIOLATION,
        )

    if sod.requires_approval:
        return PostingDecision(
            status=JournalStatus.PENDING_APPROVAL,
            requires_approval=True,
            approver_roles=sod.approver_roles,
            reason=sod.reason,
        )

    return PostingDecision(status=JournalStatus.POSTED, reason=sod.reason)


def assert_transition(
    entry_id: str, current: JournalStatus, target: JournalStatus
) -> None:
    """Raise unless ``current -> target`` is an edge of the lifecycle."""
    if target not in JOURNAL_TRANSITIONS[current]:
        raise InvalidStatusTransitionError(entry_id, current.value, target.value)


def target_status(action: str) -> JournalStatus:
    """Status an approval action moves a pending entry to."""
    if action not in APPROVAL_ACTIONS:
        raise ValueError(f"not an approval action: {action}")
    return JournalStatus.POSTED if action.endswith("approve") else JournalStatus.REJECTED


def authorize_approval(
    record: JournalRecord,
    context: PostingContext,
    action: str,
    sod: SoDDecision,
) -> JournalStatus:
    """
    Check that ``context`` may approve or reject ``record``.

    Self-approval is refused first and independently of role or policy.

    Returns:
        The status the entry moves to.

    Raises:
        InvalidStatusTransitionError: Entry is not pending approval.
        SelfApprovalError: The actor created the entry.
        UnauthorizedApproverError: Role not among the entry's approver roles.
        SoDViolationError: The policy denies the action.
    """
    target = target_status(action)
    assert_transition(record.id, record.status, target)
    if record.status != JournalStatus.PENDING_APPROVAL:
        raise InvalidStatusTransitionError(record.id, record.status.value, target.value)

    if context.user_id == record.created_by:
        raise SelfApprovalError(record.id, context.user_id, context.user_role, action)

    role = normalize_role(context.user_role)
    if role not in record.approver_roles:
        raise UnauthorizedApproverError(
            record.id, role, action, record.approver_roles
        )

    if not sod.allowed:
        raise SoDViolationError(role, action, sod.reason or "denied by policy")

    return target
