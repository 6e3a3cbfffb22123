"""
Typed exception hierarchy for the posting kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the posting engine (the API layer, batch jobs, the approval
workflow) must react to failures by KIND, not by message text.  Every
exception therefore carries:

  1. a class-level ``code`` (machine-readable, API-safe)
  2. a class-level ``kind`` (one of ``ErrorKind``, the error taxonomy)
  3. structured attributes with everything needed to fix the request

Engines never raise these for ordinary outcomes -- validation and SoD
produce values (``ValidationOutcome``, ``SoDDecision``).  Exceptions come
from collaborators (repository, policy provider, idempotency store) and
from illegal lifecycle operations, and are translated into
``PostingFailure`` values at the service boundary.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- JournalValidationError         VALIDATION
    +-- COAError                       COA
    +-- SoDViolationError              SOD_VIOLATION
    |   +-- SelfApprovalError
    |   +-- UnauthorizedApproverError
    +-- IdempotencyConflictError       IDEMPOTENCY_CONFLICT
    +-- PolicyConfigurationError       POLICY_CONFIGURATION
    +-- UpstreamUnavailableError       UPSTREAM_UNAVAILABLE
    +-- InvalidStatusTransitionError   INVALID_TRANSITION
    |   +-- EntryNotPostedError
    |   +-- EntryAlreadyReversedError
    +-- JournalNotFoundError           NOT_FOUND
    +-- DuplicateJournalError          VALIDATION
    +-- ConcurrentSubmissionError      UPSTREAM_UNAVAILABLE

===============================================================================
RETRY SEMANTICS
===============================================================================

Kind                  | Retry?
----------------------|--------------------------------------------------
VALIDATION / COA      | Never automatically; caller corrects the input
SOD_VIOLATION         | Not with the same actor
IDEMPOTENCY_CONFLICT  | Never; client reused a key for another payload
POLICY_CONFIGURATION  | Never; deployment defect, logged at ERROR
UPSTREAM_UNAVAILABLE  | Yes, end-to-end (the idempotency gate makes it safe)
INVALID_TRANSITION    | No; entry is in the wrong state
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Taxonomy of failure kinds surfaced by the posting engine."""

    VALIDATION = "validation"
    COA = "coa"
    SOD_VIOLATION = "sod_violation"
    IDEMPOTENCY_CONFLICT = "idempotency_conflict"
    POLICY_CONFIGURATION = "policy_configuration"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"


class LedgerError(Exception):
    """
    Base exception for all posting kernel errors.

    All subclasses define ``code`` and ``kind`` class attributes.
    """

    code: str = "LEDGER_ERROR"
    kind: ErrorKind = ErrorKind.VALIDATION

    @property
    def details(self) -> dict[str, Any]:
        """Structured attributes of this error, for API payloads and logs."""
        return {k: v for k, v in vars(self).items() if not k.startswith("_")}


class JournalValidationError(LedgerError):
    """Structural or balance problems with a proposed journal."""

    code: str = "JOURNAL_VALIDATION_FAILED"
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, journal_number: str, issue_codes: tuple[str, ...]):
        self.journal_number = journal_number
        self.issue_codes = issue_codes
        super().__init__(
            f"Journal {journal_number} failed validation: {', '.join(issue_codes)}"
        )


class COAError(LedgerError):
    """An account referenced by a journal line cannot receive postings."""

    code: str = "COA_VIOLATION"
    kind: ErrorKind = ErrorKind.COA

    def __init__(
        self,
        account_id: str,
        reason_code: str,
        reason: str,
        account_ids: tuple[str, ...] = (),
        issue_codes: tuple[str, ...] = (),
    ):
        self.account_id = account_id
        self.reason_code = reason_code
        self.reason = reason
        self.account_ids = account_ids or (account_id,)
        self.issue_codes = issue_codes or (reason_code,)
        super().__init__(f"Account {account_id} cannot be posted to: {reason}")


class SoDViolationError(LedgerError):
    """The acting role is forbidden from performing the action outright."""

    code: str = "SOD_VIOLATION"
    kind: ErrorKind = ErrorKind.SOD_VIOLATION

    def __init__(self, role: str, action: str, reason: str):
        self.role = role
        self.action = action
        self.reason = reason
        super().__init__(f"Role '{role}' may not perform '{action}': {reason}")


class SelfApprovalError(SoDViolationError):
    """The creator of an entry attempted to approve or reject it."""

    code: str = "SELF_APPROVAL_FORBIDDEN"

    def __init__(self, entry_id: str, actor_id: str, role: str, action: str):
        self.entry_id = entry_id
        self.actor_id = actor_id
        super().__init__(
            role, action, f"actor {actor_id} created entry {entry_id}"
        )


class UnauthorizedApproverError(SoDViolationError):
    """The approver's role is not among the roles allowed to act."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(
        self,
        entry_id: str,
        role: str,
        action: str,
        approver_roles: tuple[str, ...],
    ):
        self.entry_id = entry_id
        self.approver_roles = approver_roles
        super().__init__(
            role,
            action,
            f"entry {entry_id} requires one of {', '.join(approver_roles) or '(none)'}",
        )


class IdempotencyConflictError(LedgerError):
    """
    Idempotency key reused with a different request payload.

    This is a client bug signal.  The stored response is never overwritten.
    """

    code: str = "IDEMPOTENCY_CONFLICT"
    kind: ErrorKind = ErrorKind.IDEMPOTENCY_CONFLICT

    def __init__(self, key: str, stored_hash: str, received_hash: str):
        self.key = key
        self.stored_hash = stored_hash
        self.received_hash = received_hash
        super().__init__(
            f"Idempotency key {key!r} already used for a different request: "
            f"stored {stored_hash[:12]}, received {received_hash[:12]}"
        )


class PolicyConfigurationError(LedgerError):
    """The SoD / COA policy table itself is malformed."""

    code: str = "POLICY_CONFIGURATION_ERROR"
    kind: ErrorKind = ErrorKind.POLICY_CONFIGURATION

    def __init__(self, policy_name: str, problems: tuple[str, ...] | list[str]):
        self.policy_name = policy_name
        self.problems = tuple(problems)
        super().__init__(
            f"Policy '{policy_name}' is misconfigured: " + "; ".join(self.problems)
        )


class UpstreamUnavailableError(LedgerError):
    """A lookup collaborator (accounts, tax codes, storage) failed."""

    code: str = "UPSTREAM_UNAVAILABLE"
    kind: ErrorKind = ErrorKind.UPSTREAM_UNAVAILABLE

    def __init__(self, collaborator: str, operation: str, cause: str = ""):
        self.collaborator = collaborator
        self.operation = operation
        self.cause = cause
        message = f"{collaborator}.{operation} unavailable"
        if cause:
            message = f"{message}: {cause}"
        super().__init__(message)


class InvalidStatusTransitionError(LedgerError):
    """A journal entry was asked to move along an edge the lifecycle forbids."""

    code: str = "INVALID_STATUS_TRANSITION"
    kind: ErrorKind = ErrorKind.INVALID_TRANSITION

    def __init__(self, entry_id: str, from_status: str, to_status: str):
        self.entry_id = entry_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Entry {entry_id} cannot move from {from_status} to {to_status}"
        )


class EntryNotPostedError(InvalidStatusTransitionError):
    """Only posted entries can be reversed."""

    code: str = "ENTRY_NOT_POSTED"

    def __init__(self, entry_id: str, status: str):
        super().__init__(entry_id, status, "reversed")


class EntryAlreadyReversedError(InvalidStatusTransitionError):
    """A reversal already exists for this entry."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, entry_id: str, reversal_entry_id: str):
        self.reversal_entry_id = reversal_entry_id
        super().__init__(entry_id, "posted", "reversed")


class JournalNotFoundError(LedgerError):
    """No journal entry with this id exists in the caller's scope."""

    code: str = "JOURNAL_NOT_FOUND"
    kind: ErrorKind = ErrorKind.NOT_FOUND

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class DuplicateJournalError(LedgerError):
    """The journal number is already used in this tenant/company."""

    code: str = "DUPLICATE_JOURNAL_NUMBER"
    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, journal_number: str):
        self.journal_number = journal_number
        super().__init__(f"Journal number already exists: {journal_number}")


class ConcurrentSubmissionError(LedgerError):
    """
    Another transaction recorded the same idempotency key first.

    Raised (not returned) so the enclosing transaction rolls back this
    attempt's journal insert.  Retrying the request replays the winner.
    """

    code: str = "CONCURRENT_SUBMISSION"
    kind: ErrorKind = ErrorKind.UPSTREAM_UNAVAILABLE

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Idempotency key {key!r} was recorded by a concurrent request")
