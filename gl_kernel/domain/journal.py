"""
Journal domain types (``gl_kernel.domain.journal``).

Responsibility
--------------
Pure value objects describing a journal as it moves through the posting
pipeline: the caller's request (``JournalPostingInput``), the expanded
lines that actually post (``PostingLine``), the payload handed to the
repository (``JournalDraft``), and the stored entry read back
(``JournalRecord``).  Also defines the journal status lifecycle.

Invariants enforced
-------------------
* ``JOURNAL_TRANSITIONS`` defines the only valid status transitions.
  ``POSTED`` and ``REJECTED`` are terminal: a posted entry is corrected by
  a new reversal entry, never by mutation.
* ``PostingContext`` fields are mandatory; the engine never defaults the
  tenant, company, user or role.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from gl_kernel.domain.values import ExchangeRate, to_decimal

POST_ACTION = "journal:post"
APPROVE_ACTION = "journal:approve"
REJECT_ACTION = "journal:reject"
REVERSE_ACTION = "journal:reverse"

APPROVAL_ACTIONS: frozenset[str] = frozenset({APPROVE_ACTION, REJECT_ACTION})


# =========================================================================
# Status lifecycle
# =========================================================================


class JournalStatus(str, Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    POSTED = "posted"
    REJECTED = "rejected"


JOURNAL_TRANSITIONS: dict[JournalStatus, frozenset[JournalStatus]] = {
    JournalStatus.DRAFT: frozenset({
        JournalStatus.PENDING_APPROVAL,
        JournalStatus.POSTED,
        JournalStatus.REJECTED,
    }),
    JournalStatus.PENDING_APPROVAL: frozenset({
        JournalStatus.POSTED,
        JournalStatus.REJECTED,
    }),
    JournalStatus.POSTED: frozenset(),
    JournalStatus.REJECTED: frozenset(),
}

TERMINAL_JOURNAL_STATUSES: frozenset[JournalStatus] = frozenset({
    JournalStatus.POSTED,
    JournalStatus.REJECTED,
})


# =========================================================================
# Inbound request
# =========================================================================


@dataclass(frozen=True)
class PostingContext:
    """Scope under which validation and SoD evaluation run."""

    tenant_id: str
    company_id: str
    user_id: str
    user_role: str

    def __post_init__(self) -> None:
        for name in ("tenant_id", "company_id", "user_id", "user_role"):
            value = getattr(self, name)
            if not value or not str(value).strip():
                raise ValueError(f"PostingContext.{name} is required")
            object.__setattr__(self, name, str(value).strip())

    def with_role(self, user_id: str, user_role: str) -> PostingContext:
        return PostingContext(self.tenant_id, self.company_id, user_id, user_role)


@dataclass(frozen=True)
class JournalLineInput:
    """One caller-supplied line, in the entry's posting currency.

    Amounts are coerced to Decimal; their sign and precision are checked by
    the validator, not here, so a malformed line is reported alongside
    every other problem in the entry.
    """

    account_id: str
    debit: Decimal = Decimal("0")
    credit: Decimal = Decimal("0")
    description: str = ""
    tax_code: str | None = None
    project_id: str | None = None
    cost_center: str | None = None
    currency: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "debit", to_decimal(self.debit, "debit"))
        object.__setattr__(self, "credit", to_decimal(self.credit, "credit"))


@dataclass(frozen=True)
class JournalPostingInput:
    """A proposed journal entry, as built by the API layer."""

    journal_number: str
    description: str
    journal_date: date
    currency: str
    lines: tuple[JournalLineInput, ...]
    idempotency_key: str
    context: PostingContext
    module: str = "gl"
    action: str = POST_ACTION
    exchange_rate: ExchangeRate | None = None
    reference: str | None = None
    reversal_of_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", tuple(self.lines))


# =========================================================================
# Expanded lines and stored entries
# =========================================================================


@dataclass(frozen=True)
class PostingLine:
    """A line that will post: either a caller line or a derived tax line.

    ``source_index`` points at the caller line it came from; a tax line
    carries the first base line of its (tax code, side) group.
    """

    source_index: int
    account_id: str
    debit: Decimal
    credit: Decimal
    description: str = ""
    tax_code: str | None = None
    is_tax_line: bool = False
    project_id: str | None = None
    cost_center: str | None = None
    functional_debit: Decimal | None = None
    functional_credit: Decimal | None = None

    @property
    def amount(self) -> Decimal:
        return self.debit if self.debit else self.credit

    @property
    def is_debit(self) -> bool:
        return self.debit > 0


@dataclass(frozen=True)
class JournalDraft:
    """Everything the repository needs to insert one journal entry."""

    tenant_id: str
    company_id: str
    journal_number: str
    description: str
    journal_date: date
    currency: str
    status: JournalStatus
    lines: tuple[PostingLine, ...]
    total_debit: Decimal
    total_credit: Decimal
    created_by: str
    created_by_role: str
    idempotency_key: str
    approver_roles: tuple[str, ...] = ()
    policy_checksum: str | None = None
    sod_rule: str | None = None
    reference: str | None = None
    reversal_of_id: str | None = None
    functional_currency: str | None = None
    exchange_rate: Decimal | None = None
    functional_total_debit: Decimal | None = None
    functional_total_credit: Decimal | None = None


@dataclass(frozen=True)
class JournalRecord:
    """A stored journal entry, read back from the repository."""

    id: str
    tenant_id: str
    company_id: str
    journal_number: str
    description: str
    journal_date: date
    currency: str
    status: JournalStatus
    lines: tuple[PostingLine, ...]
    total_debit: Decimal
    total_credit: Decimal
    created_by: str
    created_by_role: str
    idempotency_key: str
    approver_roles: tuple[str, ...] = ()
    policy_checksum: str | None = None
    sod_rule: str | None = None
    reference: str | None = None
    reversal_of_id: str | None = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    decision_note: str | None = None
    functional_currency: str | None = None
    exchange_rate: Decimal | None = None
    functional_total_debit: Decimal | None = None
    functional_total_credit: Decimal | None = None
    created_at: datetime | None = None

    @property
    def is_posted(self) -> bool:
        return self.status == JournalStatus.POSTED
