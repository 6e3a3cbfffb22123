"""
Result values returned by the engines and services.

Responsibility:
    Tagged result types: ``Valid`` / ``Invalid`` from the journal
    validator, and ``PostingOutcome`` (a ``PostingResult`` or a
    ``PostingFailure``) from the posting services.  Ordinary failures are
    returned as these values; callers branch on ``kind`` and ``code``,
    never on message text.

Invariants enforced:
    - ``Invalid.issues`` is always a non-empty tuple, so every offending
      line and account is reported at once.
    - ``PostingResult.to_dict`` / ``from_dict`` round-trip exactly; the
      idempotency gate stores and replays this snapshot verbatim.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from gl_kernel.domain.journal import JournalStatus, PostingLine
from gl_kernel.domain.values import Money
from gl_kernel.exceptions import ErrorKind, LedgerError


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Issue:
    """A single finding about a journal, blocking or not."""

    kind: ErrorKind
    code: str
    message: str
    line_index: int | None = None
    account_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    severity: IssueSeverity = IssueSeverity.ERROR

    @classmethod
    def warning(cls, kind: ErrorKind, code: str, message: str, **kwargs: Any) -> Issue:
        return cls(kind, code, message, severity=IssueSeverity.WARNING, **kwargs)

    @property
    def is_blocking(self) -> bool:
        return self.severity == IssueSeverity.ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "line_index": self.line_index,
            "account_id": self.account_id,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
            "severity": self.severity.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Issue:
        return cls(
            kind=ErrorKind(data["kind"]),
            code=data["code"],
            message=data["message"],
            line_index=data.get("line_index"),
            account_id=data.get("account_id"),
            details=dict(data.get("details") or {}),
            severity=IssueSeverity(data.get("severity", IssueSeverity.ERROR.value)),
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


def _dec(value: str | None) -> Decimal | None:
    return None if value is None else Decimal(value)


# =========================================================================
# Validator outcome
# =========================================================================


@dataclass(frozen=True)
class Valid:
    """The journal passed every check; totals are after tax expansion."""

    total_debit: Money
    total_credit: Money
    lines: tuple[PostingLine, ...]
    warnings: tuple[Issue, ...] = ()
    functional_total_debit: Money | None = None
    functional_total_credit: Money | None = None

    is_valid = True


@dataclass(frozen=True)
class Invalid:
    """The journal failed; ``issues`` lists every blocking finding."""

    issues: tuple[Issue, ...]
    warnings: tuple[Issue, ...] = ()

    is_valid = False

    def __post_init__(self) -> None:
        if not self.issues:
            raise ValueError("Invalid requires at least one issue")

    @property
    def codes(self) -> tuple[str, ...]:
        return tuple(issue.code for issue in self.issues)

    @property
    def kind(self) -> ErrorKind:
        """COA when any account cannot be posted to, balanced or not."""
        if self.coa_issues:
            return ErrorKind.COA
        return ErrorKind.VALIDATION

    @property
    def coa_issues(self) -> tuple[Issue, ...]:
        return tuple(issue for issue in self.issues if issue.kind == ErrorKind.COA)


ValidationOutcome = Valid | Invalid


# =========================================================================
# Posting outcome
# =========================================================================


@dataclass(frozen=True)
class PostingResult:
    """What the caller gets back for an accepted journal."""

    id: str
    journal_number: str
    status: JournalStatus
    currency: str
    total_debit: Decimal
    total_credit: Decimal
    requires_approval: bool
    approver_roles: tuple[str, ...] = ()
    warnings: tuple[Issue, ...] = ()
    functional_currency: str | None = None
    functional_total_debit: Decimal | None = None
    functional_total_credit: Decimal | None = None
    reversal_of_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "journal_number": self.journal_number,
            "status": self.status.value,
            "currency": self.currency,
            "total_debit": str(self.total_debit),
            "total_credit": str(self.total_credit),
            "requires_approval": self.requires_approval,
            "approver_roles": list(self.approver_roles),
            "warnings": [w.to_dict() for w in self.warnings],
            "functional_currency": self.functional_currency,
            "functional_total_debit": _jsonable(self.functional_total_debit),
            "functional_total_credit": _jsonable(self.functional_total_credit),
            "reversal_of_id": self.reversal_of_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PostingResult:
        return cls(
            id=data["id"],
            journal_number=data["journal_number"],
            status=JournalStatus(data["status"]),
            currency=data["currency"],
            total_debit=Decimal(data["total_debit"]),
            total_credit=Decimal(data["total_credit"]),
            requires_approval=data["requires_approval"],
            approver_roles=tuple(data.get("approver_roles") or ()),
            warnings=tuple(Issue.from_dict(w) for w in data.get("warnings") or ()),
            functional_currency=data.get("functional_currency"),
            functional_total_debit=_dec(data.get("functional_total_debit")),
            functional_total_credit=_dec(data.get("functional_total_credit")),
            reversal_of_id=data.get("reversal_of_id"),
        )


@dataclass(frozen=True)
class PostingFailure:
    """Structured failure with enough detail for the caller to self-correct."""

    kind: ErrorKind
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    issues: tuple[Issue, ...] = ()
    warnings: tuple[Issue, ...] = ()
    error: LedgerError | None = field(default=None, compare=False, repr=False)

    @classmethod
    def from_error(
        cls,
        error: LedgerError,
        issues: tuple[Issue, ...] = (),
        warnings: tuple[Issue, ...] = (),
    ) -> PostingFailure:
        return cls(
            kind=error.kind,
            code=error.code,
            message=str(error),
            details={k: _jsonable(v) for k, v in error.details.items()},
            issues=issues,
            warnings=warnings,
            error=error,
        )

    @property
    def account_ids(self) -> tuple[str, ...]:
        return tuple(i.account_id for i in self.issues if i.account_id)


@dataclass(frozen=True)
class PostingOutcome:
    """Either a ``PostingResult`` or a ``PostingFailure``.

    ``replayed`` is True when the result came from the idempotency store
    rather than from running the pipeline.
    """

    result: PostingResult | None = None
    failure: PostingFailure | None = None
    replayed: bool = False

    def __post_init__(self) -> None:
        if (self.result is None) == (self.failure is None):
            raise ValueError("PostingOutcome needs exactly one of result or failure")

    @classmethod
    def success(cls, result: PostingResult, replayed: bool = False) -> PostingOutcome:
        return cls(result=result, replayed=replayed)

    @classmethod
    def failed(cls, failure: PostingFailure) -> PostingOutcome:
        return cls(failure=failure)

    @property
    def is_success(self) -> bool:
        return self.result is not None

    @property
    def status(self) -> JournalStatus | None:
        return self.result.status if self.result else None

    def raise_for_failure(self) -> PostingResult:
        """Return the result, or raise the typed error behind the failure."""
        if self.result is not None:
            return self.result
        if self.failure.error is not None:
            raise self.failure.error
        raise LedgerError(self.failure.message)
