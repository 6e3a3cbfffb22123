"""
LedgerRepository -- persistence collaborator for the posting services.

Responsibility:
    Batch lookups of accounts and tax codes, journal insertion, and the
    single permitted status change (PENDING_APPROVAL -> POSTED | REJECTED).

Architecture position:
    Kernel > Services -- imperative shell.  The services depend on the
    ``LedgerRepository`` protocol; ``SqlAlchemyLedgerRepository`` is the
    production implementation over a caller-owned ``Session``.

Invariants enforced:
    - Every query filters on tenant_id; journal and tax-code queries also
      filter on company_id.  Account lookups are tenant-scoped so that an account of
      a sibling company is returned and reported as out of scope by the
      COA engine rather than silently "not found".
    - Journal numbers are unique per (tenant, company): the unique
      constraint is the backstop, surfaced as ``DuplicateJournalError``.
    - Status changes lock the row and re-check the current status.

Failure modes:
    - UpstreamUnavailableError: a lookup query failed.  Callers decide the
      policy (tax degrades, accounts fail closed).
    - DuplicateJournalError: journal number already used.
    - JournalNotFoundError / InvalidStatusTransitionError on transitions.

Non-goals:
    - Does NOT call session.commit(); the caller owns the transaction.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from gl_kernel.db.base import parse_uuid
from gl_kernel.domain.accounts import AccountInfo
from gl_kernel.domain.journal import JournalDraft, JournalRecord, JournalStatus
from gl_kernel.domain.tax import TaxCode
from gl_kernel.exceptions import (
    DuplicateJournalError,
    InvalidStatusTransitionError,
    JournalNotFoundError,
    UpstreamUnavailableError,
)
from gl_kernel.logging_config import get_logger
from gl_kernel.models.account import Account, TaxCodeModel
from gl_kernel.models.journal import JournalEntry, JournalLine

logger = get_logger("services.repository")


class LedgerRepository(Protocol):
    """What the posting, approval and reversal services need from storage."""

    def lookup_accounts(
        self, tenant_id: str, company_id: str, account_ids: Sequence[str]
    ) -> dict[str, AccountInfo]:
        ...

    def lookup_tax_codes(
        self, tenant_id: str, company_id: str, codes: Sequence[str]
    ) -> list[TaxCode]:
        ...

    def insert_journal(self, draft: JournalDraft) -> str:
        ...

    def get_journal(
        self, tenant_id: str, company_id: str, entry_id: str
    ) -> JournalRecord | None:
        ...

    def find_reversal(
        self, tenant_id: str, company_id: str, entry_id: str
    ) -> JournalRecord | None:
        ...

    def transition_status(
        self,
        tenant_id: str,
        company_id: str,
        entry_id: str,
        from_status: JournalStatus,
        to_status: JournalStatus,
        actor_id: str,
        decided_at: datetime,
        note: str | None = None,
    ) -> JournalRecord:
        ...


class SqlAlchemyLedgerRepository:
    """``LedgerRepository`` over a SQLAlchemy session."""

    def __init__(self, session: Session):
        self._session = session

    # ------------------------------------------------------------------
    # Master data
    # ------------------------------------------------------------------

    def lookup_accounts(
        self, tenant_id: str, company_id: str, account_ids: Sequence[str]
    ) -> dict[str, AccountInfo]:
        """
        Fetch accounts by id in one query.

        Ids that are not UUIDs cannot exist and are simply absent from the
        result.  ``company_id`` is not filtered here; see module notes.
        """
        by_uuid = {}
        for account_id in account_ids:
            parsed = parse_uuid(account_id)
            if parsed is not None:
                by_uuid[parsed] = account_id
        if not by_uuid:
            return {}

        try:
            rows = self._session.scalars(
                select(Account).where(
                    Account.tenant_id == tenant_id,
                    Account.id.in_(list(by_uuid)),
                )
            ).all()
        except SQLAlchemyError as exc:
            raise UpstreamUnavailableError("accounts", "lookup_accounts", str(exc)) from exc

        return {by_uuid[row.id]: row.to_info() for row in rows}

    def lookup_tax_codes(
        self, tenant_id: str, company_id: str, codes: Sequence[str]
    ) -> list[TaxCode]:
        if not codes:
            return []
        try:
            rows = self._session.scalars(
                select(TaxCodeModel).where(
                    TaxCodeModel.tenant_id == tenant_id,
                    TaxCodeModel.company_id == company_id,
                    TaxCodeModel.code.in_(list(codes)),
                )
            ).all()
        except SQLAlchemyError as exc:
            raise UpstreamUnavailableError("tax_codes", "lookup_tax_codes", str(exc)) from exc

        return [
            TaxCode(
                code=row.code,
                rate=row.rate,
                tax_account_id=str(row.tax_account_id) if row.tax_account_id else None,
                name=row.name,
                is_active=row.is_active,
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Journals
    # ------------------------------------------------------------------

    def insert_journal(self, draft: JournalDraft) -> str:
        """
        Insert a journal and its lines; return the new entry id.

        Raises:
            DuplicateJournalError: The journal number is taken.
        """
        entry = JournalEntry(
            tenant_id=draft.tenant_id,
            company_id=draft.company_id,
            journal_number=draft.journal_number,
            description=draft.description,
            journal_date=draft.journal_date,
            currency=draft.currency,
            status=draft.status.value,
            total_debit=draft.total_debit,
            total_credit=draft.total_credit,
            created_by=draft.created_by,
            created_by_role=draft.created_by_role,
            idempotency_key=draft.idempotency_key,
            approver_roles=list(draft.approver_roles),
            policy_checksum=draft.policy_checksum,
            sod_rule=draft.sod_rule,
            reference=draft.reference,
            reversal_of_id=parse_uuid(draft.reversal_of_id) if draft.reversal_of_id else None,
            functional_currency=draft.functional_currency,
            exchange_rate=draft.exchange_rate,
            functional_total_debit=draft.functional_total_debit,
            functional_total_credit=draft.functional_total_credit,
        )
        entry.lines = [
            JournalLine(
                line_seq=seq,
                source_index=line.source_index,
                account_id=parse_uuid(line.account_id),
                debit=line.debit,
                credit=line.credit,
                description=line.description,
                tax_code=line.tax_code,
                is_tax_line=line.is_tax_line,
                project_id=line.project_id,
                cost_center=line.cost_center,
                functional_debit=line.functional_debit,
                functional_credit=line.functional_credit,
            )
            for seq, line in enumerate(draft.lines, start=1)
        ]

        savepoint = self._session.begin_nested()
        try:
            self._session.add(entry)
            self._session.flush()
            savepoint.commit()
        except IntegrityError as exc:
            savepoint.rollback()
            logger.warning(
                "journal_insert_conflict",
                extra={"journal_number": draft.journal_number, "error": str(exc.orig)},
            )
            raise DuplicateJournalError(draft.journal_number) from exc

        return str(entry.id)

    def get_journal(
        self, tenant_id: str, company_id: str, entry_id: str
    ) -> JournalRecord | None:
        entry = self._load(tenant_id, company_id, entry_id)
        return entry.to_record() if entry is not None else None

    def find_reversal(
        self, tenant_id: str, company_id: str, entry_id: str
    ) -> JournalRecord | None:
        """The live (not rejected) reversal of ``entry_id``, if any."""
        original_id = parse_uuid(entry_id)
        if original_id is None:
            return None
        entry = self._session.scalars(
            select(JournalEntry)
            .options(selectinload(JournalEntry.lines))
            .where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.company_id == company_id,
                JournalEntry.reversal_of_id == original_id,
                JournalEntry.status != JournalStatus.REJECTED.value,
            )
            .order_by(JournalEntry.created_at)
        ).first()
        return entry.to_record() if entry is not None else None

    def transition_status(
        self,
        tenant_id: str,
        company_id: str,
        entry_id: str,
        from_status: JournalStatus,
        to_status: JournalStatus,
        actor_id: str,
        decided_at: datetime,
        note: str | None = None,
    ) -> JournalRecord:
        """
        Move an entry from ``from_status`` to ``to_status`` under a row lock.

        Raises:
            JournalNotFoundError: No such entry in scope.
            InvalidStatusTransitionError: The entry is no longer in
                ``from_status`` (another approver got there first).
        """
        entry = self._load(tenant_id, company_id, entry_id, for_update=True)
        if entry is None:
            raise JournalNotFoundError(entry_id)
        if entry.status != from_status.value:
            raise InvalidStatusTransitionError(entry_id, entry.status, to_status.value)

        entry.status = to_status.value
        entry.decided_by = actor_id
        entry.decided_at = decided_at
        entry.decision_note = note
        self._session.flush()
        return entry.to_record()

    def _load(
        self,
        tenant_id: str,
        company_id: str,
        entry_id: str,
        for_update: bool = False,
    ) -> JournalEntry | None:
        parsed = parse_uuid(entry_id)
        if parsed is None:
            return None
        stmt = (
            select(JournalEntry)
            .options(selectinload(JournalEntry.lines))
            .where(
                JournalEntry.id == parsed,
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.company_id == company_id,
            )
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.scalars(stmt).first()
