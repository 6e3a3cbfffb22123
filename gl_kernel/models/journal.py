"""
Journal entry and journal line tables.

Contract:
    A JournalEntry row is written once by the posting pipeline.  The only
    later change is the PENDING_APPROVAL -> POSTED | REJECTED decision
    recorded by the approval service; lines never change.  Corrections are
    new entries whose ``reversal_of_id`` points at the original.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gl_kernel.db.base import Base, ExactNumeric, TrackedBase, UUIDString
from gl_kernel.domain.journal import JournalRecord, JournalStatus, PostingLine


class JournalEntry(TrackedBase):
    """Journal entry header."""

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "company_id", "journal_number", name="uq_journal_number"
        ),
        Index("idx_journal_scope_status", "tenant_id", "company_id", "status"),
        Index("idx_journal_reversal_of", "reversal_of_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    journal_number: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(4000), nullable=False, default="")
    journal_date: Mapped[date] = mapped_column(Date, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)

    total_debit: Mapped[Decimal] = mapped_column(ExactNumeric(38, 9), nullable=False)
    total_credit: Mapped[Decimal] = mapped_column(ExactNumeric(38, 9), nullable=False)

    created_by_role: Mapped[str] = mapped_column(String(50), nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)
    approver_roles: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Governing policy, for audit replay
    policy_checksum: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sod_rule: Mapped[str | None] = mapped_column(String(100), nullable=True)

    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("journal_entries.id"), nullable=True
    )

    functional_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    exchange_rate: Mapped[Decimal | None] = mapped_column(ExactNumeric(38, 18), nullable=True)
    functional_total_debit: Mapped[Decimal | None] = mapped_column(
        ExactNumeric(38, 9), nullable=True
    )
    functional_total_credit: Mapped[Decimal | None] = mapped_column(
        ExactNumeric(38, 9), nullable=True
    )

    decided_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    decision_note: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        order_by="JournalLine.line_seq",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.journal_number} [{self.status}]>"

    def to_record(self) -> JournalRecord:
        return JournalRecord(
            id=str(self.id),
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            journal_number=self.journal_number,
            description=self.description,
            journal_date=self.journal_date,
            currency=self.currency,
            status=JournalStatus(self.status),
            lines=tuple(line.to_posting_line() for line in self.lines),
            total_debit=self.total_debit,
            total_credit=self.total_credit,
            created_by=self.created_by,
            created_by_role=self.created_by_role,
            idempotency_key=self.idempotency_key,
            approver_roles=tuple(self.approver_roles or ()),
            policy_checksum=self.policy_checksum,
            sod_rule=self.sod_rule,
            reference=self.reference,
            reversal_of_id=str(self.reversal_of_id) if self.reversal_of_id else None,
            decided_by=self.decided_by,
            decided_at=self.decided_at,
            decision_note=self.decision_note,
            functional_currency=self.functional_currency,
            exchange_rate=self.exchange_rate,
            functional_total_debit=self.functional_total_debit,
            functional_total_credit=self.functional_total_credit,
            created_at=self.created_at,
        )


class JournalLine(Base):
    """One posted line; amounts are always non-negative, one side non-zero."""

    __tablename__ = "journal_lines"

    __table_args__ = (
        UniqueConstraint("journal_entry_id", "line_seq", name="uq_journal_line_seq"),
        Index("idx_journal_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("journal_entries.id"), nullable=False
    )
    line_seq: Mapped[int] = mapped_column(Integer, nullable=False)
    source_index: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("accounts.id"), nullable=False
    )
    debit: Mapped[Decimal] = mapped_column(ExactNumeric(38, 9), nullable=False)
    credit: Mapped[Decimal] = mapped_column(ExactNumeric(38, 9), nullable=False)
    description: Mapped[str] = mapped_column(String(4000), nullable=False, default="")
    tax_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_tax_line: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    project_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cost_center: Mapped[str | None] = mapped_column(String(64), nullable=True)
    functional_debit: Mapped[Decimal | None] = mapped_column(ExactNumeric(38, 9), nullable=True)
    functional_credit: Mapped[Decimal | None] = mapped_column(ExactNumeric(38, 9), nullable=True)

    entry: Mapped[JournalEntry] = relationship(back_populates="lines")

    def to_posting_line(self) -> PostingLine:
        return PostingLine(
            source_index=self.source_index,
            account_id=str(self.account_id),
            debit=self.debit,
            credit=self.credit,
            description=self.description,
            tax_code=self.tax_code,
            is_tax_line=self.is_tax_line,
            project_id=self.project_id,
            cost_center=self.cost_center,
            functional_debit=self.functional_debit,
            functional_credit=self.functional_credit,
        )
