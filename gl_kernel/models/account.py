"""
Chart-of-accounts and tax master-data tables.

Both are read-only to the posting engine: rows are maintained by COA and
tax administration, and the repository turns them into ``AccountInfo`` /
``TaxCode`` snapshots.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gl_kernel.db.base import ExactNumeric, TrackedBase, UUIDString
from gl_kernel.domain.accounts import (
    AccountInfo,
    AccountSubKind,
    AccountType,
    NormalBalance,
)


class Account(TrackedBase):
    """
    A node in a company's chart of accounts.

    Contract:
        ``code`` is unique within (tenant_id, company_id).  Group accounts
        (``is_group``) organize the hierarchy and never receive postings.
        ``currency`` restricts postings to one currency; NULL accepts any.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "company_id", "code", name="uq_account_scope_code"),
        Index("idx_account_scope", "tenant_id", "company_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(String(20), nullable=False)
    sub_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    normal_balance: Mapped[str] = mapped_column(String(10), nullable=False)
    is_group: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    parent_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    def to_info(self) -> AccountInfo:
        return AccountInfo(
            id=str(self.id),
            code=self.code,
            name=self.name,
            account_type=AccountType(self.account_type),
            normal_balance=NormalBalance(self.normal_balance),
            tenant_id=self.tenant_id,
            company_id=self.company_id,
            sub_kind=AccountSubKind(self.sub_kind) if self.sub_kind else None,
            is_group=self.is_group,
            is_active=self.is_active,
            currency=self.currency,
        )


class TaxCodeModel(TrackedBase):
    """A tax code with its rate and the liability account it posts to."""

    __tablename__ = "tax_codes"

    __table_args__ = (
        UniqueConstraint("tenant_id", "company_id", "code", name="uq_tax_code_scope"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    rate: Mapped[Decimal] = mapped_column(ExactNumeric(38, 18), nullable=False)
    tax_account_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<TaxCode {self.code}: {self.rate}>"
