"""Stored outcomes of idempotent posting requests."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from gl_kernel.db.base import Base


class IdempotencyRecordModel(Base):
    """
    One row per (tenant, company, idempotency key).

    The unique constraint is the concurrency backstop: of two racing
    first submissions, exactly one insert succeeds.  ``response_snapshot``
    is written once and never overwritten.
    """

    __tablename__ = "idempotency_records"

    __table_args__ = (
        UniqueConstraint("tenant_id", "company_id", "key", name="uq_idempotency_scope_key"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[str] = mapped_column(String(64), nullable=False)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    response_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<IdempotencyRecord {self.key} {self.request_hash[:12]}>"
