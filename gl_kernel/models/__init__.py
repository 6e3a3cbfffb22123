"""ORM models for the ledger tables."""

from gl_kernel.models.account import Account, TaxCodeModel
from gl_kernel.models.idempotency import IdempotencyRecordModel
from gl_kernel.models.journal import JournalEntry, JournalLine

__all__ = [
    "Account",
    "TaxCodeModel",
    "JournalEntry",
    "JournalLine",
    "IdempotencyRecordModel",
]
