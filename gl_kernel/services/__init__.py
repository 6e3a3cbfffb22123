"""
Posting services: the imperative shell around ``gl_engines``.

    PostingService         admit -> validate -> SoD -> decide -> write -> record
    ApprovalService        PENDING_APPROVAL -> POSTED | REJECTED
    ReversalService        posted entry -> negating entry
    InvoicePostingService  invoice or bill -> derived journal
    IdempotencyGate        exactly one ledger effect per key
"""

from gl_kernel.services.approval_service import ApprovalService
from gl_kernel.services.idempotency_gate import (
    Admission,
    AdmissionKind,
    IdempotencyGate,
    IdempotencyRecord,
    IdempotencyStore,
    InMemoryIdempotencyStore,
    SqlAlchemyIdempotencyStore,
)
from gl_kernel.services.invoice_posting_service import InvoicePostingService
from gl_kernel.services.posting_service import PostingService
from gl_kernel.services.repository import LedgerRepository, SqlAlchemyLedgerRepository
from gl_kernel.services.reversal_service import ReversalService, build_reversal_request

__all__ = [
    "Admission",
    "AdmissionKind",
    "ApprovalService",
    "IdempotencyGate",
    "IdempotencyRecord",
    "IdempotencyStore",
    "InMemoryIdempotencyStore",
    "InvoicePostingService",
    "LedgerRepository",
    "PostingService",
    "ReversalService",
    "SqlAlchemyIdempotencyStore",
    "SqlAlchemyLedgerRepository",
    "build_reversal_request",
]
