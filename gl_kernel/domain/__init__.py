"""
Pure domain layer.

Value objects and result types with NO dependencies on the ORM, the
database or any I/O.  All domain objects are immutable.
"""

from gl_kernel.domain.accounts import (
    AccountInfo,
    AccountSubKind,
    AccountType,
    NormalBalance,
)
from gl_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from gl_kernel.domain.currency import CurrencyInfo, CurrencyRegistry
from gl_kernel.domain.invoice import (
    DocumentKind,
    InvoiceLine,
    InvoicePostingInput,
    InvoiceTotals,
)
from gl_kernel.domain.journal import (
    JOURNAL_TRANSITIONS,
    JournalDraft,
    JournalLineInput,
    JournalPostingInput,
    JournalRecord,
    JournalStatus,
    PostingContext,
    PostingLine,
)
from gl_kernel.domain.policy import (
    CoaPolicy,
    PolicyProvider,
    PostingPolicy,
    SoDEffect,
    SoDRule,
)
from gl_kernel.domain.results import (
    Invalid,
    Issue,
    PostingFailure,
    PostingOutcome,
    PostingResult,
    Valid,
    ValidationOutcome,
)
from gl_kernel.domain.sod import SoDDecision, SoDRequest
from gl_kernel.domain.tax import LineTax, TaxCode, TaxGroup
from gl_kernel.domain.values import Currency, ExchangeRate, Money, round_money

__all__ = [
    "AccountInfo",
    "AccountSubKind",
    "AccountType",
    "NormalBalance",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DocumentKind",
    "InvoiceLine",
    "InvoicePostingInput",
    "InvoiceTotals",
    "JOURNAL_TRANSITIONS",
    "JournalDraft",
    "JournalLineInput",
    "JournalPostingInput",
    "JournalRecord",
    "JournalStatus",
    "PostingContext",
    "PostingLine",
    "CoaPolicy",
    "PolicyProvider",
    "PostingPolicy",
    "SoDEffect",
    "SoDRule",
    "Invalid",
    "Issue",
    "PostingFailure",
    "PostingOutcome",
    "PostingResult",
    "Valid",
    "ValidationOutcome",
    "SoDDecision",
    "SoDRequest",
    "LineTax",
    "TaxCode",
    "TaxGroup",
    "Currency",
    "ExchangeRate",
    "Money",
    "round_money",
]
