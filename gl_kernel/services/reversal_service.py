"""
ReversalService -- corrections to posted journals.

Responsibility:
    Builds a fresh journal whose lines swap the debit and credit of every
    stored line of a POSTED original (tax lines included), and runs it
    through the ordinary posting pipeline with action ``journal:reverse``.

Architecture position:
    Kernel > Services -- thin orchestrator over ``PostingService``.

Invariants enforced:
    - Posted rows never change.  The original stays POSTED; the link is
      the reversal's ``reversal_of_id``.
    - At most one live (not rejected) reversal per original.
    - The reversal is balance-checked, SoD-evaluated and idempotent
      exactly like any other journal.

Failure modes:
    - JournalNotFoundError: no such entry in scope (raised).
    - EntryNotPostedError: the original is not POSTED (raised).
    - EntryAlreadyReversedError: a live reversal exists under another
      idempotency key (raised).
    - Everything else comes back in the ``PostingOutcome``.
"""

from __future__ import annotations

from datetime import date

from gl_kernel.domain.journal import (
    REVERSE_ACTION,
    JournalLineInput,
    JournalPostingInput,
    JournalRecord,
    PostingContext,
)
from gl_kernel.domain.results import PostingOutcome
from gl_kernel.domain.values import ExchangeRate
from gl_kernel.exceptions import (
    EntryAlreadyReversedError,
    EntryNotPostedError,
    JournalNotFoundError,
)
from gl_kernel.logging_config import LogContext, get_audit_logger, get_logger
from gl_kernel.services.posting_service import PostingService
from gl_kernel.services.repository import LedgerRepository

logger = get_logger("services.reversal")
audit_logger = get_audit_logger()

REVERSAL_SUFFIX = "-REV"


def build_reversal_request(
    original: JournalRecord,
    context: PostingContext,
    idempotency_key: str,
    journal_date: date,
    journal_number: str | None = None,
    description: str | None = None,
) -> JournalPostingInput:
    """Posting request that exactly negates ``original``.

    Stored lines are already tax-expanded, so tax codes are dropped to
    keep the tax from being applied a second time.
    """
    lines = tuple(
        JournalLineInput(
            account_id=line.account_id,
            debit=line.credit,
            credit=line.debit,
            description=line.description,
            project_id=line.project_id,
            cost_center=line.cost_center,
        )
        for line in original.lines
    )
    rate = None
    if original.exchange_rate is not None and original.functional_currency:
        rate = ExchangeRate.of(
            original.currency, original.functional_currency, original.exchange_rate
        )
    return JournalPostingInput(
        journal_number=journal_number or f"{original.journal_number}{REVERSAL_SUFFIX}",
        description=description or f"Reversal of {original.journal_number}",
        journal_date=journal_date,
        currency=original.currency,
        lines=lines,
        idempotency_key=idempotency_key,
        context=context,
        action=REVERSE_ACTION,
        exchange_rate=rate,
        reference=original.journal_number,
        reversal_of_id=original.id,
    )


class ReversalService:
    """Reverses posted journals through the posting pipeline."""

    def __init__(
        self,
        posting_service: PostingService,
        repository: LedgerRepository | None = None,
    ):
        self._posting = posting_service
        self._repository = repository or posting_service.repository

    def reverse(
        self,
        context: PostingContext,
        entry_id: str,
        idempotency_key: str,
        journal_date: date | None = None,
        journal_number: str | None = None,
        description: str | None = None,
    ) -> PostingOutcome:
        """
        Reverse ``entry_id``.

        ``journal_date`` defaults to today; pass it explicitly when a retry
        may cross midnight, or the retry hashes differently and conflicts.
        """
        with LogContext.bind(
            tenant_id=context.tenant_id,
            company_id=context.company_id,
            actor_id=context.user_id,
            idempotency_key=idempotency_key,
        ):
            original = self._repository.get_journal(
                context.tenant_id, context.company_id, entry_id
            )
            if original is None:
                raise JournalNotFoundError(entry_id)
            if not original.is_posted:
                raise EntryNotPostedError(entry_id, original.status.value)

            existing = self._repository.find_reversal(
                context.tenant_id, context.company_id, entry_id
            )
            if existing is not None and existing.idempotency_key != idempotency_key:
                logger.warning(
                    "reversal_already_exists",
                    extra={"original_entry_id": entry_id, "reversal_entry_id": existing.id},
                )
                raise EntryAlreadyReversedError(entry_id, existing.id)

            request = build_reversal_request(
                original,
                context,
                idempotency_key,
                journal_date or self._posting.clock.today(),
                journal_number,
                description,
            )
            outcome = self._posting.post(request)

            if outcome.is_success and not outcome.replayed:
                extra = {
                    "original_entry_id": original.id,
                    "reversal_entry_id": outcome.result.id,
                    "journal_number": outcome.result.journal_number,
                    "status": outcome.result.status.value,
                }
                logger.info("reversal_created", extra=extra)
                audit_logger.info("reversal_created", extra=extra)
            return outcome
