"""
InvoicePostingService -- posts customer invoices and supplier bills.

Responsibility:
    Checks the document, derives its journal with
    ``gl_engines.invoice.build_invoice_posting`` and hands it to
    ``PostingService.post``.

Architecture position:
    Kernel > Services -- thin orchestrator over ``PostingService``.  Tax
    codes are fetched once and shared by the document checks, the
    totals and the journal validator.

Failure modes (returned as ``PostingFailure``, not raised):
    - JOURNAL_VALIDATION_FAILED: the document itself is malformed.  The
      failure's issues point at document lines, not journal lines.
    - POLICY_CONFIGURATION: no policy for the scope.
    - Everything ``PostingService.post`` returns.
"""

from __future__ import annotations

from gl_engines.invoice import build_invoice_posting, validate_invoice
from gl_kernel.domain.invoice import InvoicePostingInput
from gl_kernel.domain.journal import PostingContext
from gl_kernel.domain.results import PostingFailure, PostingOutcome
from gl_kernel.exceptions import JournalValidationError, PolicyConfigurationError
from gl_kernel.logging_config import LogContext, get_logger
from gl_kernel.services.posting_service import PostingService

logger = get_logger("services.invoice")


class InvoicePostingService:
    def __init__(self, posting_service: PostingService):
        self._posting = posting_service

    def post_invoice(
        self,
        context: PostingContext,
        invoice: InvoicePostingInput,
        idempotency_key: str,
    ) -> PostingOutcome:
        with LogContext.bind(
            tenant_id=context.tenant_id,
            company_id=context.company_id,
            actor_id=context.user_id,
            idempotency_key=idempotency_key,
        ):
            logger.info(
                "invoice_posting_started",
                extra={
                    "document_number": invoice.document_number,
                    "kind": invoice.kind.value,
                    "party_id": invoice.party_id,
                    "line_count": len(invoice.lines),
                },
            )

            try:
                policy = self._posting.get_policy(context.tenant_id, context.company_id)
            except PolicyConfigurationError as exc:
                logger.error(
                    "policy_configuration_error",
                    extra={"policy_name": exc.policy_name, "problems": list(exc.problems)},
                )
                return PostingOutcome.failed(PostingFailure.from_error(exc))

            tax_lookup = self._posting.lookup_tax_codes(
                context.tenant_id,
                context.company_id,
                (line.tax_code for line in invoice.lines),
            )
            issues = validate_invoice(invoice, tax_lookup, policy.currency)
            if issues:
                codes = tuple(dict.fromkeys(issue.code for issue in issues))
                logger.info(
                    "invoice_validation_failed",
                    extra={"document_number": invoice.document_number, "codes": list(codes)},
                )
                error = JournalValidationError(invoice.document_number, codes)
                return PostingOutcome.failed(PostingFailure.from_error(error, issues=issues))

            request = build_invoice_posting(invoice, context, idempotency_key, tax_lookup)
            logger.info(
                "invoice_journal_derived",
                extra={
                    "document_number": invoice.document_number,
                    "journal_line_count": len(request.lines),
                    "total_amount": request.lines[0].debit or request.lines[0].credit,
                    "module": request.module,
                },
            )
            return self._posting.post(request, tax_lookup=tax_lookup)
