"""
PostingService -- the caller-facing posting pipeline.

Responsibility:
    Runs one proposed journal through admit -> policy -> lookups ->
    validate -> SoD -> decide -> write -> record, and returns a
    ``PostingOutcome``.

Architecture position:
    Kernel > Services -- imperative shell around the pure engines in
    ``gl_engines``.  Collaborators (repository, policy provider,
    idempotency gate, clock) are injected.

Invariants enforced:
    - The idempotency check happens before validation; the journal insert
      and the idempotency record share the caller's transaction.
    - Invalid journals are rejected before SoD is consulted.
    - Tax lookup failure degrades to zero tax with a warning (logged and
      sent to the audit logger).  Account lookup failure fails closed.
    - Only successful outcomes are recorded under the idempotency key.

Failure modes (returned as ``PostingFailure``, not raised):
    - VALIDATION / COA: ``Invalid`` from the validator, with every issue.
    - SOD_VIOLATION: the role may not perform the action.
    - IDEMPOTENCY_CONFLICT: key reused with another payload.
    - POLICY_CONFIGURATION: no policy, or a malformed one.  Logged at ERROR.
    - UPSTREAM_UNAVAILABLE: account lookup failed.

    Raised: ``ConcurrentSubmissionError`` / ``IdempotencyConflictError``
    from ``record`` when a concurrent request won the key, so the caller's
    transaction rolls back this attempt's insert.

Non-goals:
    - Does NOT call session.commit() -- wrap calls in ``session_scope``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal

from sqlalchemy.orm import Session

from gl_engines.decision import decide
from gl_engines.sod import evaluate, normalize_role
from gl_engines.tax import TaxCodeLookup, batch_lookup_tax_codes
from gl_engines.validator import validate_journal
from gl_kernel.domain.accounts import AccountInfo
from gl_kernel.domain.clock import Clock, SystemClock
from gl_kernel.domain.journal import JournalDraft, JournalPostingInput, JournalStatus
from gl_kernel.domain.policy import PolicyProvider, PostingPolicy
from gl_kernel.domain.results import (
    Invalid,
    Issue,
    PostingFailure,
    PostingOutcome,
    PostingResult,
    Valid,
)
from gl_kernel.domain.sod import SoDDecision, SoDRequest
from gl_kernel.domain.values import Money
from gl_kernel.exceptions import (
    COAError,
    DuplicateJournalError,
    JournalValidationError,
    LedgerError,
    PolicyConfigurationError,
    SoDViolationError,
    UpstreamUnavailableError,
)
from gl_kernel.logging_config import LogContext, get_audit_logger, get_logger
from gl_kernel.services.idempotency_gate import (
    AdmissionKind,
    IdempotencyGate,
    SqlAlchemyIdempotencyStore,
)
from gl_kernel.services.repository import LedgerRepository, SqlAlchemyLedgerRepository
from gl_kernel.utils.hashing import hash_posting_request

logger = get_logger("services.posting")
audit_logger = get_audit_logger()


class PostingService:
    """Posts journals through the full validation and SoD pipeline.

    Contract:
        ``post`` never raises for an ordinary failure; it returns a
        ``PostingOutcome`` whose ``failure`` carries a kind, a code and
        enough detail to fix the request.

    Guarantees:
        - A replayed key returns the stored result verbatim and writes
          nothing.
        - A POSTED or PENDING_APPROVAL entry is written exactly once per
          idempotency key.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        policy_provider: PolicyProvider,
        idempotency_gate: IdempotencyGate,
        clock: Clock | None = None,
    ):
        self._repository = repository
        self._policy_provider = policy_provider
        self._gate = idempotency_gate
        self._clock = clock or SystemClock()

    @classmethod
    def for_session(
        cls,
        session: Session,
        policy_provider: PolicyProvider,
        clock: Clock | None = None,
    ) -> PostingService:
        """Wire the SQLAlchemy repository and idempotency store to ``session``."""
        clock = clock or SystemClock()
        return cls(
            SqlAlchemyLedgerRepository(session),
            policy_provider,
            IdempotencyGate(SqlAlchemyIdempotencyStore(session, clock), clock),
            clock,
        )

    @property
    def repository(self) -> LedgerRepository:
        return self._repository

    @property
    def clock(self) -> Clock:
        return self._clock

    def get_policy(self, tenant_id: str, company_id: str) -> PostingPolicy:
        """
        Policy for the scope.

        Raises:
            PolicyConfigurationError: The provider has none, or failed.
        """
        policy = self._policy_provider.get_policy(tenant_id, company_id)
        if policy is None:
            raise PolicyConfigurationError(
                "<none>", [f"no posting policy for {tenant_id}/{company_id}"]
            )
        return policy

    def post(
        self,
        request: JournalPostingInput,
        tax_lookup: TaxCodeLookup | None = None,
    ) -> PostingOutcome:
        """
        Run ``request`` through the pipeline.

        Args:
            request: The proposed journal.
            tax_lookup: Tax codes already fetched for this request, as the
                invoice service does.  Fetched here when omitted.
        """
        ctx = request.context
        with LogContext.bind(
            tenant_id=ctx.tenant_id,
            company_id=ctx.company_id,
            actor_id=ctx.user_id,
            idempotency_key=request.idempotency_key,
        ):
            logger.info(
                "posting_started",
                extra={
                    "journal_number": request.journal_number,
                    "action": request.action,
                    "currency": request.currency,
                    "line_count": len(request.lines),
                    "user_role": ctx.user_role,
                },
            )

            # 1. Idempotency
            request_hash = hash_posting_request(request)
            admission = self._gate.admit(
                ctx.tenant_id, ctx.company_id, request.idempotency_key, request_hash
            )
            if admission.kind == AdmissionKind.REPLAY:
                result = PostingResult.from_dict(admission.stored_response)
                logger.info(
                    "idempotent_replay",
                    extra={"entry_id": result.id, "status": result.status.value},
                )
                return PostingOutcome.success(result, replayed=True)
            if admission.kind == AdmissionKind.CONFLICT:
                error = admission.conflict_error()
                logger.error(
                    "idempotency_conflict",
                    extra={
                        "stored_hash": error.stored_hash,
                        "received_hash": error.received_hash,
                    },
                )
                return PostingOutcome.failed(PostingFailure.from_error(error))

            # 2. Policy
            try:
                policy = self.get_policy(ctx.tenant_id, ctx.company_id)
            except PolicyConfigurationError as exc:
                return self._policy_failure(exc)

            # 3. Master data: tax degrades, accounts fail closed
            if tax_lookup is None:
                tax_lookup = self.lookup_tax_codes(
                    ctx.tenant_id, ctx.company_id, (line.tax_code for line in request.lines)
                )
            try:
                accounts = self._lookup_accounts(request, tax_lookup)
            except UpstreamUnavailableError as exc:
                logger.error(
                    "account_lookup_unavailable",
                    extra={"error": str(exc), "journal_number": request.journal_number},
                )
                return PostingOutcome.failed(PostingFailure.from_error(exc))

            # 4. Validation
            validation = validate_journal(
                request, accounts, tax_lookup, policy, self._clock.today()
            )
            self._log_degraded_tax(request, validation.warnings)
            if isinstance(validation, Invalid):
                error = _validation_error(request, validation)
                logger.info(
                    "validation_failed",
                    extra={
                        "journal_number": request.journal_number,
                        "kind": validation.kind.value,
                        "codes": list(validation.codes),
                    },
                )
                return PostingOutcome.failed(
                    PostingFailure.from_error(
                        error, issues=validation.issues, warnings=validation.warnings
                    )
                )

            # 5. Segregation of duties
            try:
                sod = evaluate(
                    policy,
                    ctx,
                    request.action,
                    SoDRequest(amount=_sod_amount(validation, policy), module=request.module),
                )
            except PolicyConfigurationError as exc:
                return self._policy_failure(exc)
            _log_sod(sod, request.action)

            # 6. Decision
            decision = decide(validation, sod)
            if decision.status == JournalStatus.REJECTED:
                error = SoDViolationError(
                    normalize_role(ctx.user_role),
                    request.action,
                    decision.reason or "denied by policy",
                )
                logger.warning(
                    "sod_denied",
                    extra={"action": request.action, "reason": decision.reason},
                )
                return PostingOutcome.failed(
                    PostingFailure.from_error(error, warnings=validation.warnings)
                )

            # 7. Write
            rate = request.exchange_rate
            draft = JournalDraft(
                tenant_id=ctx.tenant_id,
                company_id=ctx.company_id,
                journal_number=request.journal_number.strip(),
                description=request.description,
                journal_date=request.journal_date,
                currency=validation.total_debit.currency.code,
                status=decision.status,
                lines=validation.lines,
                total_debit=validation.total_debit.amount,
                total_credit=validation.total_credit.amount,
                created_by=ctx.user_id,
                created_by_role=normalize_role(ctx.user_role),
                idempotency_key=request.idempotency_key,
                approver_roles=decision.approver_roles,
                policy_checksum=sod.policy_checksum,
                sod_rule=sod.matched_rule,
                reference=request.reference,
                reversal_of_id=request.reversal_of_id,
                functional_currency=rate.to_currency.code if rate else None,
                exchange_rate=rate.rate if rate else None,
                functional_total_debit=_amount(validation.functional_total_debit),
                functional_total_credit=_amount(validation.functional_total_credit),
            )
            try:
                entry_id = self._repository.insert_journal(draft)
            except DuplicateJournalError as exc:
                return PostingOutcome.failed(
                    PostingFailure.from_error(exc, warnings=validation.warnings)
                )

            result = PostingResult(
                id=entry_id,
                journal_number=draft.journal_number,
                status=decision.status,
                currency=draft.currency,
                total_debit=draft.total_debit,
                total_credit=draft.total_credit,
                requires_approval=decision.requires_approval,
                approver_roles=decision.approver_roles,
                warnings=validation.warnings,
                functional_currency=draft.functional_currency,
                functional_total_debit=draft.functional_total_debit,
                functional_total_credit=draft.functional_total_credit,
                reversal_of_id=draft.reversal_of_id,
            )
            with LogContext.bind(entry_id=entry_id):
                logger.info(
                    "journal_written",
                    extra={
                        "journal_number": result.journal_number,
                        "status": result.status.value,
                        "total_debit": result.total_debit,
                        "total_credit": result.total_credit,
                        "line_count": len(draft.lines),
                        "writes_ledger": decision.writes_ledger,
                    },
                )
                audit_logger.info(
                    "journal_recorded",
                    extra={
                        "journal_number": result.journal_number,
                        "status": result.status.value,
                        "policy_checksum": draft.policy_checksum,
                        "sod_rule": draft.sod_rule,
                        "approver_roles": list(result.approver_roles),
                    },
                )

            # 8. Record for replay
            self._gate.record(
                ctx.tenant_id,
                ctx.company_id,
                request.idempotency_key,
                request_hash,
                result.to_dict(),
            )
            return PostingOutcome.success(result)

    def lookup_tax_codes(
        self, tenant_id: str, company_id: str, codes: Iterable[str | None]
    ) -> TaxCodeLookup:
        """One batched tax-code fetch for the scope; never raises."""
        return batch_lookup_tax_codes(
            codes,
            lambda wanted: self._repository.lookup_tax_codes(tenant_id, company_id, wanted),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lookup_accounts(
        self, request: JournalPostingInput, tax_lookup: TaxCodeLookup
    ) -> Mapping[str, AccountInfo]:
        ids = {line.account_id for line in request.lines if line.account_id}
        ids.update(
            tc.tax_account_id for tc in tax_lookup.codes.values() if tc.tax_account_id
        )
        if not ids:
            return {}
        return self._repository.lookup_accounts(
            request.context.tenant_id, request.context.company_id, sorted(ids)
        )

    def _log_degraded_tax(
        self, request: JournalPostingInput, warnings: tuple[Issue, ...]
    ) -> None:
        for warning in warnings:
            tax_code = warning.details.get("tax_code")
            if tax_code is None:
                continue
            extra = {
                "journal_number": request.journal_number,
                "line_index": warning.line_index,
                "tax_code": tax_code,
                "reason": warning.code,
            }
            logger.warning("tax_code_degraded", extra=extra)
            audit_logger.warning("tax_code_degraded", extra=extra)

    def _policy_failure(self, exc: PolicyConfigurationError) -> PostingOutcome:
        logger.error(
            "policy_configuration_error",
            extra={"policy_name": exc.policy_name, "problems": list(exc.problems)},
        )
        return PostingOutcome.failed(PostingFailure.from_error(exc))


def _validation_error(request: JournalPostingInput, validation: Invalid) -> LedgerError:
    coa_issues = validation.coa_issues
    if coa_issues:
        first = coa_issues[0]
        return COAError(
            first.account_id or "",
            first.code,
            first.message,
            account_ids=tuple(dict.fromkeys(i.account_id for i in coa_issues if i.account_id)),
            issue_codes=validation.codes,
        )
    return JournalValidationError(request.journal_number, validation.codes)


def _sod_amount(validation: Valid, policy: PostingPolicy) -> Decimal:
    """Entry total in the policy's currency when a conversion to it exists."""
    functional = validation.functional_total_debit
    if functional is not None and functional.currency.code == policy.currency:
        return functional.amount
    return validation.total_debit.amount


def _log_sod(sod: SoDDecision, action: str) -> None:
    logger.info(
        "sod_evaluated",
        extra={
            "action": action,
            "allowed": sod.allowed,
            "requires_approval": sod.requires_approval,
            "approver_roles": list(sod.approver_roles),
            "matched_rule": sod.matched_rule,
            "policy_checksum": sod.policy_checksum,
        },
    )


def _amount(money: Money | None) -> Decimal | None:
    return money.amount if money is not None else None
