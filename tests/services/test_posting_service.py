"""
Tests for PostingService.

Unit tests drive the pipeline with a mocked ``LedgerRepository`` so every
collaborator failure can be forced; the database-backed tests at the end
check what actually lands in the tables.

Verifies:
- Tax lookup failure degrades; account lookup failure fails closed
- Replay writes nothing; a reused key with another payload conflicts
- Failures come back as values with kind, code and issues
- Only successes are recorded under the idempotency key
"""

from decimal import Decimal
from unittest.mock import Mock

import pytest

from gl_config import StaticPolicyProvider, load_policy_pack
from gl_engines.tax import TAX_LOOKUP_UNAVAILABLE
from gl_kernel.domain.journal import JournalStatus
from gl_kernel.domain.results import PostingOutcome
from gl_kernel.domain.values import ExchangeRate
from gl_kernel.exceptions import (
    ConcurrentSubmissionError,
    DuplicateJournalError,
    ErrorKind,
    JournalValidationError,
    UpstreamUnavailableError,
)
from gl_kernel.services.idempotency_gate import IdempotencyGate, InMemoryIdempotencyStore
from gl_kernel.services.posting_service import PostingService
from tests.factories import (
    CASH,
    EXPENSE,
    INACTIVE,
    REVENUE,
    SST,
    balanced_lines,
    make_context,
    make_line,
    make_request,
    make_tax_lookup,
    standard_accounts,
)

ACCOUNTS = standard_accounts()


@pytest.fixture
def repo():
    repo = Mock()
    repo.lookup_accounts.side_effect = lambda tenant, company, ids: {
        i: ACCOUNTS[i] for i in ids if i in ACCOUNTS
    }
    repo.lookup_tax_codes.return_value = [SST]
    repo.insert_journal.return_value = "entry-1"
    return repo


@pytest.fixture
def store():
    return InMemoryIdempotencyStore()


@pytest.fixture
def service(repo, store, deterministic_clock):
    provider = StaticPolicyProvider(load_policy_pack("business"))
    return PostingService(
        repo, provider, IdempotencyGate(store, deterministic_clock), deterministic_clock
    )


class TestHappyPath:
    def test_admin_posts(self, service, repo, store):
        outcome = service.post(make_request(balanced_lines("1000.00")))

        assert outcome.is_success
        result = outcome.result
        assert result.status == JournalStatus.POSTED
        assert result.id == "entry-1"
        assert result.total_debit == Decimal("1000.00")
        assert not result.requires_approval
        repo.insert_journal.assert_called_once()
        assert len(store) == 1

    def test_draft_carries_audit_fields(self, service, repo):
        service.post(make_request(balanced_lines(), context=make_context(role="Clerk", user_id="c-1")))
        draft = repo.insert_journal.call_args.args[0]
        assert draft.status == JournalStatus.PENDING_APPROVAL
        assert draft.created_by == "c-1"
        assert draft.created_by_role == "clerk"
        assert draft.sod_rule == "clerk-post-under-threshold"
        assert draft.policy_checksum
        assert "manager" in draft.approver_roles

    def test_tax_lines_written(self, service, repo):
        service.post(make_request([
            make_line(EXPENSE, debit="100.00", tax_code="SST"),
            make_line(CASH, credit="106.00"),
        ]))
        draft = repo.insert_journal.call_args.args[0]
        assert len(draft.lines) == 3
        assert draft.total_debit == Decimal("106.00")

    def test_logs_pipeline(self, service, captured_logs):
        service.post(make_request(balanced_lines()))
        messages = [r["message"] for r in captured_logs()]
        for expected in ("posting_started", "sod_evaluated", "journal_written", "journal_recorded"):
            assert expected in messages
        written = next(r for r in captured_logs() if r["message"] == "journal_written")
        assert written["tenant_id"] == "tenant-1"
        assert written["idempotency_key"] == "key-JV-0001"
        assert written["total_debit"] == "1000.00"


class TestCollaboratorFailures:
    def test_tax_lookup_failure_degrades(self, service, repo, captured_logs):
        repo.lookup_tax_codes.side_effect = UpstreamUnavailableError(
            "tax_codes", "lookup_tax_codes", "timeout"
        )
        outcome = service.post(make_request([
            make_line(EXPENSE, debit="100.00", tax_code="SST"),
            make_line(CASH, credit="100.00"),
        ]))

        assert outcome.is_success
        assert outcome.result.warnings[0].code == TAX_LOOKUP_UNAVAILABLE
        degraded = [r for r in captured_logs() if r["message"] == "tax_code_degraded"]
        assert {r["logger"] for r in degraded} == {
            "gl_kernel.services.posting",
            "gl_kernel.audit",
        }
        assert all(r["level"] == "WARNING" for r in degraded)

    def test_account_lookup_failure_fails_closed(self, service, repo, store):
        repo.lookup_accounts.side_effect = UpstreamUnavailableError(
            "accounts", "lookup_accounts", "connection reset"
        )
        outcome = service.post(make_request(balanced_lines()))

        assert not outcome.is_success
        assert outcome.failure.kind == ErrorKind.UPSTREAM_UNAVAILABLE
        assert outcome.failure.details["collaborator"] == "accounts"
        repo.insert_journal.assert_not_called()
        assert len(store) == 0

    def test_tax_codes_fetched_once_per_journal(self, service, repo):
        service.post(make_request([
            make_line(EXPENSE, debit="100.00", tax_code="SST"),
            make_line(EXPENSE, debit="100.00", tax_code="SST"),
            make_line(CASH, credit="212.00"),
        ]))
        repo.lookup_tax_codes.assert_called_once()
        repo.lookup_accounts.assert_called_once()

    def test_supplied_tax_lookup_not_refetched(self, service, repo):
        outcome = service.post(
            make_request([
                make_line(EXPENSE, debit="100.00", tax_code="SST"),
                make_line(CASH, credit="106.00"),
            ]),
            tax_lookup=make_tax_lookup(SST),
        )
        assert outcome.is_success
        repo.lookup_tax_codes.assert_not_called()

    def test_missing_policy(self, repo, deterministic_clock, captured_logs):
        service = PostingService(
            repo,
            StaticPolicyProvider(None),
            IdempotencyGate(InMemoryIdempotencyStore()),
            deterministic_clock,
        )
        outcome = service.post(make_request(balanced_lines()))

        assert outcome.failure.kind == ErrorKind.POLICY_CONFIGURATION
        errors = [r for r in captured_logs() if r["message"] == "policy_configuration_error"]
        assert errors and errors[0]["level"] == "ERROR"

    def test_duplicate_journal_number(self, service, repo, store):
        repo.insert_journal.side_effect = DuplicateJournalError("JV-0001")
        outcome = service.post(make_request(balanced_lines()))
        assert outcome.failure.code == "DUPLICATE_JOURNAL_NUMBER"
        assert len(store) == 0

    def test_lost_record_race_raises(self, service, store):
        """The loser's transaction must roll back its journal insert."""
        request = make_request(balanced_lines())
        original_insert = store.insert

        def racing_insert(tenant_id, company_id, record):
            winner = type(record)(record.key, record.request_hash, {"id": "entry-winner"})
            original_insert(tenant_id, company_id, winner)
            return original_insert(tenant_id, company_id, record)

        store.insert = racing_insert
        with pytest.raises(ConcurrentSubmissionError):
            service.post(request)


class TestIdempotency:
    def test_replay_returns_stored_result(self, service, repo, captured_logs):
        request = make_request(balanced_lines())
        first = service.post(request)
        second = service.post(request)

        assert second.replayed
        assert second.result == first.result
        repo.insert_journal.assert_called_once()
        assert any(r["message"] == "idempotent_replay" for r in captured_logs())

    def test_key_reuse_with_other_payload_conflicts(self, service, repo, captured_logs):
        service.post(make_request(balanced_lines("1000.00")))
        outcome = service.post(make_request(balanced_lines("2000.00")))

        assert outcome.failure.kind == ErrorKind.IDEMPOTENCY_CONFLICT
        assert outcome.failure.code == "IDEMPOTENCY_CONFLICT"
        repo.insert_journal.assert_called_once()
        conflict = next(r for r in captured_logs() if r["message"] == "idempotency_conflict")
        assert conflict["level"] == "ERROR"

    def test_failed_request_not_recorded(self, service, store):
        """A corrected retry under the same key is processed normally."""
        bad = make_request([make_line(CASH, debit="1000.00"), make_line(REVENUE, credit="999.00")])
        assert not service.post(bad).is_success
        assert len(store) == 0

        fixed = make_request(balanced_lines("1000.00"))
        assert service.post(fixed).is_success

    def test_equivalent_amount_spellings_replay(self, service, repo):
        service.post(make_request(balanced_lines("1000")))
        outcome = service.post(make_request(balanced_lines("1000.00")))
        assert outcome.replayed


class TestFailures:
    def test_validation_failure_carries_every_issue(self, service):
        outcome = service.post(make_request([make_line(CASH, debit="1000.00")]))

        failure = outcome.failure
        assert failure.kind == ErrorKind.VALIDATION
        assert failure.code == JournalValidationError.code
        assert [i.code for i in failure.issues] == ["INSUFFICIENT_LINES", "UNBALANCED_JOURNAL"]
        assert failure.details["issue_codes"] == ["INSUFFICIENT_LINES", "UNBALANCED_JOURNAL"]

    def test_coa_failure(self, service, repo):
        outcome = service.post(make_request(balanced_lines(debit_account=INACTIVE)))
        assert outcome.failure.kind == ErrorKind.COA
        assert outcome.failure.code == "COA_VIOLATION"
        assert outcome.failure.account_ids == (INACTIVE,)
        repo.insert_journal.assert_not_called()

    def test_inactive_account_wins_over_imbalance(self, service, repo):
        outcome = service.post(make_request([
            make_line(INACTIVE, debit="100.00"),
            make_line(REVENUE, credit="90.00"),
        ]))

        failure = outcome.failure
        assert failure.kind == ErrorKind.COA
        assert failure.code == "COA_VIOLATION"
        assert failure.details["account_id"] == INACTIVE
        assert failure.details["account_ids"] == [INACTIVE]
        assert set(failure.details["issue_codes"]) == {"ACCOUNT_INACTIVE", "UNBALANCED_JOURNAL"}
        assert "UNBALANCED_JOURNAL" in [i.code for i in failure.issues]
        repo.insert_journal.assert_not_called()

    def test_outcome_needs_result_or_failure(self):
        with pytest.raises(ValueError, match="exactly one"):
            PostingOutcome()

    def test_sod_denial(self, service, repo):
        outcome = service.post(make_request(balanced_lines(), context=make_context(role="viewer")))
        assert outcome.failure.kind == ErrorKind.SOD_VIOLATION
        assert outcome.failure.details["role"] == "viewer"
        repo.insert_journal.assert_not_called()

    def test_raise_for_failure(self, service):
        outcome = service.post(make_request([make_line(CASH, debit="1.00")]))
        with pytest.raises(JournalValidationError):
            outcome.raise_for_failure()


class TestSoDAmount:
    def test_functional_total_drives_thresholds(self, service, repo):
        """10,000 USD at 4.5 is 45,000 MYR: over the 30,000 MYR line."""
        service.post(make_request(
            balanced_lines("10000.00"),
            currency="USD",
            exchange_rate=ExchangeRate.of("USD", "MYR", "4.5"),
            context=make_context(role="accountant"),
        ))
        draft = repo.insert_journal.call_args.args[0]
        assert draft.sod_rule == "accountant-post-large"
        assert draft.functional_total_debit == Decimal("45000.00")
        assert "manager" not in draft.approver_roles

    def test_entry_total_used_without_rate(self, service, repo):
        service.post(make_request(
            balanced_lines("10000.00"), context=make_context(role="accountant")
        ))
        assert repo.insert_journal.call_args.args[0].sod_rule == "accountant-post-medium"


class TestDatabaseBacked:
    """Same pipeline against the SQLAlchemy repository and store."""

    def test_written_entry_reads_back(self, posting_service, standard_accounts, tax_codes):
        outcome = posting_service.post(make_request([
            make_line(standard_accounts["expense"], debit="100.25", tax_code="SST"),
            make_line(standard_accounts["cash"], credit="106.27"),
        ]))
        assert outcome.is_success

        record = posting_service.repository.get_journal("tenant-1", "company-1", outcome.result.id)
        assert record.status == JournalStatus.POSTED
        assert record.total_debit == Decimal("106.27")
        tax_line = next(line for line in record.lines if line.is_tax_line)
        assert tax_line.debit == Decimal("6.02")
        assert tax_line.account_id == standard_accounts["tax_payable"]

    def test_duplicate_number_in_database(self, posting_service, standard_accounts):
        lines = balanced_lines(
            debit_account=standard_accounts["cash"], credit_account=standard_accounts["revenue"]
        )
        assert posting_service.post(make_request(lines, idempotency_key="k-1")).is_success
        outcome = posting_service.post(make_request(lines, idempotency_key="k-2"))
        assert outcome.failure.code == "DUPLICATE_JOURNAL_NUMBER"

    def test_inactive_tax_code_degrades(self, posting_service, standard_accounts, tax_codes):
        outcome = posting_service.post(make_request([
            make_line(standard_accounts["expense"], debit="100.00", tax_code="OLD"),
            make_line(standard_accounts["cash"], credit="100.00"),
        ]))
        assert outcome.is_success
        assert outcome.result.warnings[0].code == "TAX_CODE_INACTIVE"

    def test_replay_from_database(self, posting_service, standard_accounts):
        request = make_request(balanced_lines(
            debit_account=standard_accounts["cash"], credit_account=standard_accounts["revenue"]
        ))
        first = posting_service.post(request)
        second = posting_service.post(request)
        assert second.replayed
        assert second.result == first.result

    def test_sister_company_account_is_out_of_scope(self, posting_service, standard_accounts):
        """Account lookup is tenant-wide; the COA check rejects the other company."""
        outcome = posting_service.post(make_request(balanced_lines(
            debit_account=standard_accounts["other_company"],
            credit_account=standard_accounts["revenue"],
        )))

        assert outcome.failure.kind == ErrorKind.COA
        assert [i.code for i in outcome.failure.issues] == ["ACCOUNT_SCOPE_MISMATCH"]
        assert outcome.failure.details["account_ids"] == [standard_accounts["other_company"]]
