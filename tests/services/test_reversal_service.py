"""
Tests for ReversalService.

Verifies:
- The reversal swaps every stored line, tax lines included
- The original stays POSTED; the link is ``reversal_of_id``
- One live reversal per original; a rejected one frees the slot
- Reversals go through SoD and idempotency like any other journal
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from gl_kernel.domain.journal import REVERSE_ACTION, JournalStatus
from gl_kernel.domain.values import ExchangeRate
from gl_kernel.exceptions import (
    EntryAlreadyReversedError,
    EntryNotPostedError,
    ErrorKind,
    JournalNotFoundError,
)
from gl_kernel.services.reversal_service import build_reversal_request
from tests.factories import COMPANY_ID, TENANT_ID, balanced_lines, make_context, make_line, make_request

ADMIN = make_context(role="admin", user_id="admin-1")
ACCOUNTANT = make_context(role="accountant", user_id="acc-1")
MANAGER = make_context(role="manager", user_id="manager-1")


@pytest.fixture
def posted_entry(posting_service, standard_accounts, tax_codes):
    """A POSTED entry with a tax line: expense 100.00 + SST 6.00 against cash."""
    outcome = posting_service.post(make_request(
        [
            make_line(standard_accounts["expense"], debit="100.00", tax_code="SST"),
            make_line(standard_accounts["cash"], credit="106.00"),
        ],
        context=ADMIN,
    ))
    return outcome.raise_for_failure()


def _get(service, entry_id):
    return service.repository.get_journal(TENANT_ID, COMPANY_ID, entry_id)


class TestBuildReversalRequest:
    def test_sides_swapped_and_tax_codes_dropped(self, posting_service, posted_entry):
        original = _get(posting_service, posted_entry.id)
        request = build_reversal_request(original, ADMIN, "rev-1", date(2025, 1, 15))

        assert request.action == REVERSE_ACTION
        assert request.journal_number == "JV-0001-REV"
        assert request.reference == "JV-0001"
        assert request.reversal_of_id == original.id
        assert len(request.lines) == len(original.lines) == 3
        for stored, reversed_line in zip(original.lines, request.lines):
            assert reversed_line.debit == stored.credit
            assert reversed_line.credit == stored.debit
            assert reversed_line.tax_code is None

    def test_explicit_number_and_description(self, posting_service, posted_entry):
        original = _get(posting_service, posted_entry.id)
        request = build_reversal_request(
            original, ADMIN, "rev-1", date(2025, 1, 15), "JV-9001", "Wrong vendor"
        )
        assert request.journal_number == "JV-9001"
        assert request.description == "Wrong vendor"


class TestReverse:
    def test_reversal_negates_original(
        self, posting_service, reversal_service, posted_entry, standard_accounts, captured_logs
    ):
        outcome = reversal_service.reverse(ADMIN, posted_entry.id, "rev-1")

        result = outcome.raise_for_failure()
        assert result.status == JournalStatus.POSTED
        assert result.reversal_of_id == posted_entry.id
        assert result.total_debit == Decimal("106.00")

        reversal = _get(posting_service, result.id)
        # stored tax line swapped, no new tax line added
        assert len(reversal.lines) == 3
        tax_credit = [l for l in reversal.lines if l.account_id == standard_accounts["tax_payable"]]
        assert [l.credit for l in tax_credit] == [Decimal("6.00")]
        assert reversal.journal_date == date(2025, 1, 15)

        original = _get(posting_service, posted_entry.id)
        assert original.status == JournalStatus.POSTED

        created = [r for r in captured_logs() if r["message"] == "reversal_created"]
        assert {r["logger"] for r in created} == {"gl_kernel.services.reversal", "gl_kernel.audit"}

    def test_net_effect_is_zero(self, posting_service, reversal_service, posted_entry):
        result = reversal_service.reverse(ADMIN, posted_entry.id, "rev-1").raise_for_failure()
        original = _get(posting_service, posted_entry.id)
        reversal = _get(posting_service, result.id)

        net: dict[str, Decimal] = {}
        for line in original.lines + reversal.lines:
            net[line.account_id] = net.get(line.account_id, Decimal("0")) + line.debit - line.credit
        assert all(amount == 0 for amount in net.values())

    def test_retry_same_key_replays(self, reversal_service, posted_entry):
        first = reversal_service.reverse(ADMIN, posted_entry.id, "rev-1", journal_date=date(2025, 1, 15))
        second = reversal_service.reverse(ADMIN, posted_entry.id, "rev-1", journal_date=date(2025, 1, 15))
        assert second.replayed
        assert second.result.id == first.result.id

    def test_second_reversal_refused(self, reversal_service, posted_entry, captured_logs):
        reversal_service.reverse(ADMIN, posted_entry.id, "rev-1")
        with pytest.raises(EntryAlreadyReversedError) as exc_info:
            reversal_service.reverse(ADMIN, posted_entry.id, "rev-2")
        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION
        assert any(r["message"] == "reversal_already_exists" for r in captured_logs())

    def test_pending_reversal_blocks_another(self, reversal_service, posted_entry):
        outcome = reversal_service.reverse(ACCOUNTANT, posted_entry.id, "rev-1")
        assert outcome.status == JournalStatus.PENDING_APPROVAL
        with pytest.raises(EntryAlreadyReversedError):
            reversal_service.reverse(ADMIN, posted_entry.id, "rev-2")

    def test_rejected_reversal_frees_the_slot(self, reversal_service, approval_service, posted_entry):
        pending = reversal_service.reverse(ACCOUNTANT, posted_entry.id, "rev-1").raise_for_failure()
        approval_service.reject(MANAGER, pending.id, note="wrong period")

        retry = reversal_service.reverse(
            ADMIN, posted_entry.id, "rev-2", journal_number="JV-0001-REV2"
        )
        assert retry.status == JournalStatus.POSTED

    def test_role_without_reverse_rights(self, reversal_service, posted_entry):
        outcome = reversal_service.reverse(
            make_context(role="clerk", user_id="clerk-1"), posted_entry.id, "rev-1"
        )
        assert not outcome.is_success
        assert outcome.failure.kind == ErrorKind.SOD_VIOLATION


class TestPreconditions:
    def test_unknown_entry(self, reversal_service, db_engine):
        with pytest.raises(JournalNotFoundError):
            reversal_service.reverse(ADMIN, str(uuid4()), "rev-1")

    def test_pending_entry_cannot_be_reversed(self, posting_service, reversal_service, standard_accounts):
        pending = posting_service.post(make_request(
            balanced_lines(
                debit_account=standard_accounts["expense"],
                credit_account=standard_accounts["cash"],
            ),
            context=make_context(role="clerk", user_id="clerk-1"),
        )).raise_for_failure()

        with pytest.raises(EntryNotPostedError):
            reversal_service.reverse(ADMIN, pending.id, "rev-1")


class TestForeignCurrency:
    def test_rate_carried_over(self, posting_service, reversal_service, standard_accounts):
        original = posting_service.post(make_request(
            balanced_lines(
                "100.00",
                debit_account=standard_accounts["usd_bank"],
                credit_account=standard_accounts["revenue"],
            ),
            currency="USD",
            exchange_rate=ExchangeRate.of("USD", "MYR", "4.4725"),
            context=ADMIN,
        )).raise_for_failure()

        result = reversal_service.reverse(ADMIN, original.id, "rev-1").raise_for_failure()

        assert result.currency == "USD"
        assert result.functional_currency == "MYR"
        assert result.functional_total_debit == Decimal("447.25")
