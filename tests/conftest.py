"""
Pytest fixtures for the posting engine test suite.

Provides:
- Structured-logging capture (``captured_logs``)
- A fresh in-memory SQLite database per test, with savepoints enabled
- A seeded chart of accounts and tax codes
- Posting, approval and reversal services wired to the test session

Environment Variables:
- DATABASE_URL: Optional SQLAlchemy URL.  Defaults to in-memory SQLite;
  point it at PostgreSQL to run the same suite against a server database.
"""

import json
import logging
import os
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from gl_config import StaticPolicyProvider, load_policy_pack
from gl_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from gl_kernel.domain.accounts import DEFAULT_NORMAL_BALANCE, AccountType
from gl_kernel.domain.clock import DeterministicClock
from gl_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from gl_kernel.models.account import Account, TaxCodeModel
from gl_kernel.services import ApprovalService, PostingService, ReversalService
from tests.factories import COMPANY_ID, OTHER_COMPANY_ID, TENANT_ID

TEST_ACTOR_ID = "seed-user"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture gl_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, posting_service):
            posting_service.post(request)
            logs = captured_logs()
            assert any(r["message"] == "journal_written" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("gl_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", "sqlite://")


@pytest.fixture
def db_engine():
    """A freshly created schema per test; dropped afterwards."""
    engine = init_engine_from_url(get_database_url())
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """Session for one test.  Never committed; rolled back at teardown."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock fixed at 2025-01-15 09:00 UTC."""
    return DeterministicClock()


# =============================================================================
# Policy fixtures
# =============================================================================


@pytest.fixture
def business_policy():
    return load_policy_pack("business")


@pytest.fixture
def policy_provider(business_policy) -> StaticPolicyProvider:
    return StaticPolicyProvider(business_policy)


# =============================================================================
# Master data
# =============================================================================


@pytest.fixture
def create_account(session: Session):
    """Factory fixture: insert an account row and return its id as a string."""

    def _create_account(
        code: str,
        name: str,
        account_type: AccountType,
        *,
        company_id: str = COMPANY_ID,
        is_active: bool = True,
        is_group: bool = False,
        currency: str | None = None,
        sub_kind: str | None = None,
    ) -> str:
        account = Account(
            tenant_id=TENANT_ID,
            company_id=company_id,
            code=code,
            name=name,
            account_type=account_type.value,
            normal_balance=DEFAULT_NORMAL_BALANCE[account_type].value,
            is_active=is_active,
            is_group=is_group,
            currency=currency,
            sub_kind=sub_kind,
            created_by=TEST_ACTOR_ID,
        )
        session.add(account)
        session.flush()
        return str(account.id)

    return _create_account


@pytest.fixture
def standard_accounts(create_account) -> dict[str, str]:
    """Seeded chart of accounts: short name -> account id."""
    return {
        "cash": create_account("1000", "Cash", AccountType.ASSET, sub_kind="cash"),
        "receivable": create_account("1100", "Receivables", AccountType.ASSET, sub_kind="receivable"),
        "payable": create_account("2100", "Trade Payables", AccountType.LIABILITY, sub_kind="payable"),
        "tax_payable": create_account("2200", "SST Payable", AccountType.LIABILITY, sub_kind="tax"),
        "revenue": create_account("4000", "Revenue", AccountType.INCOME),
        "expense": create_account("5000", "Expenses", AccountType.EXPENSE),
        "inactive": create_account("9000", "Retired Clearing", AccountType.ASSET, is_active=False),
        "group": create_account("1", "Current Assets", AccountType.ASSET, is_group=True),
        "usd_bank": create_account("1010", "USD Bank", AccountType.ASSET, currency="USD"),
        "other_company": create_account(
            "1000", "Cash (sister company)", AccountType.ASSET, company_id=OTHER_COMPANY_ID
        ),
    }


@pytest.fixture
def tax_codes(session: Session, standard_accounts) -> dict[str, str]:
    """SST at 6%, SVC at 8% and an inactive OLD code."""
    rows = [
        TaxCodeModel(
            tenant_id=TENANT_ID,
            company_id=COMPANY_ID,
            code="SST",
            name="Sales and service tax",
            rate=Decimal("0.06"),
            tax_account_id=standard_accounts["tax_payable"],
            created_by=TEST_ACTOR_ID,
        ),
        TaxCodeModel(
            tenant_id=TENANT_ID,
            company_id=COMPANY_ID,
            code="SVC",
            name="Service charge",
            rate=Decimal("0.08"),
            tax_account_id=standard_accounts["tax_payable"],
            created_by=TEST_ACTOR_ID,
        ),
        TaxCodeModel(
            tenant_id=TENANT_ID,
            company_id=COMPANY_ID,
            code="OLD",
            name="Retired GST",
            rate=Decimal("0.05"),
            tax_account_id=standard_accounts["tax_payable"],
            is_active=False,
            created_by=TEST_ACTOR_ID,
        ),
    ]
    session.add_all(rows)
    session.flush()
    return {row.code: str(row.id) for row in rows}


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def posting_service(session, policy_provider, deterministic_clock) -> PostingService:
    return PostingService.for_session(session, policy_provider, deterministic_clock)


@pytest.fixture
def approval_service(posting_service, policy_provider, deterministic_clock) -> ApprovalService:
    return ApprovalService(posting_service.repository, policy_provider, deterministic_clock)


@pytest.fixture
def reversal_service(posting_service) -> ReversalService:
    return ReversalService(posting_service)
