"""
Module: gl_engines
Responsibility:
    Package entrypoint re-exporting the pure posting engines: COA policy,
    SoD evaluator, tax/FX calculator, journal validator, invoice posting
    builder and the posting decision state machine.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import gl_kernel.domain, gl_kernel.exceptions and
    gl_kernel.logging_config.  MUST NOT import gl_kernel.services or
    gl_kernel.models.

Invariants enforced:
    - Purity: engines never read the clock.  "Today" and every policy are
      passed in by the services.
    - Decimal-only arithmetic through ``Money``.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from gl_engines.validator import validate_journal
    from gl_engines.sod import evaluate
    from gl_engines.decision import decide
"""

from gl_engines.coa import CoaCheck, can_post, check_accounts, normal_balance_warnings
from gl_engines.decision import (
    PostingDecision,
    assert_transition,
    authorize_approval,
    decide,
    target_status,
)
from gl_engines.invoice import (
    build_invoice_posting,
    calculate_invoice_totals,
    validate_invoice,
)
from gl_engines.sod import evaluate, normalize_role, select_matching_rule
from gl_engines.tax import (
    TaxCodeLookup,
    batch_lookup_tax_codes,
    calculate_invoice_taxes,
    calculate_line_tax,
    convert_to_functional,
    group_taxes_by_code,
)
from gl_engines.validator import validate_journal

__all__ = [
    "CoaCheck",
    "PostingDecision",
    "TaxCodeLookup",
    "assert_transition",
    "authorize_approval",
    "batch_lookup_tax_codes",
    "build_invoice_posting",
    "calculate_invoice_taxes",
    "calculate_invoice_totals",
    "calculate_line_tax",
    "can_post",
    "check_accounts",
    "convert_to_functional",
    "decide",
    "evaluate",
    "group_taxes_by_code",
    "normal_balance_warnings",
    "normalize_role",
    "select_matching_rule",
    "validate_invoice",
    "validate_journal",
]
