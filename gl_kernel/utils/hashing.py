"""
Deterministic hashing utilities.

All hashing in the posting kernel must be deterministic and reproducible:
the idempotency gate compares request hashes, and policy packs are
identified by checksum.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # 1000 and 1000.00 are the same amount
        return str(obj.normalize())
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys sorted, no whitespace, consistent handling of Decimal, datetime,
    UUID and Enum.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_posting_request(request: Any) -> str:
    """
    Request hash used by the idempotency gate.

    Covers every field that affects the ledger effect, plus the acting
    user and role.  The idempotency key itself is excluded: it is the
    lookup key, not part of the payload.
    """
    ctx = request.context
    rate = request.exchange_rate
    payload = {
        "journal_number": request.journal_number,
        "description": request.description,
        "journal_date": request.journal_date,
        "currency": request.currency,
        "module": request.module,
        "action": request.action,
        "reference": request.reference,
        "reversal_of_id": request.reversal_of_id,
        "exchange_rate": (
            None
            if rate is None
            else {"from": rate.from_currency.code, "to": rate.to_currency.code, "rate": rate.rate}
        ),
        "context": {
            "tenant_id": ctx.tenant_id,
            "company_id": ctx.company_id,
            "user_id": ctx.user_id,
            "user_role": ctx.user_role,
        },
        "lines": [
            {
                "account_id": line.account_id,
                "debit": line.debit,
                "credit": line.credit,
                "description": line.description,
                "tax_code": line.tax_code,
                "project_id": line.project_id,
                "cost_center": line.cost_center,
                "currency": line.currency,
            }
            for line in request.lines
        ],
    }
    return hash_payload(payload)
