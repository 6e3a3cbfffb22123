"""
Policy pack loader (``gl_config.loader``).

Responsibility
--------------
Loads a YAML policy pack and parses it into the frozen
``gl_kernel.domain.policy`` dataclasses.  Callers obtain policies through
``gl_config.load_policy_pack`` or a ``PolicyProvider``; engines never read
files.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass; amounts are ``Decimal``,
  never float (YAML numbers are converted through ``str``).
* ``compute_checksum`` is deterministic: the same pack always yields the
  same checksum, which is stored on every journal for audit replay.
* Unknown effect names are collected and reported together as one
  ``PolicyConfigurationError``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys or bad values -> ``PolicyConfigurationError``.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from gl_kernel.domain.policy import (
    WILDCARD,
    CoaPolicy,
    PostingPolicy,
    SoDEffect,
    SoDRule,
)
from gl_kernel.exceptions import PolicyConfigurationError
from gl_kernel.utils.hashing import hash_payload

_REQUIRED_KEYS = ("name", "version", "roles", "rules")
_REQUIRED_RULE_KEYS = ("name", "role", "action", "effect")
THRESHOLD_REF = "approval_threshold"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of a raw pack."""
    return hash_payload(data)


def parse_amount(
    value: Any,
    label: str,
    problems: list[str],
    threshold: Decimal | None = None,
) -> Decimal | None:
    """
    Decimal from a YAML scalar.

    A rule bound may name ``approval_threshold`` instead of repeating the
    figure; it resolves to the pack's threshold.
    """
    if value is None:
        return None
    if value == THRESHOLD_REF:
        if threshold is None:
            problems.append(f"{label}: refers to {THRESHOLD_REF}, which is not set")
        return threshold
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        problems.append(f"{label}: not a decimal amount: {value!r}")
        return None


def parse_rule(
    data: dict[str, Any],
    problems: list[str],
    threshold: Decimal | None = None,
) -> SoDRule | None:
    """
    Parse one SoD rule, appending any problems instead of raising.

    Returns None when the rule is unusable.
    """
    missing = [k for k in _REQUIRED_RULE_KEYS if k not in data]
    label = f"rule '{data.get('name', '?')}'"
    if missing:
        problems.append(f"{label}: missing keys {', '.join(missing)}")
        return None

    try:
        effect = SoDEffect(str(data["effect"]).strip().lower())
    except ValueError:
        problems.append(f"{label}: unknown effect '{data['effect']}'")
        return None

    return SoDRule(
        name=str(data["name"]),
        role=str(data["role"]).strip().lower(),
        action=str(data["action"]).strip(),
        effect=effect,
        priority=int(data.get("priority", 100)),
        module=str(data.get("module", WILDCARD)).strip(),
        min_amount=parse_amount(
            data.get("min_amount"), f"{label} min_amount", problems, threshold
        ),
        max_amount=parse_amount(
            data.get("max_amount"), f"{label} max_amount", problems, threshold
        ),
        approver_roles=tuple(
            str(r).strip().lower() for r in data.get("approver_roles") or ()
        ),
    )


def parse_coa(data: dict[str, Any] | None) -> CoaPolicy:
    data = data or {}
    return CoaPolicy(
        enforce_account_currency=bool(data.get("enforce_account_currency", True)),
        warn_on_contra_balance=bool(data.get("warn_on_contra_balance", True)),
    )


def parse_posting_policy(data: dict[str, Any]) -> PostingPolicy:
    """
    Parse a ``PostingPolicy`` from a raw pack dict.

    Raises:
        PolicyConfigurationError: listing every problem found.
    """
    name = str(data.get("name", "<unnamed>"))
    missing = [k for k in _REQUIRED_KEYS if k not in data]
    if missing:
        raise PolicyConfigurationError(name, [f"missing keys: {', '.join(missing)}"])

    problems: list[str] = []
    threshold = parse_amount(data.get(THRESHOLD_REF), THRESHOLD_REF, problems)
    rules = []
    for raw in data["rules"] or ():
        rule = parse_rule(raw, problems, threshold)
        if rule is not None:
            rules.append(rule)

    if problems:
        raise PolicyConfigurationError(name, problems)

    return PostingPolicy(
        name=name,
        version=int(data["version"]),
        roles=frozenset(str(r).strip().lower() for r in data["roles"]),
        rules=tuple(rules),
        checksum=compute_checksum(data),
        currency=str(data.get("currency", "MYR")).upper(),
        approval_threshold=threshold,
        max_lines=int(data.get("max_lines", 100)),
        allow_future_dates=bool(data.get("allow_future_dates", False)),
        forbid_same_role_approval=bool(data.get("forbid_same_role_approval", False)),
        coa=parse_coa(data.get("coa")),
    )


def load_posting_policy(path: Path) -> PostingPolicy:
    """Load and parse one pack file (not validated; see ``gl_config.validator``)."""
    return parse_posting_policy(load_yaml_file(path))
