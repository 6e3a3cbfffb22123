"""
gl_config -- public entrypoint for posting policy configuration.

Responsibility:
    Loads a named YAML policy pack, validates it, and returns the frozen
    ``PostingPolicy`` the engines consume.  ``StaticPolicyProvider``
    implements the kernel's ``PolicyProvider`` protocol over a default
    policy plus per-tenant (or per-company) overrides.

Architecture position:
    Configuration -- sits above ``gl_kernel.domain`` and below
    ``gl_kernel.services``.  Engines receive policies as arguments and
    never import this package.

Invariants enforced:
    - A policy returned from here has passed ``validate_posting_policy``.
    - Same YAML always yields the same ``checksum``.

Failure modes:
    - ``FileNotFoundError`` -- no pack with the requested name.
    - ``PolicyConfigurationError`` -- the pack is malformed.

Audit relevance:
    Every successful ``load_policy_pack`` emits ``policy_pack_loaded`` with
    the pack name, version and checksum.  The checksum is stored on every
    journal written under the policy.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from gl_config.loader import load_posting_policy
from gl_config.validator import validate_posting_policy
from gl_kernel.domain.policy import PostingPolicy
from gl_kernel.logging_config import get_logger

logger = get_logger("config")

_DEFAULT_PACKS_DIR = Path(__file__).parent / "packs"
DEFAULT_PACK = "business"


def available_packs(packs_dir: Path | None = None) -> list[str]:
    """Names of the packs found in ``packs_dir``, sorted."""
    directory = packs_dir or _DEFAULT_PACKS_DIR
    return sorted(p.stem for p in directory.glob("*.yaml"))


def load_policy_pack(
    name: str = DEFAULT_PACK,
    packs_dir: Path | None = None,
) -> PostingPolicy:
    """
    Load, parse and validate the pack ``<packs_dir>/<name>.yaml``.

    Raises:
        FileNotFoundError: No such pack.
        PolicyConfigurationError: The pack is malformed.
    """
    directory = packs_dir or _DEFAULT_PACKS_DIR
    path = directory / f"{name}.yaml"
    if not path.is_file():
        raise FileNotFoundError(
            f"No policy pack '{name}' in {directory} "
            f"(available: {', '.join(available_packs(directory)) or 'none'})"
        )

    policy = validate_posting_policy(load_posting_policy(path))
    logger.info(
        "policy_pack_loaded",
        extra={
            "policy_name": policy.name,
            "policy_version": policy.version,
            "policy_checksum": policy.checksum,
            "rule_count": len(policy.rules),
        },
    )
    return policy


class StaticPolicyProvider:
    """
    In-process ``PolicyProvider``.

    ``overrides`` is keyed either by tenant id or by ``(tenant_id,
    company_id)``; the company-level key wins.
    """

    def __init__(
        self,
        default: PostingPolicy | None,
        overrides: Mapping[str | tuple[str, str], PostingPolicy] | None = None,
    ):
        self._default = default
        self._overrides = dict(overrides or {})

    def get_policy(self, tenant_id: str, company_id: str) -> PostingPolicy | None:
        policy = self._overrides.get((tenant_id, company_id))
        if policy is None:
            policy = self._overrides.get(tenant_id, self._default)
        return policy

    @classmethod
    def from_pack(cls, name: str = DEFAULT_PACK, packs_dir: Path | None = None) -> StaticPolicyProvider:
        return cls(load_policy_pack(name, packs_dir))


__all__ = [
    "DEFAULT_PACK",
    "StaticPolicyProvider",
    "available_packs",
    "load_policy_pack",
]
