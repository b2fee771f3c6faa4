"""Retrieval request guardrails.

Two entry points with different failure behavior:
- validate_retrieval_request: strict. Missing scope or a disallowed type fails the request.
- sanitize_source_types: permissive. Unknown or disallowed types are dropped silently.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from storechat.rag.types import ENTITY_TYPES


@dataclass(frozen=True)
class RetrievalPolicy:
    allowed_source_types: Tuple[str, ...] = ENTITY_TYPES
    require_explicit_allowlist: bool = True


@dataclass(frozen=True)
class GuardrailResult:
    valid: bool
    allowed_types: List[str] = field(default_factory=list)
    error: Optional[str] = None
    rejected_types: List[str] = field(default_factory=list)


DEFAULT_RETRIEVAL_POLICY = RetrievalPolicy()


def strict_policy(types: Sequence[str]) -> RetrievalPolicy:
    return RetrievalPolicy(allowed_source_types=tuple(types), require_explicit_allowlist=True)


def permissive_policy() -> RetrievalPolicy:
    return RetrievalPolicy(allowed_source_types=ENTITY_TYPES, require_explicit_allowlist=False)


def _dedupe(values: Sequence[str]) -> List[str]:
    seen = set()
    out = []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


def validate_retrieval_request(
    tenant_id: Optional[str],
    site_id: Optional[str],
    requested_types: Optional[Sequence[str]] = None,
    policy: RetrievalPolicy = DEFAULT_RETRIEVAL_POLICY,
) -> GuardrailResult:
    """Validate scope and requested source types against a policy.

    Args:
        tenant_id: Tenant scope; required.
        site_id: Site scope; required.
        requested_types: Source types the caller asked for; empty means all allowed.
        policy: Allowed types and strictness.

    Returns:
        GuardrailResult: valid with the effective types, or invalid with an error
        message (and the rejected types under a strict policy).
    """
    if not tenant_id or not site_id:
        return GuardrailResult(valid=False, error="tenant_id and site_id are required for retrieval")

    allowed = list(policy.allowed_source_types)
    if not requested_types:
        return GuardrailResult(valid=True, allowed_types=allowed)

    requested = _dedupe(requested_types)
    if policy.require_explicit_allowlist:
        rejected = [t for t in requested if t not in allowed]
        if rejected:
            return GuardrailResult(
                valid=False,
                error=f"Source types not allowed: {', '.join(rejected)}",
                rejected_types=rejected,
            )
    return GuardrailResult(valid=True, allowed_types=requested)


def sanitize_source_types(
    requested_types: Optional[Sequence[str]], policy: RetrievalPolicy = DEFAULT_RETRIEVAL_POLICY
) -> List[str]:
    """Drop unknown/disallowed types and duplicates, keeping request order."""
    allowed = set(policy.allowed_source_types)
    return [t for t in _dedupe(requested_types or []) if t in allowed]
