"""Quota algebra.

Combining layers is a field-wise minimum on numeric limits and an intersection
on feature sets, so the most restrictive applicable layer always wins. ``None``
is the identity: a missing quota (or a missing limit) constrains nothing.
Widening, used to build higher subscription tiers, is the dual: field-wise
maximum and feature union.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .constants import DenialCode
from .models import PermissionDecision, Quota


def _min_limit(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def _max_limit(a: Optional[int], b: Optional[int]) -> Optional[int]:
    if a is None or b is None:
        return None
    return max(a, b)


def combine_quotas(*quotas: Optional[Quota]) -> Optional[Quota]:
    """Combine applicable quota layers into the most restrictive one.

    Associative and commutative; ``None`` layers are skipped. Returns ``None``
    when no layer carries a quota.

    Example::

        combine_quotas(Quota.limited(100, 10, "a", "b"), Quota.limited(50, 20, "b"))
        # Quota(max_items=50, rate_limit=10, features=frozenset({"b"}))
    """
    result: Optional[Quota] = None
    for quota in quotas:
        if quota is None:
            continue
        if result is None:
            result = quota
            continue
        result = Quota(
            max_items=_min_limit(result.max_items, quota.max_items),
            rate_limit=_min_limit(result.rate_limit, quota.rate_limit),
            features=result.features & quota.features,
        )
    return result


def widen_quota(base: Optional[Quota], addition: Optional[Quota]) -> Optional[Quota]:
    """Loosen ``base`` by ``addition``: field-wise maximum, feature union.

    The result is never more restrictive than either input. ``None`` on either
    side means unrestricted, which stays unrestricted.
    """
    if base is None or addition is None:
        return None
    return Quota(
        max_items=_max_limit(base.max_items, addition.max_items),
        rate_limit=_max_limit(base.rate_limit, addition.rate_limit),
        features=base.features | addition.features,
    )


def is_at_least_as_permissive(higher: Optional[Quota], lower: Optional[Quota]) -> bool:
    """True if ``higher`` grants everything ``lower`` grants."""
    if higher is None:
        return True
    if lower is None:
        return False
    for name in ("max_items", "rate_limit"):
        hi, lo = getattr(higher, name), getattr(lower, name)
        if hi is None:
            continue
        if lo is None or hi < lo:
            return False
    return higher.features >= lower.features


@dataclass(frozen=True)
class QuotaUsage:
    """Current consumption reported by the caller for a quota check."""

    items: int = 0
    requests_in_window: int = 0


def check_usage(quota: Optional[Quota], usage: QuotaUsage) -> Optional[str]:
    """Check usage against a quota.

    Returns:
        None if within limits, or a human-readable reason.
    """
    if quota is None:
        return None
    if quota.max_items is not None and usage.items >= quota.max_items:
        return f"item limit reached ({usage.items}/{quota.max_items})"
    if quota.rate_limit is not None and usage.requests_in_window >= quota.rate_limit:
        return f"rate limit reached ({usage.requests_in_window}/{quota.rate_limit} per minute)"
    return None


def enforce_usage(decision: PermissionDecision, usage: QuotaUsage) -> PermissionDecision:
    """Turn an allowed decision into ``quota_exceeded`` when usage is at the limit.

    Denied decisions pass through unchanged.
    """
    if decision.is_denied:
        return decision
    reason = check_usage(decision.quota, usage)
    if reason is None:
        return decision
    return PermissionDecision.denied(DenialCode.QUOTA_EXCEEDED, f"Quota exceeded: {reason}")


__all__ = [
    "QuotaUsage",
    "check_usage",
    "combine_quotas",
    "enforce_usage",
    "is_at_least_as_permissive",
    "widen_quota",
]
