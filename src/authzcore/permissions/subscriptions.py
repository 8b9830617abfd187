"""Subscription-tier entitlements.

Each tier's table is the previous tier's table widened by that tier's
additions, so a higher tier can only ever grant more: every (resource, action)
granted at ``free`` is granted at ``pro`` with limits equal or looser and a
feature superset, and likewise ``pro`` → ``enterprise``. The invariant is
re-checked at construction and a violation is a ``ConfigurationError``.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Mapping, Optional

from ..exceptions import ConfigurationError
from .constants import Action, Features, Resource, Scope, SubscriptionTier
from .models import PermissionKey, Privilege, Quota
from .quota import is_at_least_as_permissive, widen_quota

logger = logging.getLogger(__name__)

QuotaTable = Mapping[PermissionKey, Optional[Quota]]

_READS = (Action.VIEW, Action.LIST)
_WRITES = (Action.CREATE, Action.UPDATE, Action.DELETE)

# ── Tier tables ─────────────────────────────────────────

FREE_ENTITLEMENTS: dict[PermissionKey, Optional[Quota]] = {
    **{(Resource.TASK, a): Quota.limited(100, 10, Features.BASIC_ACCESS) for a in _READS},
    **{(Resource.TASK, a): Quota.limited(100, 10, Features.BASIC_ACCESS) for a in _WRITES},
    **{(Resource.TEAM, a): Quota(rate_limit=10, features=frozenset({Features.BASIC_ACCESS})) for a in _READS},
    (Resource.TEAM, Action.CREATE): Quota.limited(1, 10, Features.BASIC_ACCESS),
    (Resource.TEAM, Action.UPDATE): Quota.limited(3, 10, Features.BASIC_ACCESS),  # member seats
    (Resource.ORGANIZATION, Action.VIEW): Quota(rate_limit=10, features=frozenset({Features.BASIC_ACCESS})),
    **{(Resource.ATTACHMENT, a): Quota.limited(100, 10, Features.BASIC_ACCESS) for a in (*_READS, *_WRITES)},
    (Resource.USER, Action.VIEW): Quota(rate_limit=10, features=frozenset({Features.BASIC_ACCESS})),
    (Resource.USER, Action.UPDATE): Quota(rate_limit=10, features=frozenset({Features.BASIC_ACCESS})),
}

PRO_ADDITIONS: dict[PermissionKey, Optional[Quota]] = {
    **{
        (Resource.TASK, a): Quota.limited(10_000, 100, Features.ADVANCED_FILTER, Features.EXPORT)
        for a in _READS
    },
    **{(Resource.TASK, a): Quota.limited(1_000, 50, Features.BATCH_OPERATIONS) for a in _WRITES},
    (Resource.TEAM, Action.CREATE): Quota.limited(5, 50),
    (Resource.TEAM, Action.UPDATE): Quota.limited(10, 50),
    (Resource.TEAM, Action.DELETE): Quota(rate_limit=50),
    (Resource.ORGANIZATION, Action.LIST): Quota(rate_limit=50),
    **{(Resource.DEPARTMENT, a): Quota(rate_limit=50) for a in _READS},
    **{(Resource.ATTACHMENT, a): Quota.limited(1_000, 50) for a in (*_READS, *_WRITES)},
    **{(Resource.ANALYTICS, a): Quota(rate_limit=50, features=frozenset({Features.ANALYTICS})) for a in _READS},
    (Resource.USER, Action.LIST): Quota(rate_limit=50),
}

ENTERPRISE_ADDITIONS: dict[PermissionKey, Optional[Quota]] = {
    **{(resource, action): Quota.unlimited(Features.BULK_OPERATIONS) for resource in Resource for action in Action},
    **{(Resource.AUDIT_LOG, a): Quota.unlimited(Features.AUDIT_EXPORT) for a in _READS},
    **{(Resource.ROLE, a): Quota.unlimited(Features.CUSTOM_ROLES) for a in Action},
}

# Listing without a target is capped by plan
TIER_SCOPE_CAPS: Mapping[SubscriptionTier, Scope] = MappingProxyType(
    {
        SubscriptionTier.FREE: Scope.OWN,
        SubscriptionTier.PRO: Scope.TEAM,
        SubscriptionTier.ENTERPRISE: Scope.GLOBAL,
    }
)


def overlay(base: QuotaTable, additions: QuotaTable) -> dict[PermissionKey, Optional[Quota]]:
    """Widen ``base`` with ``additions``; keys only ever get added or loosened."""
    merged = dict(base)
    for key, quota in additions.items():
        if key in merged:
            merged[key] = widen_quota(merged[key], quota)
        else:
            merged[key] = quota
    return merged


def _privilege_name(tier: SubscriptionTier, key: PermissionKey) -> str:
    resource, action = key
    return f"{tier.value}_{resource.value}_{action.value}"


class SubscriptionEntitlementResolver:
    """Maps (tier, resource, action) to a :class:`Privilege`.

    Args:
        free: Free-tier table.
        pro_additions: Grants layered over the free table for ``pro``.
        enterprise_additions: Grants layered over the pro table for ``enterprise``.

    Example::

        resolver = SubscriptionEntitlementResolver()
        resolver.lookup(SubscriptionTier.FREE, Resource.TASK, Action.LIST).max_items  # 100
        resolver.lookup(SubscriptionTier.FREE, Resource.ANALYTICS, Action.VIEW)      # None
    """

    def __init__(
        self,
        free: QuotaTable | None = None,
        pro_additions: QuotaTable | None = None,
        enterprise_additions: QuotaTable | None = None,
    ) -> None:
        free_table = dict(FREE_ENTITLEMENTS if free is None else free)
        pro_table = overlay(free_table, PRO_ADDITIONS if pro_additions is None else pro_additions)
        enterprise_table = overlay(
            pro_table, ENTERPRISE_ADDITIONS if enterprise_additions is None else enterprise_additions
        )
        quotas = {
            SubscriptionTier.FREE: free_table,
            SubscriptionTier.PRO: pro_table,
            SubscriptionTier.ENTERPRISE: enterprise_table,
        }
        self._tables: Mapping[SubscriptionTier, Mapping[PermissionKey, Privilege]] = MappingProxyType(
            {
                tier: MappingProxyType(
                    {
                        key: Privilege(name=_privilege_name(tier, key), subscription_tier=tier, quota=quota)
                        for key, quota in table.items()
                    }
                )
                for tier, table in quotas.items()
            }
        )
        self.verify_monotonic()

    def lookup(self, tier: SubscriptionTier, resource: Resource, action: Action) -> Optional[Privilege]:
        """Privilege for ``(resource, action)`` at ``tier``, or None if not entitled."""
        if not isinstance(resource, Resource) or not isinstance(action, Action):
            raise ValueError(f"Unknown resource/action pair: {resource!r}, {action!r}")
        return self._tables[tier].get((resource, action))

    def entitlements(self, tier: SubscriptionTier) -> Mapping[PermissionKey, Privilege]:
        return self._tables[tier]

    @staticmethod
    def scope_cap(tier: SubscriptionTier) -> Scope:
        return TIER_SCOPE_CAPS[tier]

    def minimum_tier(self, resource: Resource, action: Action) -> Optional[SubscriptionTier]:
        """Lowest tier entitled to ``(resource, action)``; used in upgrade prompts."""
        for tier in SubscriptionTier.ordered():
            if (resource, action) in self._tables[tier]:
                return tier
        return None

    def verify_monotonic(self) -> None:
        """Check that each tier grants everything the tier below grants.

        Raises:
            ConfigurationError: on the first violating (tier, resource, action).
        """
        tiers = SubscriptionTier.ordered()
        for lower, higher in zip(tiers, tiers[1:]):
            lower_table, higher_table = self._tables[lower], self._tables[higher]
            for key, privilege in lower_table.items():
                upper = higher_table.get(key)
                if upper is None or not is_at_least_as_permissive(upper.quota, privilege.quota):
                    resource, action = key
                    raise ConfigurationError(
                        f"Tier {higher.value} is more restrictive than {lower.value} "
                        f"for {resource.value}:{action.value}",
                    )
        logger.debug("Subscription tiers verified monotonic")


__all__ = [
    "ENTERPRISE_ADDITIONS",
    "FREE_ENTITLEMENTS",
    "PRO_ADDITIONS",
    "SubscriptionEntitlementResolver",
    "TIER_SCOPE_CAPS",
    "overlay",
]
