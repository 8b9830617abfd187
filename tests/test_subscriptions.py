"""Tests for authzcore.permissions.subscriptions."""

from __future__ import annotations

import pytest
from authzcore.exceptions import ConfigurationError
from authzcore.permissions import (
    Action,
    Features,
    Quota,
    Resource,
    Scope,
    SubscriptionEntitlementResolver,
    SubscriptionTier,
)
from authzcore.permissions.quota import is_at_least_as_permissive


class TestSubscriptionTier:
    """Tier ordering and parsing."""

    def test_is_at_least(self) -> None:
        assert SubscriptionTier.PRO.is_at_least(SubscriptionTier.FREE)
        assert SubscriptionTier.PRO.is_at_least(SubscriptionTier.PRO)
        assert not SubscriptionTier.FREE.is_at_least(SubscriptionTier.ENTERPRISE)

    def test_parse_is_case_insensitive(self) -> None:
        assert SubscriptionTier.parse(" Enterprise ") == SubscriptionTier.ENTERPRISE

    def test_parse_rejects_unknown(self) -> None:
        with pytest.raises(ValueError, match="Invalid subscription tier"):
            SubscriptionTier.parse("platinum")


class TestLookup:
    """Quota presets per tier."""

    def test_free_task_list(self) -> None:
        resolver = SubscriptionEntitlementResolver()
        privilege = resolver.lookup(SubscriptionTier.FREE, Resource.TASK, Action.LIST)
        assert privilege is not None
        assert privilege.max_items == 100
        assert privilege.rate_limit == 10
        assert privilege.has_feature(Features.BASIC_ACCESS)
        assert not privilege.has_feature(Features.EXPORT)

    def test_pro_task_list_adds_filters_and_export(self) -> None:
        resolver = SubscriptionEntitlementResolver()
        privilege = resolver.lookup(SubscriptionTier.PRO, Resource.TASK, Action.LIST)
        assert privilege is not None
        assert privilege.max_items == 10_000
        assert privilege.rate_limit == 100
        assert privilege.has_feature(Features.ADVANCED_FILTER)
        assert privilege.has_feature(Features.EXPORT)
        assert privilege.has_feature(Features.BASIC_ACCESS)

    def test_enterprise_is_unlimited(self) -> None:
        resolver = SubscriptionEntitlementResolver()
        privilege = resolver.lookup(SubscriptionTier.ENTERPRISE, Resource.TASK, Action.CREATE)
        assert privilege is not None
        assert privilege.max_items is None
        assert privilege.rate_limit is None
        assert privilege.has_feature(Features.BULK_OPERATIONS)

    def test_team_creation_limits(self) -> None:
        resolver = SubscriptionEntitlementResolver()
        assert resolver.lookup(SubscriptionTier.FREE, Resource.TEAM, Action.CREATE).max_items == 1
        assert resolver.lookup(SubscriptionTier.PRO, Resource.TEAM, Action.CREATE).max_items == 5
        assert resolver.lookup(SubscriptionTier.ENTERPRISE, Resource.TEAM, Action.CREATE).max_items is None

    def test_not_entitled_returns_none(self) -> None:
        resolver = SubscriptionEntitlementResolver()
        assert resolver.lookup(SubscriptionTier.FREE, Resource.ANALYTICS, Action.VIEW) is None

    def test_privilege_names_are_stable(self) -> None:
        resolver = SubscriptionEntitlementResolver()
        privilege = resolver.lookup(SubscriptionTier.PRO, Resource.ATTACHMENT, Action.CREATE)
        assert privilege.name == "pro_attachment_create"
        assert privilege.subscription_tier == SubscriptionTier.PRO

    def test_minimum_tier(self) -> None:
        resolver = SubscriptionEntitlementResolver()
        assert resolver.minimum_tier(Resource.TASK, Action.LIST) == SubscriptionTier.FREE
        assert resolver.minimum_tier(Resource.ANALYTICS, Action.LIST) == SubscriptionTier.PRO
        assert resolver.minimum_tier(Resource.AUDIT_LOG, Action.LIST) == SubscriptionTier.ENTERPRISE

    def test_scope_caps(self) -> None:
        assert SubscriptionEntitlementResolver.scope_cap(SubscriptionTier.FREE) == Scope.OWN
        assert SubscriptionEntitlementResolver.scope_cap(SubscriptionTier.PRO) == Scope.TEAM
        assert SubscriptionEntitlementResolver.scope_cap(SubscriptionTier.ENTERPRISE) == Scope.GLOBAL

    def test_unknown_pair_is_caller_error(self) -> None:
        resolver = SubscriptionEntitlementResolver()
        with pytest.raises(ValueError):
            resolver.lookup(SubscriptionTier.FREE, "task", "list")  # type: ignore[arg-type]


class TestMonotonicity:
    """A higher tier never grants less than a lower one."""

    def test_every_lower_tier_grant_survives(self) -> None:
        """For t1 ≤ t2 every privilege at t1 exists at t2 with equal or looser quota."""
        resolver = SubscriptionEntitlementResolver()
        tiers = SubscriptionTier.ordered()
        for i, lower in enumerate(tiers):
            for higher in tiers[i:]:
                for resource in Resource:
                    for action in Action:
                        low = resolver.lookup(lower, resource, action)
                        if low is None:
                            continue
                        high = resolver.lookup(higher, resource, action)
                        assert high is not None, f"{higher.value} lost {resource.value}:{action.value}"
                        assert is_at_least_as_permissive(high.quota, low.quota)

    def test_additions_cannot_narrow_a_lower_tier(self) -> None:
        """Overlay widens: a tighter 'addition' still yields the looser lower-tier quota."""
        free = {(Resource.TASK, Action.LIST): Quota.limited(100, 10, "basic")}
        pro = {(Resource.TASK, Action.LIST): Quota.limited(5, 1)}
        resolver = SubscriptionEntitlementResolver(free=free, pro_additions=pro, enterprise_additions={})
        privilege = resolver.lookup(SubscriptionTier.PRO, Resource.TASK, Action.LIST)
        assert privilege.max_items == 100
        assert privilege.rate_limit == 10
        assert privilege.has_feature("basic")

    def test_violation_is_configuration_error(self) -> None:
        """A hand-built table that breaks monotonicity is rejected at verification."""
        broken = SubscriptionEntitlementResolver.__new__(SubscriptionEntitlementResolver)
        good = SubscriptionEntitlementResolver(
            free={(Resource.TASK, Action.LIST): Quota.limited(100, 10)},
            pro_additions={},
            enterprise_additions={},
        )
        tables = dict(good._tables)
        tables[SubscriptionTier.PRO] = {}
        broken._tables = tables
        with pytest.raises(ConfigurationError):
            broken.verify_monotonic()
