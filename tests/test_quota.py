"""Tests for authzcore.permissions.quota."""

from __future__ import annotations

import itertools

import pytest
from authzcore.permissions import (
    DenialCode,
    PermissionDecision,
    Privilege,
    Quota,
    QuotaUsage,
    Scope,
    SubscriptionTier,
    check_usage,
    combine_quotas,
    widen_quota,
)
from authzcore.permissions.engine import PermissionEngine


class TestQuota:
    def test_negative_limits_rejected(self) -> None:
        with pytest.raises(ValueError):
            Quota(max_items=-1)

    def test_features_coerced_to_frozenset(self) -> None:
        quota = Quota(features={"export"})  # type: ignore[arg-type]
        assert isinstance(quota.features, frozenset)


class TestCombineQuotas:
    """Field-wise minimum, feature intersection."""

    def test_field_wise_minimum(self) -> None:
        combined = combine_quotas(Quota.limited(100, 10, "a", "b"), Quota.limited(50, 20, "b", "c"))
        assert combined == Quota(max_items=50, rate_limit=10, features=frozenset({"b"}))

    def test_none_limit_is_identity(self) -> None:
        combined = combine_quotas(Quota(max_items=None, rate_limit=5), Quota(max_items=7, rate_limit=None))
        assert combined.max_items == 7
        assert combined.rate_limit == 5

    def test_none_layers_skipped(self) -> None:
        quota = Quota.limited(10, 1, "x")
        assert combine_quotas(None, quota, None) == quota
        assert combine_quotas() is None
        assert combine_quotas(None) is None

    def test_associative_and_commutative(self) -> None:
        """Any order and grouping of layers gives the same result."""
        layers = [
            Quota.limited(100, 10, "a", "b", "c"),
            Quota(max_items=None, rate_limit=3, features=frozenset({"a", "b"})),
            Quota.limited(40, 50, "b", "c"),
            None,
        ]
        expected = combine_quotas(*layers)
        for perm in itertools.permutations(layers):
            assert combine_quotas(*perm) == expected
            assert combine_quotas(perm[0], combine_quotas(*perm[1:])) == expected
            assert combine_quotas(combine_quotas(*perm[:2]), combine_quotas(*perm[2:])) == expected
        assert expected == Quota(max_items=40, rate_limit=3, features=frozenset({"b"}))


class TestWidenQuota:
    def test_field_wise_maximum_and_union(self) -> None:
        widened = widen_quota(Quota.limited(100, 10, "a"), Quota.limited(50, 20, "b"))
        assert widened == Quota(max_items=100, rate_limit=20, features=frozenset({"a", "b"}))

    def test_unlimited_wins(self) -> None:
        assert widen_quota(Quota.limited(1, 1), Quota(max_items=None, rate_limit=5)).max_items is None
        assert widen_quota(None, Quota.limited(1, 1)) is None


class TestUsage:
    """check_usage / enforce_usage → quota_exceeded."""

    def _allowed(self, quota: Quota | None) -> PermissionDecision:
        return PermissionDecision.allowed(
            Scope.OWN,
            Privilege(name="free_task_create", subscription_tier=SubscriptionTier.FREE, quota=quota),
        )

    def test_within_limits(self) -> None:
        assert check_usage(Quota.limited(100, 10), QuotaUsage(items=99, requests_in_window=9)) is None

    def test_item_limit_reached(self) -> None:
        reason = check_usage(Quota.limited(100, 10), QuotaUsage(items=100))
        assert reason is not None
        assert "item limit" in reason

    def test_rate_limit_reached(self) -> None:
        reason = check_usage(Quota.limited(100, 10), QuotaUsage(requests_in_window=10))
        assert "rate limit" in reason

    def test_enforce_usage_denies_at_limit(self) -> None:
        decision = PermissionEngine.enforce_usage(self._allowed(Quota.limited(1, 10)), QuotaUsage(items=1))
        assert decision.is_denied
        assert decision.code == DenialCode.QUOTA_EXCEEDED
        assert decision.reason.startswith("Quota exceeded")

    def test_enforce_usage_keeps_allowed_under_limit(self) -> None:
        allowed = self._allowed(Quota.limited(5, 10))
        assert PermissionEngine.enforce_usage(allowed, QuotaUsage(items=4)) is allowed

    def test_unrestricted_never_exceeded(self) -> None:
        allowed = self._allowed(None)
        assert PermissionEngine.enforce_usage(allowed, QuotaUsage(items=10**9)) is allowed

    def test_denied_passes_through(self) -> None:
        denied = PermissionDecision.denied(DenialCode.OUT_OF_SCOPE, "no")
        assert PermissionEngine.enforce_usage(denied, QuotaUsage(items=10**9)) is denied
