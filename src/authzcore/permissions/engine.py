"""PermissionEngine — the single authorization entry point.

``decide()`` composes the role registry, subscription entitlements, hierarchy
overrides and scope evaluation into one immutable ``PermissionDecision``. It
is pure and synchronous: every input (role table, subscription table,
hierarchy snapshot, memberships) is materialized by the caller, so the same
inputs always produce an equal decision.

Usage::

    engine = PermissionEngine()
    decision = engine.decide(user, Resource.TASK, Action.UPDATE, target, snapshot=snapshot)
    if decision.is_denied:
        ...  # decision.code, decision.reason
"""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from ..exceptions import NotFoundError, ValidationError
from .constants import Action, DenialCode, Resource, RoleId, Scope
from .hierarchy import MAX_DEPARTMENT_DEPTH, HierarchyResolver, HierarchySnapshot
from .models import (
    UNRESTRICTED_PRIVILEGE,
    Override,
    PermissionDecision,
    Privilege,
    ScopeSpec,
    TargetRef,
    UserContext,
)
from .quota import QuotaUsage, combine_quotas
from .quota import enforce_usage as _enforce_usage
from .roles import RoleRegistry
from .scope import ScopeEvaluator
from .subscriptions import SubscriptionEntitlementResolver

logger = logging.getLogger(__name__)

PermissionRequest = tuple[Resource, Action, Optional[TargetRef]]


class PermissionEngine:
    """Decides (user, resource, action, target) requests.

    Args:
        roles: Role registry (default table if omitted).
        subscriptions: Tier entitlement resolver (default tables if omitted).
        max_department_depth: Bound for hierarchy walks.
    """

    def __init__(
        self,
        roles: RoleRegistry | None = None,
        subscriptions: SubscriptionEntitlementResolver | None = None,
        *,
        max_department_depth: int = MAX_DEPARTMENT_DEPTH,
    ) -> None:
        self.roles = roles or RoleRegistry()
        self.subscriptions = subscriptions or SubscriptionEntitlementResolver()
        self.hierarchy = HierarchyResolver(self.roles, max_depth=max_department_depth)
        self.scopes = ScopeEvaluator()

    # ── Public API ──────────────────────────────────────────────

    def decide(
        self,
        user: UserContext,
        resource: Resource,
        action: Action,
        target: TargetRef | None = None,
        *,
        snapshot: HierarchySnapshot | None = None,
    ) -> PermissionDecision:
        """Decide one request.

        Args:
            user: Acting identity with its memberships attached.
            resource: Resource type.
            action: Action on the resource.
            target: The concrete resource, or None for list/search requests.
            snapshot: Hierarchy snapshot of ``target.organization_id``.

        Returns:
            ``Allowed{scope, privilege}`` or ``Denied{code, reason}``. Malformed
            targets and dangling hierarchy references yield
            ``Denied{resolution_error}``; they are never raised.

        Raises:
            ValueError: ``resource`` / ``action`` are not enum members.
        """
        if not isinstance(resource, Resource) or not isinstance(action, Action):
            raise ValueError(f"Unknown resource/action pair: {resource!r}, {action!r}")
        try:
            decision = self._decide(user, resource, action, target, snapshot)
        except (ValidationError, NotFoundError) as e:
            logger.info(
                "Resolution failed for %s on %s:%s: %s",
                user.user_id,
                resource.value,
                action.value,
                e.message,
            )
            decision = PermissionDecision.denied(
                DenialCode.RESOLUTION_ERROR, "Target could not be resolved"
            )

        if decision.is_allowed:
            logger.debug(
                "ALLOWED %s:%s for %s (scope=%s)",
                resource.value,
                action.value,
                user.user_id,
                decision.scope.value if decision.scope else None,
            )
        else:
            logger.info(
                "DENIED %s:%s for %s: %s (%s)",
                resource.value,
                action.value,
                user.user_id,
                decision.code.value if decision.code else None,
                decision.reason,
            )
        return decision

    def decide_many(
        self,
        user: UserContext,
        requests: Iterable[PermissionRequest],
        *,
        snapshots: Mapping[str, HierarchySnapshot] | None = None,
    ) -> list[PermissionDecision]:
        """Decide several requests for one user, in order.

        ``snapshots`` maps organization id to its snapshot; each target picks
        the snapshot of its own organization.
        """
        snapshots = snapshots or {}
        results = []
        for resource, action, target in requests:
            snapshot = None
            if target is not None and target.organization_id:
                snapshot = snapshots.get(target.organization_id)
            results.append(self.decide(user, resource, action, target, snapshot=snapshot))
        return results

    @staticmethod
    def enforce_usage(decision: PermissionDecision, usage: QuotaUsage) -> PermissionDecision:
        """Apply current usage to an allowed decision (``quota_exceeded`` at the limit)."""
        return _enforce_usage(decision, usage)

    # ── Internals ───────────────────────────────────────────────

    def _override_for(
        self,
        user: UserContext,
        resource: Resource,
        action: Action,
        target: TargetRef | None,
        snapshot: HierarchySnapshot | None,
    ) -> Optional[Override]:
        if target is None:
            return None
        self.scopes.validate_target(target)
        if not target.organization_id:
            return None
        if snapshot is None:
            raise NotFoundError("No hierarchy snapshot for organization", organization_id=target.organization_id)
        return self.hierarchy.effective_permission(
            snapshot,
            target.organization_id,
            None,
            target.team_id,
            user.role,
            resource,
            action,
        )

    @staticmethod
    def _scope_cap(base: Optional[ScopeSpec], override: Optional[Override]) -> Scope:
        if override is not None and override.scope is not None:
            return override.scope
        if base is not None:
            return base.max_scope
        return Scope.OWN

    def _decide(
        self,
        user: UserContext,
        resource: Resource,
        action: Action,
        target: TargetRef | None,
        snapshot: HierarchySnapshot | None,
    ) -> PermissionDecision:
        if user.role == RoleId.SYSTEM_ADMIN:
            return PermissionDecision.allowed(Scope.GLOBAL, UNRESTRICTED_PRIVILEGE)

        base = self.roles.lookup(user.role, resource, action)
        override = self._override_for(user, resource, action, target, snapshot)

        if override is not None and override.is_deny:
            return PermissionDecision.denied(
                DenialCode.INSUFFICIENT_ROLE,
                f"{resource.value}:{action.value} is denied for role {user.role} by a hierarchy override",
            )
        if base is None and override is None:
            return PermissionDecision.denied(
                DenialCode.INSUFFICIENT_ROLE,
                f"Role {user.role} may not {action.value} {resource.value}",
            )

        sub_priv = self.subscriptions.lookup(user.subscription_tier, resource, action)
        if sub_priv is None and not (base is not None and base.tier_exempt):
            required = self.subscriptions.minimum_tier(resource, action)
            hint = f"; requires {required.value}" if required else ""
            return PermissionDecision.denied(
                DenialCode.SUBSCRIPTION_TIER_TOO_LOW,
                f"{resource.value}:{action.value} is not included in the "
                f"{user.subscription_tier.value} plan{hint}",
            )

        cap = self._scope_cap(base, override)
        if target is not None:
            scope = self.scopes.resolve(user, target)
            if scope is None:
                return PermissionDecision.denied(DenialCode.OUT_OF_SCOPE, "Target is not visible to the requester")
            if scope > cap:
                return PermissionDecision.denied(
                    DenialCode.OUT_OF_SCOPE,
                    f"Access requires {scope.value} scope but the role grants {cap.value}",
                )
        else:
            scope = self.scopes.list_scope(user, cap, user.subscription_tier)

        return PermissionDecision.allowed(scope, self._privilege(user, resource, action, sub_priv, override))

    @staticmethod
    def _privilege(
        user: UserContext,
        resource: Resource,
        action: Action,
        sub_priv: Optional[Privilege],
        override: Optional[Override],
    ) -> Privilege:
        override_quota = override.quota if override is not None else None
        if sub_priv is None:
            # Tier-exempt grant: only an override can limit it
            return Privilege(
                name=f"exempt_{resource.value}_{action.value}",
                subscription_tier=user.subscription_tier,
                quota=override_quota,
            )
        if override_quota is None:
            return sub_priv
        return Privilege(
            name=sub_priv.name,
            subscription_tier=sub_priv.subscription_tier,
            quota=combine_quotas(sub_priv.quota, override_quota),
        )


__all__ = ["PermissionEngine", "PermissionRequest"]
