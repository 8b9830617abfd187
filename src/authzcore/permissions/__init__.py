"""Authorization core: roles, subscription tiers, hierarchy overrides, scopes.

Defines:
- Resource / Action / Scope / SubscriptionTier and the other closed enumerations
- RoleRegistry: role → base grants
- SubscriptionEntitlementResolver: tier → privileges and quotas
- HierarchyResolver / OrganizationTree: organization → department → team overrides
- ScopeEvaluator: target visibility
- PermissionEngine.decide(): the single decision entry point
"""

from .constants import (
    MUTATING_ACTIONS,
    Action,
    DenialCode,
    EntityType,
    Features,
    MembershipKind,
    OverrideEffect,
    Resource,
    RoleId,
    Scope,
    SubscriptionTier,
    Visibility,
)
from .departments import DepartmentRemoval, OrganizationTree
from .engine import PermissionEngine, PermissionRequest
from .hierarchy import (
    MAX_DEPARTMENT_DEPTH,
    ChainStep,
    EffectiveResolution,
    HierarchyResolver,
    HierarchySnapshot,
    StepStatus,
)
from .models import (
    UNRESTRICTED_PRIVILEGE,
    AuditEvent,
    Department,
    Membership,
    Organization,
    Override,
    PermissionDecision,
    PermissionKey,
    PermissionMatrixEntry,
    Privilege,
    Quota,
    ScopeSpec,
    TargetRef,
    Team,
    UserContext,
)
from .quota import QuotaUsage, check_usage, combine_quotas, widen_quota
from .roles import DEFAULT_ROLES, Role, RoleRegistry
from .scope import ScopeEvaluator
from .subscriptions import TIER_SCOPE_CAPS, SubscriptionEntitlementResolver

__all__ = [
    "Action",
    "AuditEvent",
    "ChainStep",
    "DEFAULT_ROLES",
    "DenialCode",
    "Department",
    "DepartmentRemoval",
    "EffectiveResolution",
    "EntityType",
    "Features",
    "HierarchyResolver",
    "HierarchySnapshot",
    "MAX_DEPARTMENT_DEPTH",
    "MUTATING_ACTIONS",
    "Membership",
    "MembershipKind",
    "Organization",
    "OrganizationTree",
    "Override",
    "OverrideEffect",
    "PermissionDecision",
    "PermissionEngine",
    "PermissionKey",
    "PermissionMatrixEntry",
    "PermissionRequest",
    "Privilege",
    "Quota",
    "QuotaUsage",
    "Resource",
    "Role",
    "RoleId",
    "RoleRegistry",
    "Scope",
    "ScopeEvaluator",
    "ScopeSpec",
    "StepStatus",
    "SubscriptionEntitlementResolver",
    "SubscriptionTier",
    "TIER_SCOPE_CAPS",
    "TargetRef",
    "Team",
    "UNRESTRICTED_PRIVILEGE",
    "UserContext",
    "Visibility",
    "check_usage",
    "combine_quotas",
    "widen_quota",
]
