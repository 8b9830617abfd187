"""Value types shared by every engine component.

All types are frozen dataclasses: built once, never mutated, compared by value.
Two decisions computed from identical inputs are therefore equal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .constants import (
    Action,
    DenialCode,
    EntityType,
    MembershipKind,
    OverrideEffect,
    Resource,
    Scope,
    SubscriptionTier,
    Visibility,
)

PermissionKey = tuple[Resource, Action]


def _freeze(mapping: Mapping[Any, Any] | None) -> Mapping[Any, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class Quota:
    """Usage limits attached to a privilege.

    ``None`` for ``max_items`` or ``rate_limit`` means unlimited.
    """

    max_items: Optional[int] = None
    rate_limit: Optional[int] = None  # requests per minute
    features: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        for name in ("max_items", "rate_limit"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")
        if not isinstance(self.features, frozenset):
            object.__setattr__(self, "features", frozenset(self.features))

    @classmethod
    def limited(cls, max_items: int, rate_limit: int, *features: str) -> Quota:
        return cls(max_items=max_items, rate_limit=rate_limit, features=frozenset(features))

    @classmethod
    def unlimited(cls, *features: str) -> Quota:
        return cls(max_items=None, rate_limit=None, features=frozenset(features))

    def has_feature(self, feature: str) -> bool:
        return feature in self.features


@dataclass(frozen=True)
class Privilege:
    """A named entitlement bundle gated by subscription tier.

    ``quota=None`` means unrestricted.
    """

    name: str
    subscription_tier: SubscriptionTier
    quota: Optional[Quota] = None

    def is_available_for(self, tier: SubscriptionTier) -> bool:
        return tier.is_at_least(self.subscription_tier)

    @property
    def max_items(self) -> Optional[int]:
        return self.quota.max_items if self.quota else None

    @property
    def rate_limit(self) -> Optional[int]:
        return self.quota.rate_limit if self.quota else None

    def has_feature(self, feature: str) -> bool:
        # No quota at all is unrestricted access
        return self.quota is None or self.quota.has_feature(feature)


UNRESTRICTED_PRIVILEGE = Privilege(name="unrestricted", subscription_tier=SubscriptionTier.ENTERPRISE)


@dataclass(frozen=True)
class ScopeSpec:
    """A role's base grant for one (resource, action) pair.

    Attributes:
        max_scope: Broadest scope the role may act at.
        tier_exempt: Granted regardless of subscription tier (e.g. read-own).
    """

    max_scope: Scope
    tier_exempt: bool = False


@dataclass(frozen=True)
class Override:
    """A hierarchy-level rule replacing or restricting a role default."""

    effect: OverrideEffect = OverrideEffect.ALLOW
    scope: Optional[Scope] = None
    quota: Optional[Quota] = None

    @property
    def is_deny(self) -> bool:
        return self.effect == OverrideEffect.DENY

    @classmethod
    def allow(cls, scope: Scope | None = None, quota: Quota | None = None) -> Override:
        return cls(effect=OverrideEffect.ALLOW, scope=scope, quota=quota)

    @classmethod
    def deny(cls) -> Override:
        return cls(effect=OverrideEffect.DENY)


@dataclass(frozen=True)
class PermissionMatrixEntry:
    """Versioned permission overrides for one role at one hierarchy node.

    Unique per ``(entity_type, entity_id, role)``. ``version`` is the
    optimistic-lock counter; it only ever increases.
    """

    entity_type: EntityType
    entity_id: str
    organization_id: str
    role: str
    permissions: Mapping[PermissionKey, Override] = field(default_factory=dict)
    version: int = 1
    allow_child_override: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "permissions", _freeze(self.permissions))

    @property
    def key(self) -> tuple[EntityType, str, str]:
        return (self.entity_type, self.entity_id, self.role)

    def rule_for(self, resource: Resource, action: Action) -> Optional[Override]:
        return self.permissions.get((resource, action))

    def __hash__(self) -> int:
        return hash((self.key, self.version))


@dataclass(frozen=True)
class Membership:
    """A user's membership in a team or an organization."""

    subject_id: str
    scope_kind: MembershipKind
    scope_id: str
    role_in_scope: str = "member"


@dataclass(frozen=True)
class Organization:
    id: str
    name: str = ""


@dataclass(frozen=True)
class Department:
    """Department tree node. ``parent_department_id=None`` marks a root."""

    id: str
    organization_id: str
    parent_department_id: Optional[str] = None
    name: str = ""
    compliance_settings: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "compliance_settings", _freeze(self.compliance_settings))

    def __hash__(self) -> int:
        return hash((self.id, self.organization_id, self.parent_department_id))


@dataclass(frozen=True)
class Team:
    id: str
    organization_id: str
    department_id: Optional[str] = None


@dataclass(frozen=True)
class TargetRef:
    """Tenancy attributes of the resource being checked (never the actor)."""

    owner_id: str
    visibility: Visibility = Visibility.PERSONAL
    team_id: Optional[str] = None
    organization_id: Optional[str] = None


@dataclass(frozen=True)
class UserContext:
    """The acting identity, as supplied by the authentication provider.

    ``memberships`` is attached by the caller from the membership store.
    """

    user_id: str
    role: str
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    memberships: tuple[Membership, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.memberships, tuple):
            object.__setattr__(self, "memberships", tuple(self.memberships))

    def is_team_member(self, team_id: str) -> bool:
        return any(
            m.scope_kind == MembershipKind.TEAM and m.scope_id == team_id for m in self.memberships
        )

    def is_organization_member(self, organization_id: str) -> bool:
        return any(
            m.scope_kind == MembershipKind.ORGANIZATION and m.scope_id == organization_id
            for m in self.memberships
        )

    def with_memberships(self, memberships: tuple[Membership, ...] | list[Membership]) -> UserContext:
        return UserContext(
            user_id=self.user_id,
            role=self.role,
            subscription_tier=self.subscription_tier,
            memberships=tuple(memberships),
        )


@dataclass(frozen=True)
class PermissionDecision:
    """Outcome of ``PermissionEngine.decide``.

    Either allowed (``scope`` and ``privilege`` set) or denied (``code`` and
    ``reason`` set). Use the ``allowed`` / ``denied`` constructors.
    """

    is_allowed: bool
    scope: Optional[Scope] = None
    privilege: Optional[Privilege] = None
    code: Optional[DenialCode] = None
    reason: str = ""

    @classmethod
    def allowed(cls, scope: Scope, privilege: Privilege) -> PermissionDecision:
        return cls(is_allowed=True, scope=scope, privilege=privilege)

    @classmethod
    def denied(cls, code: DenialCode, reason: str) -> PermissionDecision:
        return cls(is_allowed=False, code=code, reason=reason)

    @property
    def is_denied(self) -> bool:
        return not self.is_allowed

    @property
    def quota(self) -> Optional[Quota]:
        return self.privilege.quota if self.privilege else None

    def to_dict(self) -> dict[str, Any]:
        """Plain representation for logs and audit records."""
        if self.is_allowed:
            quota = self.quota
            return {
                "allowed": True,
                "scope": self.scope.value if self.scope else None,
                "privilege": self.privilege.name if self.privilege else None,
                "max_items": quota.max_items if quota else None,
                "rate_limit": quota.rate_limit if quota else None,
                "features": sorted(quota.features) if quota else None,
            }
        return {
            "allowed": False,
            "code": self.code.value if self.code else None,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class AuditEvent:
    """One audit record per decision."""

    actor: str
    resource: Resource
    action: Action
    decision: PermissionDecision
    target: Optional[TargetRef] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_mutating(self) -> bool:
        return self.action.is_mutating


__all__ = [
    "AuditEvent",
    "Department",
    "Membership",
    "Organization",
    "Override",
    "PermissionDecision",
    "PermissionKey",
    "PermissionMatrixEntry",
    "Privilege",
    "Quota",
    "ScopeSpec",
    "TargetRef",
    "Team",
    "UNRESTRICTED_PRIVILEGE",
    "UserContext",
]
