"""Closed enumerations for the authorization engine.

Provides:
- ``Resource`` / ``Action`` — the build-time-known resource and action identifiers.
- ``Scope`` — data-visibility breadth, totally ordered (own < team < organization < global).
- ``SubscriptionTier`` — free < pro < enterprise, compared only via ``is_at_least``.
- ``Visibility``, ``EntityType``, ``MembershipKind``, ``OverrideEffect``.
- ``DenialCode`` — the stable machine-readable reasons a decision can be denied.
- ``RoleId`` / ``Features`` — well-known role identifiers and feature flag names.
"""

from __future__ import annotations

from enum import Enum


class Resource(str, Enum):
    """Resource types the engine can decide on."""

    TASK = "task"
    TEAM = "team"
    ORGANIZATION = "organization"
    DEPARTMENT = "department"
    USER = "user"
    ROLE = "role"
    ATTACHMENT = "attachment"
    ANALYTICS = "analytics"
    AUDIT_LOG = "audit_log"
    PERMISSION_MATRIX = "permission_matrix"


class Action(str, Enum):
    """Actions on a resource.

    ``create``, ``update``, ``delete`` and ``admin`` mutate state and must be
    audited synchronously. ``view`` and ``list`` are reads.
    """

    VIEW = "view"
    LIST = "list"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ADMIN = "admin"

    @property
    def is_mutating(self) -> bool:
        return self in MUTATING_ACTIONS


MUTATING_ACTIONS = frozenset({Action.CREATE, Action.UPDATE, Action.DELETE, Action.ADMIN})


class Scope(str, Enum):
    """Breadth of data a decision grants.

    Ordered: ``OWN < TEAM < ORGANIZATION < GLOBAL``. A broader scope includes
    every narrower one.
    """

    OWN = "own"
    TEAM = "team"
    ORGANIZATION = "organization"
    GLOBAL = "global"

    @property
    def level(self) -> int:
        return _SCOPE_LEVELS[self]

    def includes(self, other: Scope) -> bool:
        """True if this scope is at least as broad as ``other``."""
        return self.level >= other.level

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Scope):
            return NotImplemented
        return self.level < other.level

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Scope):
            return NotImplemented
        return self.level <= other.level

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Scope):
            return NotImplemented
        return self.level > other.level

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Scope):
            return NotImplemented
        return self.level >= other.level


_SCOPE_LEVELS = {Scope.OWN: 1, Scope.TEAM: 2, Scope.ORGANIZATION: 3, Scope.GLOBAL: 4}


class SubscriptionTier(str, Enum):
    """Subscription tiers, totally ordered ``FREE < PRO < ENTERPRISE``.

    ``is_at_least`` is the only comparison offered; tiers deliberately do not
    implement ``<``.
    """

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"

    def is_at_least(self, other: SubscriptionTier) -> bool:
        return _TIER_LEVELS[self] >= _TIER_LEVELS[other]

    @classmethod
    def parse(cls, value: str) -> SubscriptionTier:
        """Parse a tier name case-insensitively.

        Raises:
            ValueError: for an unknown tier name.
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Invalid subscription tier: {value}") from None

    @classmethod
    def ordered(cls) -> tuple[SubscriptionTier, ...]:
        return (cls.FREE, cls.PRO, cls.ENTERPRISE)


_TIER_LEVELS = {SubscriptionTier.FREE: 1, SubscriptionTier.PRO: 2, SubscriptionTier.ENTERPRISE: 3}


class Visibility(str, Enum):
    """Who a resource is shared with."""

    PERSONAL = "personal"
    TEAM = "team"
    ORGANIZATION = "organization"


class EntityType(str, Enum):
    """Hierarchy level a permission-matrix entry is attached to."""

    ORGANIZATION = "organization"
    DEPARTMENT = "department"
    TEAM = "team"


class MembershipKind(str, Enum):
    TEAM = "team"
    ORGANIZATION = "organization"


class OverrideEffect(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class DenialCode(str, Enum):
    """Stable denial codes, suitable for client-side branching."""

    INSUFFICIENT_ROLE = "insufficient_role"
    SUBSCRIPTION_TIER_TOO_LOW = "subscription_tier_too_low"
    OUT_OF_SCOPE = "out_of_scope"
    QUOTA_EXCEEDED = "quota_exceeded"
    RESOLUTION_ERROR = "resolution_error"


class RoleId:
    """Identifiers of the built-in roles.

    Roles are data (see ``RoleRegistry``); these are only the ids the default
    table ships with. ``SYSTEM_ADMIN`` is the one id the engine itself knows.
    """

    SYSTEM_ADMIN = "system_admin"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"

    ALL = frozenset({"system_admin", "admin", "member", "viewer"})


class Features:
    """Feature flag names carried by quotas."""

    BASIC_ACCESS = "basic_access"
    ADVANCED_FILTER = "advanced_filter"
    EXPORT = "export"
    BATCH_OPERATIONS = "batch_operations"
    BULK_OPERATIONS = "bulk_operations"
    ANALYTICS = "analytics"
    AUDIT_EXPORT = "audit_export"
    CUSTOM_ROLES = "custom_roles"


__all__ = [
    "Action",
    "DenialCode",
    "EntityType",
    "Features",
    "MUTATING_ACTIONS",
    "MembershipKind",
    "OverrideEffect",
    "Resource",
    "RoleId",
    "Scope",
    "SubscriptionTier",
    "Visibility",
]
