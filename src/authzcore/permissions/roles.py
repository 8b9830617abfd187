"""Role registry: role id → base permission table.

Roles are plain data records held in an explicitly invalidated, process-wide
table. A lookup is a dict lookup over enumerated keys; unknown roles and
ungranted pairs are a default deny (``None``).

Higher roles inherit every grant of the roles below them, so the default
table is built by overlaying each role on the previous one.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from .constants import Action, Resource, RoleId, Scope
from .models import PermissionKey, ScopeSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Role:
    """A role and its base grants.

    Attributes:
        id: Stable identifier (e.g. ``"member"``).
        name: Display name.
        level: Rank; a higher level inherits lower-level grants and is governed
            by nothing a lower role's matrix entry says.
        base_permissions: ``(resource, action) → ScopeSpec``.
    """

    id: str
    name: str
    level: int
    base_permissions: Mapping[PermissionKey, ScopeSpec] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "base_permissions", MappingProxyType(dict(self.base_permissions)))

    def __hash__(self) -> int:
        return hash((self.id, self.level))

    def grant_for(self, resource: Resource, action: Action) -> Optional[ScopeSpec]:
        return self.base_permissions.get((resource, action))


def _inherit(
    parent: Mapping[PermissionKey, ScopeSpec],
    grants: Mapping[PermissionKey, ScopeSpec],
) -> dict[PermissionKey, ScopeSpec]:
    """Overlay ``grants`` on ``parent``, never narrowing an inherited grant."""
    merged = dict(parent)
    for key, spec in grants.items():
        existing = merged.get(key)
        if existing is None:
            merged[key] = spec
            continue
        merged[key] = ScopeSpec(
            max_scope=max(existing.max_scope, spec.max_scope),
            tier_exempt=existing.tier_exempt or spec.tier_exempt,
        )
    return merged


def _all_pairs(scope: Scope) -> dict[PermissionKey, ScopeSpec]:
    return {(resource, action): ScopeSpec(scope) for resource in Resource for action in Action}


# ── Default role table ──────────────────────────────────

_VIEWER_GRANTS: dict[PermissionKey, ScopeSpec] = {
    (Resource.TASK, Action.VIEW): ScopeSpec(Scope.ORGANIZATION),
    (Resource.TASK, Action.LIST): ScopeSpec(Scope.ORGANIZATION),
    (Resource.TEAM, Action.VIEW): ScopeSpec(Scope.ORGANIZATION),
    (Resource.TEAM, Action.LIST): ScopeSpec(Scope.ORGANIZATION),
    (Resource.ORGANIZATION, Action.VIEW): ScopeSpec(Scope.ORGANIZATION),
    (Resource.ATTACHMENT, Action.VIEW): ScopeSpec(Scope.ORGANIZATION),
    # Own profile is always reachable, whatever the plan
    (Resource.USER, Action.VIEW): ScopeSpec(Scope.OWN, tier_exempt=True),
    (Resource.USER, Action.UPDATE): ScopeSpec(Scope.OWN, tier_exempt=True),
}

_MEMBER_GRANTS: dict[PermissionKey, ScopeSpec] = {
    (Resource.TASK, Action.CREATE): ScopeSpec(Scope.TEAM),
    (Resource.TASK, Action.UPDATE): ScopeSpec(Scope.TEAM),
    (Resource.TASK, Action.DELETE): ScopeSpec(Scope.OWN),
    (Resource.TEAM, Action.CREATE): ScopeSpec(Scope.OWN),
    (Resource.DEPARTMENT, Action.VIEW): ScopeSpec(Scope.ORGANIZATION),
    (Resource.DEPARTMENT, Action.LIST): ScopeSpec(Scope.ORGANIZATION),
    (Resource.ATTACHMENT, Action.LIST): ScopeSpec(Scope.ORGANIZATION),
    (Resource.ATTACHMENT, Action.CREATE): ScopeSpec(Scope.TEAM),
    (Resource.ATTACHMENT, Action.DELETE): ScopeSpec(Scope.OWN),
    (Resource.ANALYTICS, Action.VIEW): ScopeSpec(Scope.TEAM),
}

_ADMIN_GRANTS: dict[PermissionKey, ScopeSpec] = {
    **{(Resource.TASK, action): ScopeSpec(Scope.ORGANIZATION) for action in Action},
    **{(Resource.TEAM, action): ScopeSpec(Scope.ORGANIZATION) for action in Action},
    **{(Resource.DEPARTMENT, action): ScopeSpec(Scope.ORGANIZATION) for action in Action},
    **{(Resource.ATTACHMENT, action): ScopeSpec(Scope.ORGANIZATION) for action in Action},
    **{(Resource.PERMISSION_MATRIX, action): ScopeSpec(Scope.ORGANIZATION) for action in Action},
    (Resource.ORGANIZATION, Action.UPDATE): ScopeSpec(Scope.ORGANIZATION),
    (Resource.ORGANIZATION, Action.ADMIN): ScopeSpec(Scope.ORGANIZATION),
    (Resource.USER, Action.LIST): ScopeSpec(Scope.ORGANIZATION),
    (Resource.ROLE, Action.VIEW): ScopeSpec(Scope.ORGANIZATION),
    (Resource.ROLE, Action.LIST): ScopeSpec(Scope.ORGANIZATION),
    (Resource.ANALYTICS, Action.VIEW): ScopeSpec(Scope.ORGANIZATION),
    (Resource.ANALYTICS, Action.LIST): ScopeSpec(Scope.ORGANIZATION),
    (Resource.AUDIT_LOG, Action.VIEW): ScopeSpec(Scope.ORGANIZATION),
    (Resource.AUDIT_LOG, Action.LIST): ScopeSpec(Scope.ORGANIZATION),
}

_VIEWER_TABLE = _inherit({}, _VIEWER_GRANTS)
_MEMBER_TABLE = _inherit(_VIEWER_TABLE, _MEMBER_GRANTS)
_ADMIN_TABLE = _inherit(_MEMBER_TABLE, _ADMIN_GRANTS)

DEFAULT_ROLES: tuple[Role, ...] = (
    Role(id=RoleId.VIEWER, name="Viewer", level=10, base_permissions=_VIEWER_TABLE),
    Role(id=RoleId.MEMBER, name="Member", level=20, base_permissions=_MEMBER_TABLE),
    Role(id=RoleId.ADMIN, name="Administrator", level=80, base_permissions=_ADMIN_TABLE),
    Role(
        id=RoleId.SYSTEM_ADMIN,
        name="System Administrator",
        level=100,
        base_permissions=_all_pairs(Scope.GLOBAL),
    ),
)


def _check_key(resource: Resource, action: Action) -> None:
    if not isinstance(resource, Resource):
        raise ValueError(f"Unknown resource: {resource!r}")
    if not isinstance(action, Action):
        raise ValueError(f"Unknown action: {action!r}")


class RoleRegistry:
    """Thread-safe role table with an explicit load / invalidate lifecycle.

    The table is populated on first use from ``loader`` (defaults to
    :data:`DEFAULT_ROLES`) and kept until :meth:`invalidate` is called.
    Readers always see a complete, immutable table.

    Example::

        registry = RoleRegistry()
        registry.lookup("member", Resource.TASK, Action.UPDATE)
        # ScopeSpec(max_scope=<Scope.TEAM: 'team'>, tier_exempt=False)
        registry.lookup("viewer", Resource.TASK, Action.DELETE)  # None
    """

    def __init__(self, loader: Callable[[], Iterable[Role]] | None = None) -> None:
        self._loader = loader or (lambda: DEFAULT_ROLES)
        self._roles: Optional[Mapping[str, Role]] = None
        self._lock = threading.Lock()

    def _table(self) -> Mapping[str, Role]:
        roles = self._roles
        if roles is not None:
            return roles
        with self._lock:
            if self._roles is None:
                self._roles = self._build(self._loader())
                logger.debug("Role table loaded: %d roles", len(self._roles))
            return self._roles

    @staticmethod
    def _build(roles: Iterable[Role]) -> Mapping[str, Role]:
        table: dict[str, Role] = {}
        for role in roles:
            if role.id in table:
                raise ValueError(f"Duplicate role id: {role.id}")
            table[role.id] = role
        return MappingProxyType(table)

    def load(self, roles: Iterable[Role]) -> None:
        """Replace the whole table at once."""
        table = self._build(roles)
        with self._lock:
            self._roles = table
        logger.info("Role table replaced: %d roles", len(table))

    def invalidate(self) -> None:
        """Drop the table; the next lookup reloads it from the loader."""
        with self._lock:
            self._roles = None
        logger.info("Role table invalidated")

    def get(self, role_id: str) -> Optional[Role]:
        return self._table().get(role_id)

    def level_of(self, role_id: str) -> Optional[int]:
        role = self.get(role_id)
        return role.level if role else None

    def role_ids(self) -> tuple[str, ...]:
        return tuple(self._table())

    def lookup(self, role_id: str, resource: Resource, action: Action) -> Optional[ScopeSpec]:
        """Base grant of ``role_id`` for ``(resource, action)``, or None (deny).

        Raises:
            ValueError: if ``resource`` or ``action`` is not a known enum member.
        """
        _check_key(resource, action)
        role = self._table().get(role_id)
        if role is None:
            return None
        return role.grant_for(resource, action)


__all__ = [
    "DEFAULT_ROLES",
    "Role",
    "RoleRegistry",
]
