"""Hierarchy resolution: organization → departments → team overrides.

Provides:
- ``HierarchySnapshot`` — immutable, per-organization view of departments,
  teams and permission-matrix entries, as materialized by the cache.
- ``HierarchyResolver`` — walks the inheritance chain for a target and applies
  matrix overrides with specificity precedence and parent locks.
- ``ChainStep`` / ``EffectiveResolution`` — the per-level trace of a walk.

Precedence is Team > Department (innermost first) > Organization > role
default, but a level whose entry sets ``allow_child_override = False`` makes
its rule final for everything below it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from ..exceptions import NotFoundError, ValidationError
from .constants import Action, EntityType, Resource
from .models import Department, Organization, Override, PermissionMatrixEntry, Team
from .roles import RoleRegistry

logger = logging.getLogger(__name__)

MAX_DEPARTMENT_DEPTH = 32

EntryKey = tuple[EntityType, str, str]


@dataclass(frozen=True)
class HierarchySnapshot:
    """Everything the resolver needs about one organization.

    Build with :meth:`build`; lookups of unknown ids raise ``NotFoundError``.
    """

    organization: Organization
    departments: Mapping[str, Department] = field(default_factory=dict)
    teams: Mapping[str, Team] = field(default_factory=dict)
    entries: Mapping[EntryKey, PermissionMatrixEntry] = field(default_factory=dict)
    _by_entity: Mapping[tuple[EntityType, str], tuple[PermissionMatrixEntry, ...]] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        for name in ("departments", "teams", "entries"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))
        by_entity: dict[tuple[EntityType, str], list[PermissionMatrixEntry]] = {}
        for (entity_type, entity_id, _), entry in self.entries.items():
            by_entity.setdefault((entity_type, entity_id), []).append(entry)
        object.__setattr__(
            self, "_by_entity", MappingProxyType({key: tuple(group) for key, group in by_entity.items()})
        )

    def __hash__(self) -> int:
        return hash((self.organization, tuple(sorted(e.version for e in self.entries.values()))))

    @classmethod
    def build(
        cls,
        organization: Organization,
        departments: Iterable[Department] = (),
        teams: Iterable[Team] = (),
        entries: Iterable[PermissionMatrixEntry] = (),
    ) -> HierarchySnapshot:
        """Assemble a snapshot, rejecting records from another organization."""
        org_id = organization.id
        dept_map: dict[str, Department] = {}
        for dept in departments:
            if dept.organization_id != org_id:
                raise ValidationError(f"Department {dept.id} belongs to another organization")
            dept_map[dept.id] = dept
        team_map: dict[str, Team] = {}
        for team in teams:
            if team.organization_id != org_id:
                raise ValidationError(f"Team {team.id} belongs to another organization")
            team_map[team.id] = team
        entry_map: dict[EntryKey, PermissionMatrixEntry] = {}
        for entry in entries:
            if entry.organization_id != org_id:
                raise ValidationError("Permission matrix entry belongs to another organization")
            entry_map[entry.key] = entry
        return cls(organization=organization, departments=dept_map, teams=team_map, entries=entry_map)

    @property
    def organization_id(self) -> str:
        return self.organization.id

    def department(self, department_id: str) -> Department:
        try:
            return self.departments[department_id]
        except KeyError:
            raise NotFoundError("Department not found", department_id=department_id) from None

    def team(self, team_id: str) -> Team:
        try:
            return self.teams[team_id]
        except KeyError:
            raise NotFoundError("Team not found", team_id=team_id) from None

    def entry(self, entity_type: EntityType, entity_id: str, role: str) -> Optional[PermissionMatrixEntry]:
        return self.entries.get((entity_type, entity_id, role))

    def entries_at(self, entity_type: EntityType, entity_id: str) -> tuple[PermissionMatrixEntry, ...]:
        return self._by_entity.get((entity_type, entity_id), ())


class StepStatus(str, Enum):
    """What happened at one level of the chain."""

    NO_RULE = "no_rule"
    APPLIED = "applied"
    APPLIED_INHERITED = "applied_inherited"  # deny inherited from a higher role's entry
    IGNORED_LOCKED = "ignored_locked"


@dataclass(frozen=True)
class ChainStep:
    entity_type: EntityType
    entity_id: str
    status: StepStatus
    role: Optional[str] = None
    version: Optional[int] = None
    locks_children: bool = False


@dataclass(frozen=True)
class EffectiveResolution:
    """Result of a chain walk.

    Attributes:
        override: The effective override, or None when no level has a rule.
        steps: One step per level, outermost first.
    """

    override: Optional[Override]
    steps: tuple[ChainStep, ...] = ()

    @property
    def locked_at(self) -> Optional[ChainStep]:
        """The outermost applied level that locked its children, if any."""
        for step in self.steps:
            if step.locks_children and step.status in (StepStatus.APPLIED, StepStatus.APPLIED_INHERITED):
                return step
        return None


class HierarchyResolver:
    """Computes the effective override for (role, resource, action) at a target.

    Args:
        roles: Role registry, used to rank roles so that a higher role's deny
            governs lower roles at the same level.
        max_depth: Department chain bound.
    """

    def __init__(self, roles: RoleRegistry, *, max_depth: int = MAX_DEPARTMENT_DEPTH) -> None:
        self._roles = roles
        self._max_depth = max_depth

    def department_chain(self, snapshot: HierarchySnapshot, department_id: str) -> list[Department]:
        """Departments from the outermost ancestor down to ``department_id``.

        Raises:
            NotFoundError: a department in the chain is missing.
            ValidationError: the chain exceeds the depth bound or loops.
        """
        chain: list[Department] = []
        seen: set[str] = set()
        current: Optional[str] = department_id
        while current is not None:
            if current in seen:
                raise ValidationError("Department hierarchy contains a cycle", department_id=current)
            if len(chain) >= self._max_depth:
                raise ValidationError("Department hierarchy exceeds maximum depth", department_id=department_id)
            seen.add(current)
            dept = snapshot.department(current)
            if dept.organization_id != snapshot.organization_id:
                raise ValidationError("Department belongs to another organization", department_id=current)
            chain.append(dept)
            current = dept.parent_department_id
        chain.reverse()
        return chain

    def _levels(
        self,
        snapshot: HierarchySnapshot,
        organization_id: str,
        department_id: Optional[str],
        team_id: Optional[str],
    ) -> list[tuple[EntityType, str]]:
        if snapshot.organization_id != organization_id:
            raise ValidationError("Snapshot does not cover the requested organization")
        if team_id is not None:
            team = snapshot.team(team_id)
            if team.organization_id != organization_id:
                raise ValidationError("Team belongs to another organization", team_id=team_id)
            if department_id is None:
                department_id = team.department_id
            elif team.department_id is not None and team.department_id != department_id:
                raise ValidationError("Team is not part of the given department", team_id=team_id)

        levels: list[tuple[EntityType, str]] = [(EntityType.ORGANIZATION, organization_id)]
        if department_id is not None:
            levels.extend((EntityType.DEPARTMENT, d.id) for d in self.department_chain(snapshot, department_id))
        if team_id is not None:
            levels.append((EntityType.TEAM, team_id))
        return levels

    def _rule_at(
        self,
        snapshot: HierarchySnapshot,
        entity_type: EntityType,
        entity_id: str,
        role: str,
        role_level: Optional[int],
        resource: Resource,
        action: Action,
    ) -> tuple[Optional[PermissionMatrixEntry], Optional[Override], bool]:
        """Most specific rule at one level: (entry, rule, inherited)."""
        exact = snapshot.entry(entity_type, entity_id, role)
        if exact is not None:
            rule = exact.rule_for(resource, action)
            if rule is not None:
                return exact, rule, False
        if role_level is None:
            return None, None, False

        # A higher role's deny also binds every role below it
        best: Optional[tuple[int, PermissionMatrixEntry, Override]] = None
        for entry in snapshot.entries_at(entity_type, entity_id):
            if entry.role == role:
                continue
            level = self._roles.level_of(entry.role)
            if level is None or level <= role_level:
                continue
            rule = entry.rule_for(resource, action)
            if rule is None or not rule.is_deny:
                continue
            if best is None or level < best[0]:
                best = (level, entry, rule)
        if best is None:
            return None, None, False
        return best[1], best[2], True

    def resolve(
        self,
        snapshot: HierarchySnapshot,
        organization_id: str,
        department_id: Optional[str],
        team_id: Optional[str],
        role: str,
        resource: Resource,
        action: Action,
    ) -> EffectiveResolution:
        """Walk the chain outermost → innermost and return the effective rule with its trace.

        Raises:
            NotFoundError: a referenced team or department is missing.
            ValidationError: inconsistent references or a malformed chain.
        """
        role_level = self._roles.level_of(role)
        effective: Optional[Override] = None
        locked = False
        steps: list[ChainStep] = []

        for entity_type, entity_id in self._levels(snapshot, organization_id, department_id, team_id):
            entry, rule, inherited = self._rule_at(
                snapshot, entity_type, entity_id, role, role_level, resource, action
            )
            if entry is None or rule is None:
                steps.append(ChainStep(entity_type, entity_id, StepStatus.NO_RULE))
                continue
            if locked:
                logger.debug(
                    "Override at %s %s ignored: parent rule is final",
                    entity_type.value,
                    entity_id,
                )
                steps.append(
                    ChainStep(entity_type, entity_id, StepStatus.IGNORED_LOCKED, entry.role, entry.version)
                )
                continue
            effective = rule
            locked = not entry.allow_child_override
            steps.append(
                ChainStep(
                    entity_type,
                    entity_id,
                    StepStatus.APPLIED_INHERITED if inherited else StepStatus.APPLIED,
                    entry.role,
                    entry.version,
                    locks_children=locked,
                )
            )

        return EffectiveResolution(override=effective, steps=tuple(steps))

    def effective_permission(
        self,
        snapshot: HierarchySnapshot,
        organization_id: str,
        department_id: Optional[str],
        team_id: Optional[str],
        role: str,
        resource: Resource,
        action: Action,
    ) -> Optional[Override]:
        """Effective override for the tuple, or None when no level has a rule."""
        return self.resolve(snapshot, organization_id, department_id, team_id, role, resource, action).override


__all__ = [
    "ChainStep",
    "EffectiveResolution",
    "HierarchyResolver",
    "HierarchySnapshot",
    "MAX_DEPARTMENT_DEPTH",
    "StepStatus",
]
