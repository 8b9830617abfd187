"""Department tree maintenance for one organization.

``OrganizationTree`` is the write-side model behind the hierarchy snapshot:
it enforces the structural invariants (acyclic, bounded depth, unique sibling
names) on create, move and delete, and re-parents children, teams and members on
delete so nothing is silently orphaned.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from ..exceptions import NotFoundError, ValidationError
from .hierarchy import MAX_DEPARTMENT_DEPTH, HierarchySnapshot
from .models import Department, Organization, PermissionMatrixEntry, Team

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DepartmentRemoval:
    """What ``delete_department`` moved, and where to.

    ``new_parent_id`` is None when the removed department was a root; its
    members then move to the organization-level member set.
    """

    department: Department
    new_parent_id: Optional[str]
    reparented_departments: tuple[str, ...] = ()
    reparented_teams: tuple[str, ...] = ()
    reparented_members: tuple[str, ...] = ()


class OrganizationTree:
    """Mutable department/team tree of a single organization.

    Thread-safe; every mutation holds the tree lock.

    Args:
        organization: The owning organization.
        max_depth: Maximum number of departments on any root-to-leaf path.
    """

    def __init__(self, organization: Organization, *, max_depth: int = MAX_DEPARTMENT_DEPTH) -> None:
        self.organization = organization
        self._max_depth = max_depth
        self._departments: dict[str, Department] = {}
        self._teams: dict[str, Team] = {}
        self._members: dict[str, set[str]] = {}
        self._organization_members: set[str] = set()
        self._retired_ids: set[str] = set()
        self._lock = threading.RLock()

    # ── Queries ─────────────────────────────────────────────────

    def department(self, department_id: str) -> Department:
        with self._lock:
            try:
                return self._departments[department_id]
            except KeyError:
                raise NotFoundError("Department not found", department_id=department_id) from None

    def children_of(self, department_id: Optional[str]) -> list[Department]:
        with self._lock:
            return [d for d in self._departments.values() if d.parent_department_id == department_id]

    def depth_of(self, department_id: str) -> int:
        """Number of departments from the root down to and including this one."""
        return len(self.ancestors(department_id)) + 1

    def ancestors(self, department_id: str) -> list[str]:
        """Ancestor ids, nearest parent first."""
        with self._lock:
            result: list[str] = []
            current = self.department(department_id).parent_department_id
            while current is not None:
                if current == department_id or current in result:
                    raise ValidationError("Department hierarchy contains a cycle", department_id=department_id)
                result.append(current)
                current = self._departments[current].parent_department_id
            return result

    def _subtree_height(self, department_id: str) -> int:
        children = self.children_of(department_id)
        if not children:
            return 1
        return 1 + max(self._subtree_height(child.id) for child in children)

    def members_of(self, department_id: str) -> frozenset[str]:
        with self._lock:
            self.department(department_id)
            return frozenset(self._members.get(department_id, ()))

    def organization_members(self) -> frozenset[str]:
        """Members attached to the organization but to no department."""
        with self._lock:
            return frozenset(self._organization_members)

    # ── Departments ─────────────────────────────────────────────

    def _check_sibling_name(self, name: str, parent_id: Optional[str], exclude: Optional[str] = None) -> None:
        if not name:
            return
        for sibling in self.children_of(parent_id):
            if sibling.id != exclude and sibling.name == name:
                raise ValidationError("Department name already exists at this level", name=name)

    def create_department(
        self,
        department_id: str,
        *,
        parent_department_id: Optional[str] = None,
        name: str = "",
        compliance_settings: Mapping[str, Any] | None = None,
    ) -> Department:
        """Add a department under ``parent_department_id`` (or as a root).

        Raises:
            ValidationError: duplicate id or sibling name, or the depth bound is exceeded.
            NotFoundError: the parent does not exist in this organization.
        """
        with self._lock:
            if department_id in self._departments:
                raise ValidationError("Department already exists", department_id=department_id)
            if department_id in self._retired_ids:
                raise ValidationError("Department id was used by a deleted department", department_id=department_id)
            depth = 1
            if parent_department_id is not None:
                depth = self.depth_of(parent_department_id) + 1
            if depth > self._max_depth:
                raise ValidationError(
                    "Department hierarchy exceeds maximum depth",
                    max_depth=self._max_depth,
                )
            self._check_sibling_name(name, parent_department_id)
            dept = Department(
                id=department_id,
                organization_id=self.organization.id,
                parent_department_id=parent_department_id,
                name=name,
                compliance_settings=compliance_settings or {},
            )
            self._departments[department_id] = dept
            logger.info("Created department %s (parent=%s)", department_id, parent_department_id)
            return dept

    def move_department(self, department_id: str, new_parent_id: Optional[str]) -> Department:
        """Re-parent a department together with its subtree.

        Raises:
            ValidationError: the move would create a cycle or exceed the depth bound.
            NotFoundError: either department is missing.
        """
        with self._lock:
            current = self.department(department_id)
            parent_depth = 0
            if new_parent_id is not None:
                if new_parent_id == department_id or department_id in self.ancestors(new_parent_id):
                    raise ValidationError(
                        "Circular dependency detected: cannot move department under its own descendant",
                        department_id=department_id,
                    )
                parent_depth = self.depth_of(new_parent_id)
            if parent_depth + self._subtree_height(department_id) > self._max_depth:
                raise ValidationError(
                    "Department hierarchy exceeds maximum depth",
                    max_depth=self._max_depth,
                )
            self._check_sibling_name(current.name, new_parent_id, exclude=department_id)
            moved = Department(
                id=current.id,
                organization_id=current.organization_id,
                parent_department_id=new_parent_id,
                name=current.name,
                compliance_settings=current.compliance_settings,
            )
            self._departments[department_id] = moved
            logger.info("Moved department %s under %s", department_id, new_parent_id)
            return moved

    def delete_department(self, department_id: str) -> DepartmentRemoval:
        """Remove a department, handing its children, teams and members to its parent.

        Members of a removed root department move to the organization-level
        member set. The id is retired and cannot be reused, so matrix rows
        written for the old department never apply to a new one.

        Raises:
            ValidationError: a child's name clashes with a department already
                under the new parent; nothing is changed.
            NotFoundError: the department does not exist.
        """
        with self._lock:
            removed = self.department(department_id)
            parent_id = removed.parent_department_id
            children = self.children_of(department_id)
            for child in children:
                self._check_sibling_name(child.name, parent_id, exclude=department_id)

            moved_departments = []
            for child in children:
                self._departments[child.id] = Department(
                    id=child.id,
                    organization_id=child.organization_id,
                    parent_department_id=parent_id,
                    name=child.name,
                    compliance_settings=child.compliance_settings,
                )
                moved_departments.append(child.id)

            moved_teams = []
            for team in list(self._teams.values()):
                if team.department_id == department_id:
                    self._teams[team.id] = Team(team.id, team.organization_id, parent_id)
                    moved_teams.append(team.id)

            members = self._members.pop(department_id, set())
            if parent_id is not None:
                self._members.setdefault(parent_id, set()).update(members)
            else:
                self._organization_members.update(members)

            del self._departments[department_id]
            self._retired_ids.add(department_id)
            logger.info(
                "Deleted department %s: %d departments, %d teams, %d members moved to %s",
                department_id,
                len(moved_departments),
                len(moved_teams),
                len(members),
                parent_id or "organization",
            )
            return DepartmentRemoval(
                department=removed,
                new_parent_id=parent_id,
                reparented_departments=tuple(moved_departments),
                reparented_teams=tuple(moved_teams),
                reparented_members=tuple(sorted(members)),
            )

    def add_member(self, department_id: str, user_id: str) -> None:
        with self._lock:
            self.department(department_id)
            self._members.setdefault(department_id, set()).add(user_id)

    def remove_member(self, department_id: str, user_id: str) -> None:
        with self._lock:
            self._members.get(department_id, set()).discard(user_id)

    # ── Teams ───────────────────────────────────────────────────

    def add_team(self, team_id: str, department_id: Optional[str] = None) -> Team:
        with self._lock:
            if team_id in self._teams:
                raise ValidationError("Team already exists", team_id=team_id)
            if department_id is not None:
                self.department(department_id)
            team = Team(id=team_id, organization_id=self.organization.id, department_id=department_id)
            self._teams[team_id] = team
            return team

    def move_team(self, team_id: str, department_id: Optional[str]) -> Team:
        with self._lock:
            if team_id not in self._teams:
                raise NotFoundError("Team not found", team_id=team_id)
            if department_id is not None:
                self.department(department_id)
            team = Team(id=team_id, organization_id=self.organization.id, department_id=department_id)
            self._teams[team_id] = team
            return team

    def remove_team(self, team_id: str) -> None:
        with self._lock:
            if self._teams.pop(team_id, None) is None:
                raise NotFoundError("Team not found", team_id=team_id)

    # ── Snapshot ────────────────────────────────────────────────

    def snapshot(self, entries: Iterable[PermissionMatrixEntry] = ()) -> HierarchySnapshot:
        """Immutable view of the current tree plus the given matrix entries."""
        with self._lock:
            return HierarchySnapshot.build(
                self.organization,
                departments=list(self._departments.values()),
                teams=list(self._teams.values()),
                entries=entries,
            )


__all__ = ["DepartmentRemoval", "OrganizationTree"]
