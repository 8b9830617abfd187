"""In-memory implementations of the collaborator interfaces.

Thread-safe; suitable for tests and single-process deployments.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Mapping, Optional

from .exceptions import ConflictError, NotFoundError
from .interfaces import (
    AuditSink,
    AuthenticationProvider,
    HierarchyStore,
    MembershipStore,
    PermissionMatrixStore,
)
from .permissions.constants import EntityType
from .permissions.departments import OrganizationTree
from .permissions.hierarchy import HierarchySnapshot
from .permissions.models import AuditEvent, Membership, PermissionMatrixEntry, UserContext

logger = logging.getLogger(__name__)


# ── Authentication ──────────────────────────────────────────────


def extract_bearer_token(metadata: Mapping[str, str]) -> str:
    """Token from ``x-access-token`` or ``authorization: Bearer ...``; ``""`` if absent."""
    token = metadata.get("x-access-token", "").strip()
    if not token:
        auth = metadata.get("authorization", "")
        if auth.startswith("Bearer "):
            token = auth[7:].strip()
    return token


class InMemoryAuthenticationProvider(AuthenticationProvider):
    """Maps opaque access tokens to pre-registered user contexts."""

    def __init__(self) -> None:
        self._users: dict[str, UserContext] = {}
        self._lock = threading.Lock()

    def register(self, token: str, user: UserContext) -> None:
        with self._lock:
            self._users[token] = user

    def revoke(self, token: str) -> None:
        with self._lock:
            self._users.pop(token, None)

    def authenticate(self, metadata: Mapping[str, str]) -> Optional[UserContext]:
        token = extract_bearer_token(metadata)
        if not token:
            return None
        with self._lock:
            return self._users.get(token)


# ── Memberships ─────────────────────────────────────────────────


class InMemoryMembershipStore(MembershipStore):
    def __init__(self) -> None:
        self._memberships: dict[str, list[Membership]] = {}
        self._lock = threading.Lock()

    def add(self, membership: Membership) -> None:
        with self._lock:
            current = self._memberships.setdefault(membership.subject_id, [])
            if membership not in current:
                current.append(membership)

    def remove(self, membership: Membership) -> None:
        with self._lock:
            current = self._memberships.get(membership.subject_id, [])
            if membership in current:
                current.remove(membership)

    def memberships_for(self, user_id: str) -> list[Membership]:
        with self._lock:
            return list(self._memberships.get(user_id, ()))


# ── Permission matrix ───────────────────────────────────────────


class InMemoryPermissionMatrixStore(PermissionMatrixStore):
    """Matrix rows keyed by ``(entity_type, entity_id, role)`` with a version CAS."""

    def __init__(self) -> None:
        self._rows: dict[tuple[EntityType, str, str], PermissionMatrixEntry] = {}
        self._lock = threading.Lock()

    def get(self, entity_type: EntityType, entity_id: str, role: str) -> Optional[PermissionMatrixEntry]:
        with self._lock:
            return self._rows.get((entity_type, entity_id, role))

    def list_for_organization(self, organization_id: str) -> list[PermissionMatrixEntry]:
        with self._lock:
            return [row for row in self._rows.values() if row.organization_id == organization_id]

    def compare_and_set(
        self,
        entry: PermissionMatrixEntry,
        expected_version: Optional[int],
    ) -> PermissionMatrixEntry:
        with self._lock:
            current = self._rows.get(entry.key)
            current_version = current.version if current is not None else None
            if current_version != expected_version:
                raise ConflictError(
                    "Permission matrix entry was modified concurrently; refetch and retry",
                    expected_version=expected_version,
                    current_version=current_version,
                )
            stored = replace(entry, version=1 if current is None else current.version + 1)
            self._rows[entry.key] = stored
            return stored

    def delete(self, entity_type: EntityType, entity_id: str, role: str, expected_version: int) -> PermissionMatrixEntry:
        key = (entity_type, entity_id, role)
        with self._lock:
            current = self._rows.get(key)
            if current is None:
                raise NotFoundError("Permission matrix entry not found")
            if current.version != expected_version:
                raise ConflictError(
                    "Permission matrix entry was modified concurrently; refetch and retry",
                    expected_version=expected_version,
                    current_version=current.version,
                )
            del self._rows[key]
            return current


# ── Hierarchy ───────────────────────────────────────────────────


class InMemoryHierarchyStore(HierarchyStore):
    """Builds snapshots from registered organization trees and a matrix store."""

    def __init__(self, matrix: PermissionMatrixStore) -> None:
        self._matrix = matrix
        self._trees: dict[str, OrganizationTree] = {}
        self._lock = threading.Lock()

    def add_tree(self, tree: OrganizationTree) -> None:
        with self._lock:
            self._trees[tree.organization.id] = tree

    def remove_tree(self, organization_id: str) -> None:
        with self._lock:
            self._trees.pop(organization_id, None)

    def tree(self, organization_id: str) -> OrganizationTree:
        with self._lock:
            tree = self._trees.get(organization_id)
        if tree is None:
            raise NotFoundError("Organization not found", organization_id=organization_id)
        return tree

    def load_snapshot(self, organization_id: str) -> HierarchySnapshot:
        tree = self.tree(organization_id)
        return tree.snapshot(self._matrix.list_for_organization(organization_id))


# ── Audit ───────────────────────────────────────────────────────


class InMemoryAuditSink(AuditSink):
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []
        self._lock = threading.Lock()

    def record(self, event: AuditEvent) -> None:
        with self._lock:
            self.events.append(event)

    def events_for(self, actor: str) -> list[AuditEvent]:
        with self._lock:
            return [e for e in self.events if e.actor == actor]


class LoggingAuditSink(AuditSink):
    """Writes audit records to a dedicated logger (``authzcore.audit.trail`` by default)."""

    def __init__(self, logger_name: str = "authzcore.audit.trail") -> None:
        self._logger = logging.getLogger(logger_name)

    def record(self, event: AuditEvent) -> None:
        decision = event.decision
        self._logger.info(
            "%s %s:%s %s",
            event.actor,
            event.resource.value,
            event.action.value,
            "allowed" if decision.is_allowed else "denied",
            extra={
                "actor_id": event.actor,
                "organization_id": event.target.organization_id if event.target else None,
                "denial_code": decision.code.value if decision.code else None,
                "audit_timestamp": event.timestamp.isoformat(),
            },
        )


__all__ = [
    "InMemoryAuditSink",
    "InMemoryAuthenticationProvider",
    "InMemoryHierarchyStore",
    "InMemoryMembershipStore",
    "InMemoryPermissionMatrixStore",
    "LoggingAuditSink",
    "extract_bearer_token",
]
