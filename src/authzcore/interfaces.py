"""Contracts for the engine's external collaborators.

The engine never talks to a database or an identity provider directly; it
consumes these interfaces. ``authzcore.stores`` holds in-memory
implementations used by tests and single-process deployments.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping, Optional

from .permissions.constants import EntityType
from .permissions.hierarchy import HierarchySnapshot
from .permissions.models import AuditEvent, Membership, PermissionMatrixEntry, UserContext


class AuthenticationProvider(ABC):
    """Turns validated identity claims into a ``UserContext``.

    Token validation happens here, never in the engine.
    """

    @abstractmethod
    def authenticate(self, metadata: Mapping[str, str]) -> Optional[UserContext]:
        """Return the caller's context, or None when no valid identity is present."""
        raise NotImplementedError


class MembershipStore(ABC):
    @abstractmethod
    def memberships_for(self, user_id: str) -> list[Membership]:
        raise NotImplementedError


class HierarchyStore(ABC):
    @abstractmethod
    def load_snapshot(self, organization_id: str) -> HierarchySnapshot:
        """Materialize one organization's tree and matrix rows.

        Raises:
            NotFoundError: the organization does not exist.
            BackendUnavailableError: the backing store cannot be reached.
        """
        raise NotImplementedError


class PermissionMatrixStore(ABC):
    """Versioned storage of permission-matrix rows."""

    @abstractmethod
    def get(self, entity_type: EntityType, entity_id: str, role: str) -> Optional[PermissionMatrixEntry]:
        raise NotImplementedError

    @abstractmethod
    def list_for_organization(self, organization_id: str) -> list[PermissionMatrixEntry]:
        raise NotImplementedError

    @abstractmethod
    def compare_and_set(
        self,
        entry: PermissionMatrixEntry,
        expected_version: Optional[int],
    ) -> PermissionMatrixEntry:
        """Atomically store ``entry`` if the stored version equals ``expected_version``.

        ``expected_version=None`` means the row must not exist yet. The stored
        row gets version ``expected_version + 1`` (or 1 on create).

        Raises:
            ConflictError: the stored version differs.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, entity_type: EntityType, entity_id: str, role: str, expected_version: int) -> PermissionMatrixEntry:
        """Remove a row under the same optimistic lock; returns the removed row."""
        raise NotImplementedError


class AuditSink(ABC):
    """Receives decision records. At least once, monotonic per actor."""

    @abstractmethod
    def record(self, event: AuditEvent) -> None:
        raise NotImplementedError


__all__ = [
    "AuditSink",
    "AuthenticationProvider",
    "HierarchyStore",
    "MembershipStore",
    "PermissionMatrixStore",
]
