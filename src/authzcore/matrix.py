"""Permission-matrix write path.

Writers supply the version they read. The store compares and sets under its
lock, so two writers racing from the same version cannot both win: the second
gets ``ConflictError`` and must refetch. A successful write invalidates the
organization's cached snapshot before returning, so the writer's next
decision already sees it.
"""

from __future__ import annotations

import logging
from typing import Mapping, Optional

from .cache import HierarchyCache
from .config import HierarchyConfig
from .exceptions import ValidationError
from .interfaces import PermissionMatrixStore
from .permissions.constants import Action, EntityType, Resource
from .permissions.models import Override, PermissionKey, PermissionMatrixEntry

logger = logging.getLogger(__name__)


def _validate_permissions(permissions: Mapping[PermissionKey, Override]) -> None:
    for key, rule in permissions.items():
        if not (
            isinstance(key, tuple)
            and len(key) == 2
            and isinstance(key[0], Resource)
            and isinstance(key[1], Action)
        ):
            raise ValidationError(f"Invalid permission key: {key!r}")
        if not isinstance(rule, Override):
            raise ValidationError(f"Invalid override for {key[0].value}:{key[1].value}")


class PermissionMatrixService:
    """Versioned writes to the permission matrix with synchronous invalidation.

    Args:
        store: Matrix row storage.
        cache: Hierarchy cache to invalidate after each write.
        config: Supplies the default ``allow_child_override``.
    """

    def __init__(
        self,
        store: PermissionMatrixStore,
        cache: HierarchyCache | None = None,
        *,
        config: HierarchyConfig | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._config = config or HierarchyConfig()

    def get(self, entity_type: EntityType, entity_id: str, role: str) -> Optional[PermissionMatrixEntry]:
        return self._store.get(entity_type, entity_id, role)

    def upsert(
        self,
        *,
        entity_type: EntityType,
        entity_id: str,
        organization_id: str,
        role: str,
        permissions: Mapping[PermissionKey, Override],
        expected_version: Optional[int],
        allow_child_override: Optional[bool] = None,
    ) -> PermissionMatrixEntry:
        """Create (``expected_version=None``) or replace a matrix row.

        Returns:
            The stored row with its new version.

        Raises:
            ValidationError: malformed input.
            ConflictError: the row changed since ``expected_version`` was read.
        """
        if not entity_id or not organization_id or not role:
            raise ValidationError("entity_id, organization_id and role are required")
        if entity_type == EntityType.ORGANIZATION and entity_id != organization_id:
            raise ValidationError("Organization entries must use the organization id as entity_id")
        _validate_permissions(permissions)

        if allow_child_override is None:
            allow_child_override = self._config.default_allow_child_override
        entry = PermissionMatrixEntry(
            entity_type=entity_type,
            entity_id=entity_id,
            organization_id=organization_id,
            role=role,
            permissions=permissions,
            version=expected_version or 0,
            allow_child_override=allow_child_override,
        )
        stored = self._store.compare_and_set(entry, expected_version)
        self._invalidate(organization_id)
        logger.info(
            "Permission matrix %s %s role=%s now at version %d",
            entity_type.value,
            entity_id,
            role,
            stored.version,
        )
        return stored

    def set_rule(
        self,
        *,
        entity_type: EntityType,
        entity_id: str,
        organization_id: str,
        role: str,
        resource: Resource,
        action: Action,
        rule: Optional[Override],
        expected_version: Optional[int],
    ) -> PermissionMatrixEntry:
        """Change one (resource, action) rule of a row, keeping the others.

        ``rule=None`` removes the rule. Same optimistic lock as ``upsert``.
        """
        current = self._store.get(entity_type, entity_id, role)
        permissions = dict(current.permissions) if current is not None else {}
        if rule is None:
            permissions.pop((resource, action), None)
        else:
            permissions[(resource, action)] = rule
        return self.upsert(
            entity_type=entity_type,
            entity_id=entity_id,
            organization_id=organization_id,
            role=role,
            permissions=permissions,
            expected_version=expected_version,
            allow_child_override=current.allow_child_override if current is not None else None,
        )

    def delete(
        self,
        entity_type: EntityType,
        entity_id: str,
        role: str,
        *,
        expected_version: int,
    ) -> PermissionMatrixEntry:
        """Remove a row under the optimistic lock; returns the removed row."""
        removed = self._store.delete(entity_type, entity_id, role, expected_version)
        self._invalidate(removed.organization_id)
        logger.info("Permission matrix %s %s role=%s deleted", entity_type.value, entity_id, role)
        return removed

    def purge_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
        organization_id: str,
    ) -> list[PermissionMatrixEntry]:
        """Remove every row of a deleted department or team; returns the removed rows.

        Each row goes through the optimistic lock at the version just read; a
        concurrent writer surfaces as ``ConflictError``.
        """
        removed = []
        for row in self._store.list_for_organization(organization_id):
            if row.entity_type != entity_type or row.entity_id != entity_id:
                continue
            removed.append(self._store.delete(entity_type, entity_id, row.role, row.version))
        if removed:
            self._invalidate(organization_id)
            logger.info(
                "Permission matrix %s %s purged: %d rows",
                entity_type.value,
                entity_id,
                len(removed),
            )
        return removed

    def _invalidate(self, organization_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(organization_id)


__all__ = ["PermissionMatrixService"]
