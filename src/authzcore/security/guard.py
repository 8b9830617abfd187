"""Authorization guard: the caller side of ``PermissionEngine.decide``.

``AuthorizationGuard`` performs the steps the pure engine cannot:
1. materializes the caller's memberships and the target organization's
   hierarchy snapshot through the read-through caches,
2. calls ``decide()``,
3. records the decision to the audit sink (synchronously for mutating
   actions) before handing it back.

Any failure to materialize inputs ends in ``Denied{resolution_error}``, never
in an allow.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..audit import AuditRecorder
from ..cache import HierarchyCache, MembershipCache
from ..exceptions import BackendUnavailableError, NotFoundError, PermissionDeniedError
from ..logging import get_decision_logger
from ..permissions.constants import Action, DenialCode, Resource, RoleId
from ..permissions.engine import PermissionEngine
from ..permissions.hierarchy import HierarchySnapshot
from ..permissions.models import PermissionDecision, TargetRef, UserContext

logger = logging.getLogger(__name__)


class AuthorizationGuard:
    """Materialize → decide → audit, once per request.

    Args:
        engine: The decision engine.
        hierarchy: Per-organization snapshot cache.
        memberships: Per-user membership cache.
        audit: Audit recorder; None disables auditing (tests, dry runs).
    """

    def __init__(
        self,
        engine: PermissionEngine,
        hierarchy: HierarchyCache,
        memberships: MembershipCache,
        audit: AuditRecorder | None = None,
    ) -> None:
        self.engine = engine
        self._hierarchy = hierarchy
        self._memberships = memberships
        self._audit = audit

    def _materialize(
        self, user: UserContext, target: TargetRef | None
    ) -> tuple[UserContext, Optional[HierarchySnapshot]]:
        user = user.with_memberships(self._memberships.memberships(user.user_id))
        snapshot = None
        if target is not None and target.organization_id:
            snapshot = self._hierarchy.snapshot(target.organization_id)
        return user, snapshot

    def authorize(
        self,
        user: UserContext,
        resource: Resource,
        action: Action,
        target: TargetRef | None = None,
        *,
        request_id: str | None = None,
    ) -> PermissionDecision:
        """Decide and audit one request.

        Raises:
            BackendUnavailableError: a mutating action's audit record could
                not be written; the caller must not proceed.
        """
        log = get_decision_logger(
            __name__,
            actor_id=user.user_id,
            request_id=request_id,
            organization_id=target.organization_id if target else None,
        )

        if user.role == RoleId.SYSTEM_ADMIN:
            decision = self.engine.decide(user, resource, action, target)
        else:
            try:
                materialized, snapshot = self._materialize(user, target)
            except NotFoundError:
                decision = PermissionDecision.denied(
                    DenialCode.RESOLUTION_ERROR, "Target could not be resolved"
                )
            except BackendUnavailableError as e:
                log.error(
                    "Authorization inputs unavailable, denying %s:%s: %s",
                    resource.value,
                    action.value,
                    e.message,
                    extra={"alert": True},
                )
                decision = PermissionDecision.denied(
                    DenialCode.RESOLUTION_ERROR, "Authorization data is temporarily unavailable"
                )
            else:
                decision = self.engine.decide(materialized, resource, action, target, snapshot=snapshot)

        if decision.is_denied:
            log.info("Denied %s:%s: %s", resource.value, action.value, decision.reason, decision=decision)

        if self._audit is not None:
            self._audit.record_decision(user, resource, action, decision, target)
        return decision

    def require(
        self,
        user: UserContext,
        resource: Resource,
        action: Action,
        target: TargetRef | None = None,
        *,
        request_id: str | None = None,
    ) -> PermissionDecision:
        """Like :meth:`authorize`, but raise on denial.

        Raises:
            PermissionDeniedError: the decision is a denial.
        """
        decision = self.authorize(user, resource, action, target, request_id=request_id)
        if decision.is_denied:
            raise PermissionDeniedError(decision)
        return decision


__all__ = ["AuthorizationGuard"]
