"""Caller-side integration of the permission engine.

This package provides the pieces a service wires around ``decide()``:
1. **AuthorizationGuard** — materializes inputs, decides, audits
2. **gRPC interceptor** — per-RPC enforcement with off / warn / enforce modes

Usage (in any service)::

    from authzcore.security import build_authorization_guard, AuthorizationInterceptor

    guard = build_authorization_guard(
        config,
        hierarchy_store=hierarchy_store,
        membership_store=membership_store,
        audit_sink=audit_sink,
    )
    server = grpc.aio.server(
        interceptors=[AuthorizationInterceptor(guard, authenticator, rpc_map=RPC_MAP)]
    )

    # Target-level checks inside a handler:
    guard.require(user, Resource.TASK, Action.UPDATE, target)

Configuration (env vars)::

    SECURITY_ENFORCEMENT=enforce   # off | warn | enforce (default: enforce)
"""

from __future__ import annotations

from ..audit import AuditRecorder
from ..cache import HierarchyCache, MembershipCache
from ..config import EngineConfig
from ..interfaces import AuditSink, HierarchyStore, MembershipStore
from ..permissions.engine import PermissionEngine
from ..permissions.roles import RoleRegistry
from ..permissions.subscriptions import SubscriptionEntitlementResolver
from .guard import AuthorizationGuard
from .interceptors import (
    AuthorizationInterceptor,
    EnforcementMode,
    _extract_rpc_name,
    _should_skip,
)


def build_authorization_guard(
    config: EngineConfig | None = None,
    *,
    hierarchy_store: HierarchyStore,
    membership_store: MembershipStore,
    audit_sink: AuditSink | None = None,
    roles: RoleRegistry | None = None,
    subscriptions: SubscriptionEntitlementResolver | None = None,
) -> AuthorizationGuard:
    """Assemble engine, caches and audit recorder from one config.

    Args:
        config: Engine configuration (defaults if None).
        hierarchy_store: Source of per-organization snapshots.
        membership_store: Source of user memberships.
        audit_sink: Destination for decision records; None disables auditing.
        roles: Role registry override.
        subscriptions: Entitlement resolver override.

    Returns:
        AuthorizationGuard instance.
    """
    cfg = config or EngineConfig()
    engine = PermissionEngine(
        roles,
        subscriptions,
        max_department_depth=cfg.hierarchy.max_department_depth,
    )
    audit = AuditRecorder(audit_sink, cfg.audit) if audit_sink is not None else None
    return AuthorizationGuard(
        engine,
        HierarchyCache(hierarchy_store, cfg.cache),
        MembershipCache(membership_store, cfg.cache),
        audit,
    )


__all__ = [
    # Guard
    "AuthorizationGuard",
    "build_authorization_guard",
    # Interceptors
    "AuthorizationInterceptor",
    "EnforcementMode",
    "_extract_rpc_name",
    "_should_skip",
]
