"""gRPC server interceptor enforcing engine decisions per RPC.

Provides:
- ``EnforcementMode`` — three-state toggle: off / warn / enforce.
- ``AuthorizationInterceptor`` — maps each RPC to a (resource, action) pair,
  authenticates the caller and asks the guard for a list-mode decision.
- ``_extract_rpc_name``, ``_should_skip`` — helper utilities.

Target-level checks (a specific task, a specific team) need the request
body, so they belong in the handler via ``AuthorizationGuard.require``.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Mapping

import grpc

from ..exceptions import AuthzError, BackendUnavailableError, denial_status_code
from ..interfaces import AuthenticationProvider
from ..permissions.constants import Action, Resource
from ..permissions.models import UserContext
from .guard import AuthorizationGuard

logger = logging.getLogger(__name__)


# ── Enforcement Mode ────────────────────────────────────────────


class EnforcementMode(str, Enum):
    """Three-state enforcement toggle.

    - ``off``     — no checks, only caller-identity logging.
    - ``warn``    — decide, log denials as WARNING, but allow through.
    - ``enforce`` — decide, abort on denial (production).

    Set via env ``SECURITY_ENFORCEMENT=off|warn|enforce``.
    """

    OFF = "off"
    WARN = "warn"
    ENFORCE = "enforce"

    @classmethod
    def from_env(cls) -> EnforcementMode:
        """Read from ``SECURITY_ENFORCEMENT`` env var (default: enforce)."""
        import os  # Localized: the interceptor may be built before EngineConfig is loaded

        raw = os.environ.get("SECURITY_ENFORCEMENT", "enforce").strip().lower()
        try:
            return cls(raw)
        except ValueError:
            logger.warning(
                "Unknown SECURITY_ENFORCEMENT=%r, defaulting to 'enforce'",
                raw,
            )
            return cls.ENFORCE


# Method prefixes that bypass authorization
_SKIP_PREFIXES = (
    "grpc.health.v1",
    "grpc.reflection.v1",
)


# ── Helpers ──────────────────────────────────────────────────────


def _extract_rpc_name(full_method: str) -> str:
    """``/tasks.TaskService/ListTasks`` → ``ListTasks``"""
    return full_method.rsplit("/", 1)[-1] if "/" in full_method else full_method


def _should_skip(method: str) -> bool:
    return any(prefix in method for prefix in _SKIP_PREFIXES)


# ── Interceptor ──────────────────────────────────────────────────


class AuthorizationInterceptor(grpc.aio.ServerInterceptor):
    """Server interceptor that runs every mapped RPC through the guard.

    Unmapped RPCs are denied (fail-closed). A denial aborts with the status
    derived from its denial code and a ``denial-code`` trailing metadata
    entry, so clients can branch on it (e.g. offer an upgrade on
    ``subscription_tier_too_low``).

    Args:
        guard: Authorization guard (materialize → decide → audit).
        authenticator: Turns call metadata into a ``UserContext``.
        rpc_map: RPC name → (resource, action).
        service_name: Label for log messages.
        enforcement: off / warn / enforce; defaults to ``SECURITY_ENFORCEMENT``.

    Usage::

        interceptor = AuthorizationInterceptor(
            guard,
            authenticator,
            rpc_map={"ListTasks": (Resource.TASK, Action.LIST)},
            service_name="Tasks",
        )
        server = grpc.aio.server(interceptors=[interceptor])
    """

    def __init__(
        self,
        guard: AuthorizationGuard,
        authenticator: AuthenticationProvider,
        rpc_map: Mapping[str, tuple[Resource, Action]],
        *,
        service_name: str = "Service",
        enforcement: EnforcementMode | None = None,
    ) -> None:
        self._guard = guard
        self._authenticator = authenticator
        self._rpc_map = dict(rpc_map)
        self._service_name = service_name
        self._mode = enforcement if enforcement is not None else EnforcementMode.from_env()

        if self._mode != EnforcementMode.ENFORCE:
            logger.warning("%s authorization mode: %s", self._service_name, self._mode.value)

    def _authenticate(self, metadata: dict[str, str]) -> UserContext | None:
        try:
            return self._authenticator.authenticate(metadata)
        except AuthzError as e:
            logger.warning("%s authentication failed: %s", self._service_name, e.message)
            return None

    async def intercept_service(
        self,
        continuation: Any,
        handler_call_details: grpc.HandlerCallDetails,
    ) -> grpc.RpcMethodHandler:
        """Authorize the call before it reaches its handler."""
        method = handler_call_details.method or ""

        if _should_skip(method):
            return await continuation(handler_call_details)

        rpc_name = _extract_rpc_name(method)
        metadata = dict(handler_call_details.invocation_metadata or [])
        user = self._authenticate(metadata)

        logger.info(
            "%s RPC %s | caller=%s",
            self._service_name,
            rpc_name,
            user.user_id if user else "anonymous",
        )

        if self._mode == EnforcementMode.OFF:
            return await continuation(handler_call_details)

        deny_reason: str | None = None
        deny_status: grpc.StatusCode = grpc.StatusCode.PERMISSION_DENIED
        denial_code = ""

        mapping = self._rpc_map.get(rpc_name)
        if mapping is None:
            deny_reason = "RPC not mapped to a permission"
        elif user is None:
            deny_reason = "no valid identity"
            deny_status = grpc.StatusCode.UNAUTHENTICATED
        else:
            resource, action = mapping
            try:
                decision = await asyncio.to_thread(self._guard.authorize, user, resource, action)
            except BackendUnavailableError as e:
                deny_reason = e.message
                deny_status = grpc.StatusCode.UNAVAILABLE
            else:
                if decision.is_denied and decision.code is not None:
                    denial_code = decision.code.value
                    deny_reason = decision.reason
                    deny_status = denial_status_code(denial_code)

        if deny_reason:
            if self._mode == EnforcementMode.WARN:
                logger.warning(
                    "%s WARN_DENIED '%s': %s (would block in enforce mode)",
                    self._service_name,
                    rpc_name,
                    deny_reason,
                )
                return await continuation(handler_call_details)

            logger.warning("%s DENIED '%s': %s", self._service_name, rpc_name, deny_reason)

            _deny_msg = f"{self._service_name}: {rpc_name} denied: {deny_reason}"
            _deny_status = deny_status
            _metadata = (("denial-code", denial_code),) if denial_code else ()

            async def _denied(request, context):
                if _metadata:
                    context.set_trailing_metadata(_metadata)
                await context.abort(_deny_status, _deny_msg)

            return grpc.unary_unary_rpc_method_handler(_denied)

        logger.debug("%s ALLOWED '%s' for %s", self._service_name, rpc_name, user.user_id if user else "?")
        return await continuation(handler_call_details)


__all__ = [
    "AuthorizationInterceptor",
    "EnforcementMode",
    "_extract_rpc_name",
    "_should_skip",
]
