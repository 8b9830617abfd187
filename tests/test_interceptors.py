"""Tests for authzcore.security.interceptors."""

from __future__ import annotations

import logging
import os
from unittest.mock import AsyncMock, MagicMock, patch

import grpc
import pytest
from authzcore.exceptions import BackendUnavailableError
from authzcore.permissions import (
    Action,
    DenialCode,
    PermissionDecision,
    Privilege,
    Resource,
    RoleId,
    Scope,
    SubscriptionTier,
    UserContext,
)
from authzcore.security import AuthorizationInterceptor, EnforcementMode, _extract_rpc_name, _should_skip
from authzcore.stores import InMemoryAuthenticationProvider

_TEST_RPC_MAP = {
    "ListTasks": (Resource.TASK, Action.LIST),
    "ExportAuditLog": (Resource.AUDIT_LOG, Action.LIST),
}

USER = UserContext(user_id="u-1", role=RoleId.MEMBER, subscription_tier=SubscriptionTier.FREE)


def _make_handler_call_details(method: str, metadata: list | None = None):
    """Create a mock HandlerCallDetails."""
    mock = MagicMock()
    mock.method = method
    mock.invocation_metadata = metadata or []
    return mock


def _authenticator() -> InMemoryAuthenticationProvider:
    provider = InMemoryAuthenticationProvider()
    provider.register("tok-1", USER)
    return provider


_AUTH_METADATA = [("authorization", "Bearer tok-1")]
_PRIVILEGE = Privilege(name="free_task_list", subscription_tier=SubscriptionTier.FREE)


async def _continuation(details):
    return "handler"


def _interceptor(guard=None, mode: EnforcementMode = EnforcementMode.ENFORCE) -> AuthorizationInterceptor:
    if guard is None:
        guard = MagicMock()
        guard.authorize.return_value = PermissionDecision.allowed(Scope.OWN, _PRIVILEGE)
    return AuthorizationInterceptor(
        guard,
        _authenticator(),
        _TEST_RPC_MAP,
        service_name="Tasks",
        enforcement=mode,
    )


class TestHelpers:
    def test_extract_rpc_name(self):
        assert _extract_rpc_name("/tasks.TaskService/ListTasks") == "ListTasks"
        assert _extract_rpc_name("ListTasks") == "ListTasks"

    def test_should_skip(self):
        assert _should_skip("/grpc.health.v1.Health/Check")
        assert not _should_skip("/tasks.TaskService/ListTasks")


class TestEnforcementMode:
    def test_default_is_enforce(self):
        with patch.dict(os.environ, {}, clear=True):
            assert EnforcementMode.from_env() == EnforcementMode.ENFORCE

    def test_reads_env(self):
        with patch.dict(os.environ, {"SECURITY_ENFORCEMENT": " Warn "}):
            assert EnforcementMode.from_env() == EnforcementMode.WARN

    def test_unknown_value_falls_back_to_enforce(self):
        with patch.dict(os.environ, {"SECURITY_ENFORCEMENT": "maybe"}):
            assert EnforcementMode.from_env() == EnforcementMode.ENFORCE


class TestAuthorizationInterceptor:
    """Tests for the per-RPC authorization interceptor."""

    @pytest.mark.asyncio
    async def test_off_passes_through(self):
        """Mode off → no decision is made."""
        guard = MagicMock()
        interceptor = _interceptor(guard, EnforcementMode.OFF)
        details = _make_handler_call_details("/tasks.TaskService/Unmapped")
        assert await interceptor.intercept_service(_continuation, details) == "handler"
        guard.authorize.assert_not_called()

    @pytest.mark.asyncio
    async def test_health_check_skipped(self):
        interceptor = _interceptor()
        details = _make_handler_call_details("/grpc.health.v1.Health/Check")
        assert await interceptor.intercept_service(_continuation, details) == "handler"

    @pytest.mark.asyncio
    async def test_unmapped_rpc_denied(self):
        """Unmapped RPC → aborting handler (fail-closed)."""
        interceptor = _interceptor()
        details = _make_handler_call_details("/tasks.TaskService/DropAll", _AUTH_METADATA)
        result = await interceptor.intercept_service(_continuation, details)
        assert result is not None
        assert result != "handler"

    @pytest.mark.asyncio
    async def test_no_identity_unauthenticated(self):
        interceptor = _interceptor()
        details = _make_handler_call_details("/tasks.TaskService/ListTasks", [])
        result = await interceptor.intercept_service(_continuation, details)
        assert result != "handler"

        context = MagicMock()
        context.abort = AsyncMock()
        await result.unary_unary(None, context)
        assert context.abort.call_args[0][0] == grpc.StatusCode.UNAUTHENTICATED

    @pytest.mark.asyncio
    async def test_allowed_passes_through(self):
        guard = MagicMock()
        guard.authorize.return_value = PermissionDecision.allowed(Scope.OWN, _PRIVILEGE)
        interceptor = _interceptor(guard)
        details = _make_handler_call_details("/tasks.TaskService/ListTasks", _AUTH_METADATA)
        assert await interceptor.intercept_service(_continuation, details) == "handler"
        guard.authorize.assert_called_once_with(USER, Resource.TASK, Action.LIST)

    @pytest.mark.asyncio
    async def test_denied_carries_denial_code(self):
        """A tier denial aborts with PERMISSION_DENIED and a denial-code trailer."""
        guard = MagicMock()
        guard.authorize.return_value = PermissionDecision.denied(
            DenialCode.SUBSCRIPTION_TIER_TOO_LOW, "Requires enterprise"
        )
        interceptor = _interceptor(guard)
        details = _make_handler_call_details("/tasks.TaskService/ExportAuditLog", _AUTH_METADATA)
        result = await interceptor.intercept_service(_continuation, details)
        assert result != "handler"

        context = MagicMock()
        context.abort = AsyncMock()
        await result.unary_unary(None, context)
        context.set_trailing_metadata.assert_called_once_with((("denial-code", "subscription_tier_too_low"),))
        assert context.abort.call_args[0][0] == grpc.StatusCode.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_backend_unavailable(self):
        guard = MagicMock()
        guard.authorize.side_effect = BackendUnavailableError("audit sink unavailable")
        interceptor = _interceptor(guard)
        details = _make_handler_call_details("/tasks.TaskService/ListTasks", _AUTH_METADATA)
        result = await interceptor.intercept_service(_continuation, details)

        context = MagicMock()
        context.abort = AsyncMock()
        await result.unary_unary(None, context)
        assert context.abort.call_args[0][0] == grpc.StatusCode.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_warn_mode_lets_denial_through(self, caplog):
        guard = MagicMock()
        guard.authorize.return_value = PermissionDecision.denied(DenialCode.INSUFFICIENT_ROLE, "nope")
        interceptor = _interceptor(guard, EnforcementMode.WARN)
        details = _make_handler_call_details("/tasks.TaskService/ListTasks", _AUTH_METADATA)
        with caplog.at_level(logging.WARNING):
            assert await interceptor.intercept_service(_continuation, details) == "handler"
        assert "WARN_DENIED" in caplog.text
