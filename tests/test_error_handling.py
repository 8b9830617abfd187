"""Tests for the exception hierarchy and gRPC error mapping."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import grpc
import pytest

from authzcore.exceptions import (
    AuthzError,
    BackendUnavailableError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    denial_status_code,
    get_grpc_status_code,
    grpc_error_handler,
)
from authzcore.permissions import DenialCode, PermissionDecision


class TestHierarchy:
    """Tests for error codes and messages."""

    @pytest.mark.parametrize(
        "error_cls, code",
        [
            (AuthzError, "INTERNAL_ERROR"),
            (ValidationError, "VALIDATION_ERROR"),
            (NotFoundError, "NOT_FOUND"),
            (ConflictError, "CONFLICT"),
            (BackendUnavailableError, "SYSTEM_ERROR"),
            (ConfigurationError, "CONFIGURATION_ERROR"),
        ],
    )
    def test_codes(self, error_cls: type[AuthzError], code: str) -> None:
        error = error_cls()
        assert error.code == code
        assert isinstance(error, AuthzError)
        assert str(error) == error.message

    def test_details_kept(self) -> None:
        error = ConflictError("stale write", expected_version=2, current_version=3)
        assert error.message == "stale write"
        assert error.details == {"expected_version": 2, "current_version": 3}

    def test_permission_denied_carries_decision(self) -> None:
        decision = PermissionDecision.denied(DenialCode.QUOTA_EXCEEDED, "Quota exceeded: item limit reached")
        error = PermissionDeniedError(decision)
        assert error.decision is decision
        assert error.message == decision.reason
        assert error.details["denial_code"] == "quota_exceeded"


class TestStatusMapping:
    @pytest.mark.parametrize(
        "error, status",
        [
            (ValidationError(), grpc.StatusCode.INVALID_ARGUMENT),
            (NotFoundError(), grpc.StatusCode.NOT_FOUND),
            (ConflictError(), grpc.StatusCode.ABORTED),
            (BackendUnavailableError(), grpc.StatusCode.UNAVAILABLE),
            (ConfigurationError(), grpc.StatusCode.FAILED_PRECONDITION),
            (AuthzError(), grpc.StatusCode.INTERNAL),
        ],
    )
    def test_error_status(self, error: AuthzError, status: grpc.StatusCode) -> None:
        assert get_grpc_status_code(error) == status

    def test_denial_uses_denial_code(self) -> None:
        error = PermissionDeniedError(PermissionDecision.denied(DenialCode.QUOTA_EXCEEDED, "full"))
        assert get_grpc_status_code(error) == grpc.StatusCode.RESOURCE_EXHAUSTED

    @pytest.mark.parametrize(
        "code, status",
        [
            (DenialCode.INSUFFICIENT_ROLE, grpc.StatusCode.PERMISSION_DENIED),
            (DenialCode.SUBSCRIPTION_TIER_TOO_LOW, grpc.StatusCode.PERMISSION_DENIED),
            (DenialCode.OUT_OF_SCOPE, grpc.StatusCode.PERMISSION_DENIED),
            (DenialCode.QUOTA_EXCEEDED, grpc.StatusCode.RESOURCE_EXHAUSTED),
            (DenialCode.RESOLUTION_ERROR, grpc.StatusCode.UNAVAILABLE),
        ],
    )
    def test_denial_status_code(self, code: DenialCode, status: grpc.StatusCode) -> None:
        assert denial_status_code(code.value) == status


class _Service:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error

    @grpc_error_handler
    async def UpdateTask(self, request, context):
        if self.error is not None:
            raise self.error
        return "response"


def _context() -> MagicMock:
    context = MagicMock()
    context.abort = AsyncMock()
    return context


class TestGrpcErrorHandler:
    @pytest.mark.asyncio
    async def test_success_passes_response(self) -> None:
        context = _context()
        assert await _Service().UpdateTask(None, context) == "response"
        context.abort.assert_not_called()

    @pytest.mark.asyncio
    async def test_authz_error_aborts_with_mapped_status(self) -> None:
        context = _context()
        await _Service(ConflictError("stale")).UpdateTask(None, context)
        context.set_trailing_metadata.assert_called_once_with([("error-code", "CONFLICT")])
        context.abort.assert_awaited_once_with(grpc.StatusCode.ABORTED, "[CONFLICT] stale")

    @pytest.mark.asyncio
    async def test_denial_adds_denial_code(self) -> None:
        context = _context()
        denial = PermissionDecision.denied(DenialCode.OUT_OF_SCOPE, "Target is outside the team scope")
        await _Service(PermissionDeniedError(denial)).UpdateTask(None, context)
        context.set_trailing_metadata.assert_called_once_with(
            [("error-code", "PERMISSION_DENIED"), ("denial-code", "out_of_scope")]
        )
        assert context.abort.call_args[0][0] == grpc.StatusCode.PERMISSION_DENIED

    @pytest.mark.asyncio
    async def test_unexpected_error_is_internal(self) -> None:
        context = _context()
        await _Service(RuntimeError("db password=hunter2")).UpdateTask(None, context)
        context.abort.assert_awaited_once_with(grpc.StatusCode.INTERNAL, "Unexpected internal error")
