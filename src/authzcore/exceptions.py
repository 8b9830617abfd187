"""Unified exception hierarchy for authzcore.

All engine errors inherit from AuthzError. This module provides:
- Base exception hierarchy with stable error codes
- gRPC status mapping for errors and for denial codes
- gRPC error handler decorator (unary)

Propagation policy:
    ValidationError / NotFoundError  → never escape ``decide()``; mapped to
                                       ``Denied{resolution_error}``.
    ConflictError                    → only from the permission-matrix write path.
    BackendUnavailableError          → fail-closed ``Denied`` plus an alert log.

Usage:
    from authzcore.exceptions import AuthzError, ConflictError, grpc_error_handler
"""

from __future__ import annotations

import functools
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .permissions.models import PermissionDecision

__all__ = [
    # Base hierarchy
    "AuthzError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "BackendUnavailableError",
    "ConfigurationError",
    "PermissionDeniedError",
    # gRPC helpers
    "denial_status_code",
    "get_grpc_status_code",
    "grpc_error_handler",
]

logger = logging.getLogger(__name__)


# ---- Exception Hierarchy ----------------------------------------------------


class AuthzError(Exception):
    """Base exception for the authorization engine.

    Attributes:
        code: Stable error code string for protocol mapping (e.g. "CONFLICT").
        message: Human-readable error description. Never contains store internals.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ValidationError(AuthzError):
    """Malformed input, e.g. a team-visible target without a team id."""

    code: str = "VALIDATION_ERROR"
    message: str = "Invalid authorization input"


class NotFoundError(AuthzError):
    """Organization, department or team referenced by a target does not exist."""

    code: str = "NOT_FOUND"
    message: str = "Referenced entity does not exist"


class ConflictError(AuthzError):
    """Optimistic-lock failure on a permission-matrix write.

    The writer must refetch the entry and retry with the fresh version.
    """

    code: str = "CONFLICT"
    message: str = "Entry was modified concurrently"


class BackendUnavailableError(AuthzError):
    """Backing store or cache unavailable beyond the staleness ceiling."""

    code: str = "SYSTEM_ERROR"
    message: str = "Authorization data unavailable"


class ConfigurationError(AuthzError):
    """Invalid or inconsistent engine configuration."""

    code: str = "CONFIGURATION_ERROR"


class PermissionDeniedError(AuthzError):
    """Raised by ``AuthorizationGuard.require`` for a denied decision.

    Attributes:
        decision: The denied PermissionDecision; ``decision.code`` is the
            client-visible denial code.
    """

    code: str = "PERMISSION_DENIED"
    message: str = "Permission denied"

    def __init__(self, decision: PermissionDecision, **kwargs: Any) -> None:
        self.decision = decision
        denial = decision.code.value if decision.code else "denied"
        super().__init__(decision.reason or self.message, denial_code=denial, **kwargs)


# ---- gRPC Error Handling Utilities ------------------------------------------


def get_grpc_status_code(error: AuthzError) -> Any:
    """Map AuthzError to gRPC status code.

    Import grpc locally to avoid hard dependency at module level.
    """
    import grpc

    if isinstance(error, PermissionDeniedError) and error.decision.code is not None:
        return denial_status_code(error.decision.code.value)

    error_to_status = {
        "VALIDATION_ERROR": grpc.StatusCode.INVALID_ARGUMENT,
        "NOT_FOUND": grpc.StatusCode.NOT_FOUND,
        "CONFLICT": grpc.StatusCode.ABORTED,
        "SYSTEM_ERROR": grpc.StatusCode.UNAVAILABLE,
        "CONFIGURATION_ERROR": grpc.StatusCode.FAILED_PRECONDITION,
        "PERMISSION_DENIED": grpc.StatusCode.PERMISSION_DENIED,
    }
    return error_to_status.get(error.code, grpc.StatusCode.INTERNAL)


def denial_status_code(denial_code: str) -> Any:
    """Map a ``DenialCode`` value to the gRPC status a caller should abort with."""
    import grpc

    denial_to_status = {
        "insufficient_role": grpc.StatusCode.PERMISSION_DENIED,
        "subscription_tier_too_low": grpc.StatusCode.PERMISSION_DENIED,
        "out_of_scope": grpc.StatusCode.PERMISSION_DENIED,
        "quota_exceeded": grpc.StatusCode.RESOURCE_EXHAUSTED,
        "resolution_error": grpc.StatusCode.UNAVAILABLE,
    }
    return denial_to_status.get(denial_code, grpc.StatusCode.PERMISSION_DENIED)


def grpc_error_handler(method):
    """Decorator for unary gRPC service methods with proper error handling.

    Catches AuthzError and sets appropriate gRPC status codes. Denials raised
    by ``AuthorizationGuard.require`` carry their denial code in the
    ``denial-code`` trailing metadata entry.

    Usage:
        @grpc_error_handler
        async def UpdateTask(self, request, context):
            guard.require(user, Resource.TASK, Action.UPDATE, target)
            ...
    """

    @functools.wraps(method)
    async def wrapper(self, request, context):
        try:
            return await method(self, request, context)
        except AuthzError as e:
            status_code = get_grpc_status_code(e)
            error_message = f"[{e.code}] {e.message}"

            logger.error(
                "%s failed: %s",
                method.__name__,
                error_message,
                extra={
                    "error_code": e.code,
                    "error_details": e.details,
                },
            )

            metadata = [("error-code", e.code)]
            if isinstance(e, PermissionDeniedError):
                metadata.append(("denial-code", e.details.get("denial_code", "")))
            context.set_trailing_metadata(metadata)
            await context.abort(status_code, error_message)
            return  # Explicit return: no response after abort

        except Exception as e:
            import grpc

            logger.exception("%s unexpected error: %s", method.__name__, e)
            await context.abort(grpc.StatusCode.INTERNAL, "Unexpected internal error")
            return

    return wrapper
