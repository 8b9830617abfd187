from .permissions import (
    Action,
    DenialCode,
    Membership,
    PermissionDecision,
    PermissionEngine,
    Resource,
    Scope,
    SubscriptionTier,
    TargetRef,
    UserContext,
    Visibility,
)
from .config import EngineConfig, LogLevel, load_engine_config_from_env
from .exceptions import (
    AuthzError,
    BackendUnavailableError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .logging import (
    safe_preview,
    redact_secrets,
    safe_log_value,
    DecisionFormatter,
    DecisionLoggerAdapter,
    setup_logging,
    get_decision_logger,
)
from .matrix import PermissionMatrixService
from .security import AuthorizationGuard, build_authorization_guard

__all__ = [
    'Action',
    'DenialCode',
    'Membership',
    'PermissionDecision',
    'PermissionEngine',
    'Resource',
    'Scope',
    'SubscriptionTier',
    'TargetRef',
    'UserContext',
    'Visibility',
    'EngineConfig',
    'LogLevel',
    'load_engine_config_from_env',
    'AuthzError',
    'BackendUnavailableError',
    'ConflictError',
    'NotFoundError',
    'PermissionDeniedError',
    'ValidationError',
    'safe_preview',
    'redact_secrets',
    'safe_log_value',
    'DecisionFormatter',
    'DecisionLoggerAdapter',
    'setup_logging',
    'get_decision_logger',
    'PermissionMatrixService',
    'AuthorizationGuard',
    'build_authorization_guard',
]
