"""Logging utilities for the authorization engine.

This module provides:
- Logging configuration from EngineConfig
- Safe preview utilities for request data
- Secret redaction (tokens and keys must never reach decision logs)
- Structured decision logging with actor / request / organization context
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from .config import EngineConfig, LogLevel
from .permissions.models import PermissionDecision, UserContext

# Patterns for detecting secrets (common patterns to redact)
SECRET_PATTERNS = [
    r'(?i)(?:password|passwd|pwd|secret|token|api[_-]?key|auth[_-]?token)\s*[:=]\s*["\']?([^"\'\s]+)',
    r'(?i)(?:bearer|basic)\s+([a-zA-Z0-9+/=._-]+)',
    r'(?i)(?:sk-|pk-)[a-zA-Z0-9]{32,}',
    r'(?i)(?:x-api-key|x-auth-token|authorization)\s*[:=]\s*["\']?([^"\'\s]+)',
    r'[a-f0-9]{32,}',  # long hex strings (hashes or keys)
]

# Context fields the formatter lifts out of ``extra``
CONTEXT_FIELDS = ("actor_id", "request_id", "organization_id", "denial_code")

_RESERVED_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName", "relativeCreated",
        "thread", "threadName", "taskName", "exc_info", "exc_text", "stack_info",
    }
)


def safe_preview(value: Any, limit: int = 240) -> str:
    """Single-line, length-bounded preview of a value for logging.

    Args:
        value: The value to preview (any type)
        limit: Maximum length of the preview (default: 240)

    Returns:
        A truncated string representation; ``""`` for None.
    """
    if value is None:
        return ""

    if isinstance(value, str):
        s = value
    elif isinstance(value, (dict, list, tuple)):
        try:
            s = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            s = str(value)
    else:
        s = str(value)

    s = " ".join(s.split())
    if len(s) > limit:
        return s[: limit - 1] + "…"
    return s


def redact_secrets(text: str, replacement: str = "[REDACTED]") -> str:
    """Replace token, key and password patterns in ``text``.

    Non-string input is returned unchanged.
    """
    if not isinstance(text, str):
        return text

    result = text
    for pattern in SECRET_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE | re.DOTALL)
    return result


def safe_log_value(value: Any, limit: int = 240, redact: bool = True) -> str:
    """``safe_preview`` plus optional ``redact_secrets``: use for any caller-supplied value."""
    preview = safe_preview(value, limit=limit)
    if redact:
        preview = redact_secrets(preview)
    return preview


class DecisionFormatter(logging.Formatter):
    """Formatter for structured decision logs.

    Lifts ``actor_id``, ``request_id``, ``organization_id`` and
    ``denial_code`` out of the record, renders JSON or plain text, and
    redacts secrets from the message and from every extra field.
    """

    def __init__(
        self,
        json_format: bool = True,
        redact_secrets: bool = True,
        service_name: Optional[str] = None,
        *args: Any,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.json_format = json_format
        self.redact_secrets = redact_secrets
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service_name:
            log_data["service"] = self.service_name

        context = {}
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value:
                context[key] = str(value)
        log_data.update(context)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in CONTEXT_FIELDS or key in log_data:
                continue
            log_data[key] = safe_log_value(value, redact=self.redact_secrets)

        if self.redact_secrets:
            log_data["message"] = redact_secrets(log_data["message"])

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [
            f"[{log_data['timestamp']}]",
            log_data["level"],
            log_data["logger"],
        ]
        parts.extend(f"{key}={value}" for key, value in context.items())
        parts.append(f": {log_data['message']}")
        return " ".join(parts)


class DecisionLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps actor and request context on every record.

    Accepts ``user=UserContext`` and ``decision=PermissionDecision`` keyword
    arguments on each call in addition to the bound fields.

    Usage:
        logger = get_decision_logger(__name__, request_id="req-1")
        logger.info("Request denied", user=user, decision=decision)
    """

    def __init__(
        self,
        logger: logging.Logger,
        actor_id: Optional[str] = None,
        request_id: Optional[str] = None,
        organization_id: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.actor_id = actor_id
        self.request_id = request_id
        self.organization_id = organization_id

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        actor_id = kwargs.pop("actor_id", self.actor_id)
        request_id = kwargs.pop("request_id", self.request_id)
        organization_id = kwargs.pop("organization_id", self.organization_id)

        user = kwargs.pop("user", None)
        if isinstance(user, UserContext):
            actor_id = actor_id or user.user_id

        decision = kwargs.pop("decision", None)
        extra = kwargs.get("extra", {})
        if isinstance(decision, PermissionDecision) and decision.code is not None:
            extra["denial_code"] = decision.code.value

        if actor_id:
            extra["actor_id"] = actor_id
        if request_id:
            extra["request_id"] = request_id
        if organization_id:
            extra["organization_id"] = organization_id
        kwargs["extra"] = extra

        return msg, kwargs


def setup_logging(
    config: Optional[EngineConfig] = None,
    json_format: Optional[bool] = None,
    redact_secrets: bool = True,
) -> None:
    """Configure the root logger for a service embedding the engine.

    Args:
        config: EngineConfig instance (if None, loads from environment)
        json_format: Override ``config.log_json``
        redact_secrets: Whether to redact secrets (default: True)
    """
    if config is None:
        from .config import load_engine_config_from_env

        config = load_engine_config_from_env()

    level_map = {
        LogLevel.DEBUG: logging.DEBUG,
        LogLevel.INFO: logging.INFO,
        LogLevel.WARNING: logging.WARNING,
        LogLevel.ERROR: logging.ERROR,
        LogLevel.CRITICAL: logging.CRITICAL,
    }
    log_level = level_map.get(LogLevel(config.log_level), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Replace any handlers installed earlier
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        DecisionFormatter(
            json_format=config.log_json if json_format is None else json_format,
            redact_secrets=redact_secrets,
            service_name=config.service_name,
        )
    )
    root_logger.addHandler(console_handler)


def get_decision_logger(
    name: str,
    actor_id: Optional[str] = None,
    request_id: Optional[str] = None,
    organization_id: Optional[str] = None,
) -> DecisionLoggerAdapter:
    """Get a logger adapter bound to one request's context.

    Example:
        logger = get_decision_logger(__name__, request_id=request_id)
        logger.info("Authorized", user=user)
    """
    logger = logging.getLogger(name)
    return DecisionLoggerAdapter(
        logger,
        actor_id=actor_id,
        request_id=request_id,
        organization_id=organization_id,
    )


__all__ = [
    "safe_preview",
    "redact_secrets",
    "safe_log_value",
    "DecisionFormatter",
    "DecisionLoggerAdapter",
    "setup_logging",
    "get_decision_logger",
]
