"""Configuration contract for the authorization engine.

Pydantic-validated models for logging, cache lifetimes, hierarchy limits and
audit delivery. Every component takes its settings from these models; direct
os.environ/os.getenv usage is confined to ``load_engine_config_from_env``.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class CacheConfig(BaseModel):
    """Read-through cache lifetimes for hierarchy snapshots and memberships.

    Environment variables:
        AUTHZ_CACHE_TTL_SECONDS          — entry lifetime (30–60s)
        AUTHZ_REFRESH_TIMEOUT_MS         — bound on one backing-store fetch
        AUTHZ_STALENESS_CEILING_SECONDS  — oldest snapshot served after a failed refresh
    """

    model_config = {"extra": "forbid"}

    ttl_seconds: float = Field(
        default=45.0,
        ge=30.0,
        le=60.0,
        description="Time-to-live of a cached snapshot in seconds",
    )
    refresh_timeout_ms: int = Field(
        default=500,
        gt=0,
        description="Timeout for one refresh call to the backing store",
    )
    staleness_ceiling_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Hard limit on snapshot age when a refresh fails (fail closed beyond it)",
    )

    @model_validator(mode="after")
    def validate_ceiling(self) -> CacheConfig:
        """The staleness ceiling can never be shorter than the TTL."""
        if self.staleness_ceiling_seconds < self.ttl_seconds:
            raise ValueError("staleness_ceiling_seconds must be >= ttl_seconds")
        return self

    @property
    def refresh_timeout_seconds(self) -> float:
        return self.refresh_timeout_ms / 1000.0


class HierarchyConfig(BaseModel):
    """Organization hierarchy limits and matrix defaults."""

    model_config = {"extra": "forbid"}

    max_department_depth: int = Field(
        default=32,
        ge=1,
        le=32,
        description="Maximum number of departments on a root-to-leaf path",
    )
    default_allow_child_override: bool = Field(
        default=True,
        description="allow_child_override for new matrix entries that do not set it",
    )


class AuditConfig(BaseModel):
    """Best-effort audit delivery for read actions."""

    model_config = {"extra": "forbid"}

    flush_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="How long a mutating-action record waits for queued read records",
    )


class EngineConfig(BaseModel):
    """Top-level configuration for an authzcore deployment."""

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )

    # Service identification
    service_name: Optional[str] = Field(
        default=None,
        description="Service name stamped on log records (e.g. 'tasks-api')",
    )

    cache: CacheConfig = Field(default_factory=CacheConfig)
    hierarchy: HierarchyConfig = Field(default_factory=HierarchyConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",
    }


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def load_engine_config_from_env() -> EngineConfig:
    """Load engine configuration from environment variables.

    This is the ONLY place where os.getenv is allowed.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - SERVICE_NAME: Service name for log records
    - AUTHZ_CACHE_TTL_SECONDS: Cache TTL (30–60, default 45)
    - AUTHZ_REFRESH_TIMEOUT_MS: Refresh timeout (default 500)
    - AUTHZ_STALENESS_CEILING_SECONDS: Staleness ceiling (default 300)
    - AUTHZ_MAX_DEPARTMENT_DEPTH: Department depth bound (1–32, default 32)
    - AUTHZ_DEFAULT_ALLOW_CHILD_OVERRIDE: Default for new matrix entries (default true)
    - AUTHZ_AUDIT_FLUSH_TIMEOUT_SECONDS: Wait for queued read records (default 5)

    Returns:
        EngineConfig instance with values from environment or defaults.

    Raises:
        pydantic.ValidationError: a value is out of range or malformed.
    """
    import os

    return EngineConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=_env_bool(os.getenv("LOG_JSON", "false")),
        service_name=os.getenv("SERVICE_NAME"),
        cache=CacheConfig(
            ttl_seconds=float(os.getenv("AUTHZ_CACHE_TTL_SECONDS", "45")),
            refresh_timeout_ms=int(os.getenv("AUTHZ_REFRESH_TIMEOUT_MS", "500")),
            staleness_ceiling_seconds=float(os.getenv("AUTHZ_STALENESS_CEILING_SECONDS", "300")),
        ),
        hierarchy=HierarchyConfig(
            max_department_depth=int(os.getenv("AUTHZ_MAX_DEPARTMENT_DEPTH", "32")),
            default_allow_child_override=_env_bool(os.getenv("AUTHZ_DEFAULT_ALLOW_CHILD_OVERRIDE", "true")),
        ),
        audit=AuditConfig(flush_timeout_seconds=float(os.getenv("AUTHZ_AUDIT_FLUSH_TIMEOUT_SECONDS", "5"))),
    )


__all__ = [
    "AuditConfig",
    "CacheConfig",
    "EngineConfig",
    "HierarchyConfig",
    "LogLevel",
    "load_engine_config_from_env",
]
