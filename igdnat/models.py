"""Pydantic configuration models for igdnat."""

from __future__ import annotations

import ipaddress
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class UPnPConfig(BaseModel):
    """UPnP IGD client configuration."""

    http_timeout: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="Total timeout for each HTTP request to the gateway in seconds",
    )
    resolve_max_attempts: int = Field(
        default=50,
        ge=1,
        le=10000,
        description="Failed parses of a device description tolerated before giving up",
    )
    resolve_retry_delay: float = Field(
        default=0.01,
        ge=0.0,
        le=10.0,
        description="Pause between description parse attempts in seconds",
    )
    max_mapping_entries: int = Field(
        default=1024,
        ge=1,
        le=65535,
        description="Upper bound on entries read when enumerating mappings",
    )
    default_description: str = Field(
        default="igdnat",
        max_length=256,
        description="Description used for mappings created without one",
    )
    default_lease: int = Field(
        default=0,
        ge=0,
        le=604800,
        description="Lease duration for new mappings in seconds (0 for permanent)",
    )
    internal_host: str | None = Field(
        default=None,
        description="Internal client address for new mappings (None to detect)",
    )

    @field_validator("internal_host")
    @classmethod
    def validate_internal_host(cls, v: str | None) -> str | None:
        """Require a literal IP address when set."""
        if v is None or v == "":
            return None
        try:
            ipaddress.ip_address(v)
        except ValueError as e:
            msg = f"internal_host must be an IP address, got {v!r}"
            raise ValueError(msg) from e
        return v


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    log_file: str | None = Field(None, description="Log file path")
    structured_logging: bool = Field(
        default=False, description="Use structured (JSON) logging"
    )
    log_correlation_id: bool = Field(
        default=True,
        description="Include correlation IDs",
    )


class Config(BaseModel):
    """Main configuration model."""

    upnp: UPnPConfig = Field(
        default_factory=UPnPConfig,
        description="UPnP client configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )
