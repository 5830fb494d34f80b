"""Pydantic models for igdmap.

Provides validated configuration models for type safety and runtime validation.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class GatewayConfig(BaseModel):
    """UPnP IGD gateway discovery and port mapping configuration."""

    discovery_timeout: int = Field(
        default=4,
        ge=1,
        le=60,
        description="SSDP search timeout (MX) in seconds",
    )
    http_timeout: float = Field(
        default=5.0,
        gt=0.0,
        le=120.0,
        description="Timeout for device description and SOAP requests in seconds",
    )
    source_address: str = Field(
        default="0.0.0.0",  # nosec B104 - SSDP search binds to all interfaces
        description="Local address the SSDP search is sent from",
    )
    mapping_description: str = Field(
        default="igdmap",
        min_length=1,
        max_length=256,
        description="Description tag attached to port mappings",
    )
    list_all_mappings: bool = Field(
        default=True,
        description="List every existing port mapping on discovery (otherwise only entry #0)",
    )
    max_mapping_entries: int = Field(
        default=256,
        ge=1,
        le=65535,
        description="Upper bound on generic port mapping entries fetched during enumeration",
    )

    @field_validator("mapping_description")
    @classmethod
    def validate_mapping_description(cls, v: str) -> str:
        """Reject descriptions that are only whitespace."""
        if not v.strip():
            msg = "mapping_description must not be blank"
            raise ValueError(msg)
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

    gateway: GatewayConfig = Field(
        default_factory=GatewayConfig,
        description="Gateway discovery and mapping configuration",
    )
    observability: ObservabilityConfig = Field(
        default_factory=ObservabilityConfig,
        description="Observability configuration",
    )
