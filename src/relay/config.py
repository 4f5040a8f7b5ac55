"""Configuration schema for the relay server.

Defines Pydantic models for loading and validating relay configuration
from YAML files and environment variables.
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8080, ge=1024, le=65535, description="Bind port")
    route: str = Field(default="/api/ws", description="Upgrade route for participants")
    max_connections: int = Field(default=100, ge=1, description="Maximum concurrent connections")
    max_message_size: int = Field(
        default=2**20, ge=1024, description="Largest accepted inbound frame in bytes"
    )
    outbound_queue_size: int = Field(
        default=256, ge=1, description="Outbound frames buffered per session"
    )
    send_timeout_s: float = Field(
        default=5.0, gt=0, description="Timeout for a single outbound socket write"
    )

    @field_validator("route")
    @classmethod
    def validate_route(cls, v: str) -> str:
        """Validate that the route is an absolute path."""
        if not v.startswith("/"):
            raise ValueError(f"WebSocket route must start with '/', got '{v}'")
        return v


class HealthConfig(BaseModel):
    """Health check HTTP server configuration."""

    enabled: bool = Field(default=True, description="Serve /health and /metrics")
    host: str = Field(default="127.0.0.1", description="Bind host address")
    port: int = Field(default=8081, ge=1024, le=65535, description="Bind port")


class TransportConfig(BaseModel):
    """Transport layer configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)


class RelayConfig(BaseModel):
    """Root relay configuration."""

    transport: TransportConfig = Field(default_factory=TransportConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)

    # Operational settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Graceful shutdown timeout in seconds",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize the log level name."""
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}, got '{v}'")
        return level

    @classmethod
    def from_yaml(cls, path: Path) -> "RelayConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        import yaml  # type: ignore[import-untyped]

        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return cls.model_validate(cls._apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "RelayConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Args:
            path: Optional path to YAML configuration file

        Returns:
            Loaded configuration, or defaults with environment overrides applied
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.model_validate(cls._apply_env_overrides({}))

    @staticmethod
    def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
        """Apply RELAY_* environment variable overrides to raw config data."""
        import os

        ws_overrides = {
            "host": os.getenv("RELAY_HOST"),
            "port": os.getenv("RELAY_PORT"),
            "route": os.getenv("RELAY_ROUTE"),
        }
        for key, value in ws_overrides.items():
            if value:
                data.setdefault("transport", {}).setdefault("websocket", {})[key] = value

        if log_level := os.getenv("RELAY_LOG_LEVEL"):
            data["log_level"] = log_level

        return data
