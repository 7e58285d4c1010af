"""
Configuration management for TrustPact.

All configuration is done via environment variables prefixed with
``TRUSTPACT_``. Uses pydantic-settings for loading and type coercion.

Invariants:
    - All settings have sensible defaults for local development
    - Expiration windows are strictly positive
    - Secrets are never logged

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep log_config() in sync with the fields that matter in production
"""

from __future__ import annotations

import logging
from datetime import timedelta
from enum import Enum

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class StoreBackend(str, Enum):
    """Supported document store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class Settings(BaseSettings):
    """TrustPact configuration loaded from environment."""

    # Document store
    store_backend: StoreBackend = Field(
        default=StoreBackend.MEMORY, description="Document store backend (memory, sqlite)"
    )
    data_dir: str = Field(default="./data", description="Directory for the SQLite database")
    sqlite_wal_mode: bool = Field(default=True, description="Enable SQLite WAL journal mode")
    collection: str = Field(default="trustRequests", description="Collection holding trust requests")

    # Request lifecycle
    default_expiration_hours: int = Field(
        default=24, description="Validity window when the caller gives no expiration"
    )
    max_expiration_days: int = Field(
        default=30, description="Longest window accepted from gateway callers"
    )
    strict_transitions: bool = Field(
        default=False, description="Reject status writes on requests that already left pending"
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format (json, text)")

    # Gateway
    host: str = Field(default="0.0.0.0", description="Gateway bind host")
    port: int = Field(default=8080, description="Gateway bind port")
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    model_config = {"env_prefix": "TRUSTPACT_"}

    @property
    def default_expiration(self) -> timedelta:
        return timedelta(hours=self.default_expiration_hours)

    def validate_settings(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.default_expiration_hours <= 0:
            raise ValueError("TRUSTPACT_DEFAULT_EXPIRATION_HOURS must be positive")
        if self.max_expiration_days <= 0:
            raise ValueError("TRUSTPACT_MAX_EXPIRATION_DAYS must be positive")
        if not self.collection:
            raise ValueError("TRUSTPACT_COLLECTION must not be empty")
        if self.log_format not in ("json", "text"):
            raise ValueError(f"Invalid TRUSTPACT_LOG_FORMAT '{self.log_format}'. Must be one of: json, text")
        if self.store_backend == StoreBackend.SQLITE and not self.data_dir:
            raise ValueError("TRUSTPACT_DATA_DIR is required when TRUSTPACT_STORE_BACKEND=sqlite")

    def log_config(self) -> None:
        """Log the effective configuration."""
        logger.info(
            "Configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "data_dir": self.data_dir
                if self.store_backend == StoreBackend.SQLITE
                else None,
                "collection": self.collection,
                "default_expiration_hours": self.default_expiration_hours,
                "strict_transitions": self.strict_transitions,
                "log_level": self.log_level,
            },
        )
