"""Configuration management for mongo_txn."""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TransactionConfig(BaseModel):
    """Transaction coordinator configuration."""

    collection_name: str = Field(
        default="transactions", min_length=1, description="Collection holding transaction records"
    )
    expire_gap_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Age after which a non-terminal transaction is treated as abandoned",
    )
    read_retry_count: int = Field(
        default=5, ge=0, description="Re-reads attempted while a document is locked"
    )
    read_retry_interval_ms: int = Field(
        default=37, ge=0, description="Pause between re-reads of a locked document"
    )

    @property
    def expire_gap(self) -> timedelta:
        """Expiry gap as a timedelta."""
        return timedelta(seconds=self.expire_gap_seconds)

    @property
    def read_retry_interval(self) -> float:
        """Retry interval in seconds, as asyncio.sleep expects."""
        return self.read_retry_interval_ms / 1000.0


class MongoConfig(BaseModel):
    """MongoDB connection configuration."""

    uri: str = Field(default="mongodb://localhost:27017", description="MongoDB connection URI")
    database: str = Field(default="mongo_txn", min_length=1, description="Database name")
    server_selection_timeout_ms: int = Field(
        default=5000, ge=1, description="Server selection timeout in milliseconds"
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="mongo_txn", description="Service name for tracing")
    metrics_port: int = Field(default=8001, ge=1, le=65535, description="Prometheus metrics port")


class Config(BaseSettings):
    """Main configuration for mongo_txn."""

    model_config = SettingsConfigDict(
        env_prefix="MONGO_TXN_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    transaction: TransactionConfig = Field(default_factory=TransactionConfig)
    mongo: MongoConfig = Field(default_factory=MongoConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
