"""
Configuration management for the ClickHouse sync layer.

All configuration is done via environment variables, using the same names
the indexer deployment already exports. This module provides typed
configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - CLICKHOUSE_URL must be non-empty; everything else has a default
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env var names stable; they are shared with the indexer runtime
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None


@dataclass(frozen=True)
class ProcessStoreConfig:
    """PostgreSQL connection for the indexer's processing state.

    Attributes:
        host: Database host
        port: Database port
        user: Database user
        password: Database password
        database: Database name
        schema: Schema holding the runtime tables
        ssl_mode: "require" to enforce TLS, None for the driver default
    """

    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str | None = None
    database: str = "postgres"
    schema: str = "public"
    ssl_mode: str | None = None

    @classmethod
    def from_env(cls) -> ProcessStoreConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("ENVIO_PG_HOST", "localhost"),
            port=_int_env("ENVIO_PG_PORT", 5432),
            user=os.getenv("ENVIO_PG_USER", "postgres"),
            password=os.getenv("ENVIO_PG_PASSWORD"),
            database=os.getenv("ENVIO_PG_DATABASE", "postgres"),
            schema=os.getenv("ENVIO_PG_PUBLIC_SCHEMA", "public"),
            ssl_mode=os.getenv("ENVIO_PG_SSL_MODE"),
        )

    def connect_kwargs(self) -> dict[str, object]:
        """Keyword arguments for psycopg.AsyncConnection.connect()."""
        kwargs: dict[str, object] = {
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "dbname": self.database,
        }
        if self.password:
            kwargs["password"] = self.password
        if self.ssl_mode == "require":
            kwargs["sslmode"] = "require"
        return kwargs


@dataclass(frozen=True)
class AnalyticsStoreConfig:
    """ClickHouse HTTP interface configuration.

    Attributes:
        url: Base URL of the HTTP interface
        username: ClickHouse user
        password: ClickHouse password
        database: Database holding the destination tables
        request_timeout_ms: Per-request timeout
        max_open_connections: Connection pool size
        compression: Ask the server for compressed responses
    """

    url: str = "http://localhost:8123"
    username: str = "default"
    password: str | None = None
    database: str = "default"
    request_timeout_ms: int = 30000
    max_open_connections: int = 10
    compression: bool = True

    @classmethod
    def from_env(cls) -> AnalyticsStoreConfig:
        """Load configuration from environment variables."""
        return cls(
            url=os.getenv("CLICKHOUSE_URL", "http://localhost:8123"),
            username=os.getenv("CLICKHOUSE_USERNAME", "default"),
            password=os.getenv("CLICKHOUSE_PASSWORD"),
            database=os.getenv("CLICKHOUSE_DATABASE", "default"),
            request_timeout_ms=_int_env("CLICKHOUSE_REQUEST_TIMEOUT_MS", 30000),
            max_open_connections=_int_env("CLICKHOUSE_MAX_OPEN_CONNECTIONS", 10),
            compression=os.getenv("CLICKHOUSE_COMPRESSION", "true").lower() == "true",
        )


@dataclass(frozen=True)
class BatchConfig:
    """Batch accumulator configuration.

    Attributes:
        max_batch_size: Pending rows that trigger an automatic flush
    """

    max_batch_size: int = 5000

    @classmethod
    def from_env(cls) -> BatchConfig:
        """Load configuration from environment variables."""
        return cls(max_batch_size=_int_env("MAX_BATCH_SIZE", 5000))


@dataclass(frozen=True)
class ReconciliationConfig:
    """Reconciliation configuration.

    Attributes:
        enabled: Run reconciliation periodically after startup
        interval_ms: Interval between periodic passes
        confirmed_block_threshold: Distance from the chain head beyond which
            blocks are treated as final. Matches the indexer runtime's own
            reorg threshold.
    """

    enabled: bool = True
    interval_ms: int = 60000
    confirmed_block_threshold: int = 200

    @classmethod
    def from_env(cls) -> ReconciliationConfig:
        """Load configuration from environment variables."""
        return cls(
            enabled=os.getenv("CLICKHOUSE_RECONCILIATION_ENABLED", "true").lower() != "false",
            interval_ms=_int_env("CLICKHOUSE_RECONCILIATION_INTERVAL_MS", 60000),
            confirmed_block_threshold=_int_env("CLICKHOUSE_CONFIRMED_BLOCK_THRESHOLD", 200),
        )

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class SyncConfig:
    """Complete configuration of the sync layer.

    Attributes:
        process_store: PostgreSQL processing-state connection
        analytics_store: ClickHouse connection
        batch: Batch accumulator settings
        reconciliation: Reconciliation settings
        observability: Logging settings
    """

    process_store: ProcessStoreConfig = field(default_factory=ProcessStoreConfig)
    analytics_store: AnalyticsStoreConfig = field(default_factory=AnalyticsStoreConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    reconciliation: ReconciliationConfig = field(default_factory=ReconciliationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            process_store=ProcessStoreConfig.from_env(),
            analytics_store=AnalyticsStoreConfig.from_env(),
            batch=BatchConfig.from_env(),
            reconciliation=ReconciliationConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.analytics_store.url:
            raise ValueError(
                "CLICKHOUSE_URL is required. Set it in your .env file or environment variables."
            )
        if not self.analytics_store.database:
            raise ValueError("CLICKHOUSE_DATABASE must not be empty")
        if not self.process_store.host:
            raise ValueError("ENVIO_PG_HOST must not be empty")
        if not self.process_store.schema:
            raise ValueError("ENVIO_PG_PUBLIC_SCHEMA must not be empty")
        if self.batch.max_batch_size < 1:
            raise ValueError("MAX_BATCH_SIZE must be at least 1")
        if self.reconciliation.interval_ms < 1:
            raise ValueError("CLICKHOUSE_RECONCILIATION_INTERVAL_MS must be positive")
        if self.reconciliation.confirmed_block_threshold < 0:
            raise ValueError("CLICKHOUSE_CONFIRMED_BLOCK_THRESHOLD must not be negative")

        if self.analytics_store.password is None:
            logger.warning("CLICKHOUSE_PASSWORD is not set, connecting without a password")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Sync configuration loaded",
            extra={
                "clickhouse_url": self.analytics_store.url,
                "clickhouse_database": self.analytics_store.database,
                "pg_host": self.process_store.host,
                "pg_database": self.process_store.database,
                "pg_schema": self.process_store.schema,
                "max_batch_size": self.batch.max_batch_size,
                "reconciliation_enabled": self.reconciliation.enabled,
                "reconciliation_interval_ms": self.reconciliation.interval_ms,
                "confirmed_block_threshold": self.reconciliation.confirmed_block_threshold,
                "log_level": self.observability.log_level,
            },
        )
