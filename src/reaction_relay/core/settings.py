"""Application settings and configuration.

This module defines all configuration options for the reaction relay.
Settings are loaded from environment variables with sensible defaults.
"""

import json
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or a ``.env`` file.
    """

    # Application metadata
    app_name: str = Field(default="Reaction Relay", alias="APP_NAME")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Database configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./relay.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Ledger connection
    rpc_url: str = Field(default="https://dream-rpc.somnia.network", alias="LEDGER_RPC_URL")
    chain_id: int = Field(default=50312, alias="LEDGER_CHAIN_ID")
    contract_address: str | None = Field(default=None, alias="CONTRACT_ADDRESS")
    rpc_timeout_seconds: float = Field(default=30.0, alias="LEDGER_RPC_TIMEOUT_SECONDS")

    # Signing credentials. PRIVATE_KEY drives the single-wallet relay and the
    # scheduled job; RELAY_PRIVATE_KEYS is a comma-separated list for the pool.
    private_key: str | None = Field(default=None, alias="PRIVATE_KEY")
    private_keys: str | None = Field(default=None, alias="RELAY_PRIVATE_KEYS")

    # Relay scheduling
    relay_enabled: bool = Field(default=False, alias="RELAY_ENABLED")
    relay_mode: Literal["single", "pool"] = Field(default="single", alias="RELAY_MODE")
    poll_interval_seconds: float = Field(default=2.0, alias="RELAY_POLL_INTERVAL_SECONDS")
    pool_base_interval_seconds: float = Field(
        default=0.1,
        alias="RELAY_POOL_BASE_INTERVAL_SECONDS",
    )
    pool_stagger_seconds: float = Field(default=0.05, alias="RELAY_POOL_STAGGER_SECONDS")

    # Scheduled drain and retention
    batch_ceiling: int = Field(default=20, ge=1, alias="RELAY_BATCH_CEILING")
    retention_window_seconds: int = Field(default=3600, ge=0, alias="RELAY_RETENTION_WINDOW_SECONDS")
    lease_timeout_seconds: int = Field(default=300, ge=1, alias="RELAY_LEASE_TIMEOUT_SECONDS")

    # Failure handling
    max_consecutive_errors: int = Field(default=5, ge=1, alias="RELAY_MAX_CONSECUTIVE_ERRORS")
    max_attempts: int = Field(default=1, ge=1, alias="RELAY_MAX_ATTEMPTS")
    backoff_base_seconds: float = Field(default=0.0, ge=0, alias="RELAY_BACKOFF_BASE_SECONDS")
    backoff_max_seconds: float = Field(default=30.0, ge=0, alias="RELAY_BACKOFF_MAX_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @field_validator("private_keys")
    @classmethod
    def validate_private_keys(cls, v: str | None) -> str | None:
        """Reject a key list that looks like JSON but does not parse as a list of strings."""
        if v is None or not v.strip().startswith("["):
            return v
        try:
            keys = json.loads(v)
        except json.JSONDecodeError as exc:
            raise ValueError(f"RELAY_PRIVATE_KEYS is not valid JSON: {exc.msg}") from exc
        if not isinstance(keys, list) or not all(isinstance(key, str) for key in keys):
            raise ValueError("RELAY_PRIVATE_KEYS must be a JSON list of strings")
        return v

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts async driver URLs to their synchronous counterparts for
        Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        if url.startswith("sqlite+aiosqlite"):
            return url.replace("sqlite+aiosqlite", "sqlite", 1)
        return url

    @property
    def signing_keys(self) -> list[str]:
        """Return the configured pool keys, falling back to the single key.

        Empty entries are kept so that wallet indexes match positions in the
        configured list.
        """
        if self.private_keys:
            raw = self.private_keys.strip()
            if raw.startswith("["):
                return [str(key).strip() for key in json.loads(raw)]
            return [key.strip() for key in raw.split(",")]
        if self.private_key:
            return [self.private_key.strip()]
        return []


settings = Settings()
