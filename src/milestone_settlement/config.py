"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting is malformed, the app fails fast with a clear
error message.

Usage:
    from milestone_settlement.config import get_settings
    settings = get_settings()
    print(settings.fee_basis_points)
"""

from __future__ import annotations

from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from milestone_settlement.domain.enums import NetworkMode, SourceKind

APP_VERSION = "0.1.0"


class Settings(BaseSettings):
    """Central configuration for the milestone settlement service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 4000

    # --- Database ---
    database_url: str = "sqlite+aiosqlite:///./milestone_settlement.db"
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Settlement peer (remote ledger RPC bridge) ---
    network_mode: NetworkMode = NetworkMode.DEMO_OFFCHAIN
    force_simulation: bool = False
    rpc_url: str = "http://localhost:8080"
    rpc_timeout_seconds: float = 10.0
    rpc_retry_count: int = Field(default=3, ge=1, le=10)
    rpc_backoff_min_seconds: float = 0.2
    rpc_backoff_max_seconds: float = 2.0
    peer_call_timeout_seconds: float = 30.0
    health_check_interval_seconds: float = 30.0
    health_probe_timeout_seconds: float = Field(default=5.0, gt=0, le=5.0)
    vault_contract_address: str = "PRONEXMA_VAULT_CONTRACT_ADDRESS"

    # --- Oracle ---
    oracle_address: str = "oracle-demo"
    webhook_secret: str = "dev-secret"
    webhook_allowed_sources: str = "github,gitlab,jira,invoice,manual,zapier"

    # --- Settlement Defaults ---
    fee_basis_points: int = Field(default=50, ge=0, le=10_000)  # 50 bps = 0.50%
    timeout_window_seconds: int = Field(default=30 * 24 * 60 * 60, ge=0)
    max_milestones: int = Field(default=10, ge=1)

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def simulation_forced(self) -> bool:
        """True when configuration alone pins every peer call to simulation."""
        return self.force_simulation or self.network_mode == NetworkMode.DEMO_OFFCHAIN

    @property
    def timeout_window(self) -> timedelta:
        return timedelta(seconds=self.timeout_window_seconds)

    @property
    def allowed_sources(self) -> frozenset[SourceKind]:
        """Parse comma-separated webhook sources; unknown names are rejected."""
        return frozenset(
            SourceKind(s.strip().lower())
            for s in self.webhook_allowed_sources.split(",")
            if s.strip()
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
