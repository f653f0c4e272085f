"""Configuration models for trade_sync.

Loads sync configuration from YAML file with Pydantic validation.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, model_validator


class AccountConfig(BaseModel):
    """Exchange account configuration.

    For single-account setups the BYBIT_API_KEY and BYBIT_API_SECRET env vars
    take precedence over config file values when set.
    """

    name: str = Field(..., description="Unique account identifier")
    api_key: str = Field(default="", description="Bybit API key (read-only is enough)")
    api_secret: str = Field(default="", description="Bybit API secret")
    testnet: bool = Field(default=False, description="Use testnet endpoints")


class SyncConfig(BaseModel):
    """Fetch window and run limits."""

    lookback_days: int = Field(default=7, gt=0, description="Window length for the first sync")
    overlap_minutes: int = Field(
        default=60,
        ge=0,
        description="Re-fetch overlap before the last persisted close (inserts stay idempotent)",
    )
    timeout_seconds: float = Field(default=300.0, gt=0, description="Per-run timeout before persistence")
    daily_quota: int = Field(default=10, gt=0, description="Max sync runs per account per UTC day")
    executions_max_pages: int = Field(default=50, gt=0)
    orders_max_pages: int = Field(default=50, gt=0)
    transactions_max_pages: int = Field(default=20, gt=0)
    closed_pnl_max_pages: int = Field(default=50, gt=0)


class BackoffConfig(BaseModel):
    """Exponential backoff after failed runs: base * 2**min(failures, cap_exponent)."""

    base_seconds: float = Field(default=30.0, gt=0)
    cap_exponent: int = Field(default=6, ge=0)
    max_backoff_seconds: float = Field(default=3600.0, gt=0)
    max_consecutive_failures: int = Field(
        default=3,
        gt=0,
        description="Failures in a row before a REPEATED_FAILURES alert",
    )


class ReconciliationConfig(BaseModel):
    """Tolerance for comparing aggregated P&L against the venue total."""

    absolute_epsilon: float = Field(default=0.01, ge=0, description="Absolute tolerance in settle currency")
    relative_epsilon: float = Field(default=0.001, ge=0, description="Tolerance relative to venue total")


class TelegramConfig(BaseModel):
    """Telegram notification configuration."""

    bot_token: str = Field(..., description="Telegram bot token")
    chat_id: str = Field(..., description="Telegram chat ID for alerts")


class NotificationConfig(BaseModel):
    """Notification configuration."""

    telegram: Optional[TelegramConfig] = None


class TradeSyncConfig(BaseModel):
    """Root configuration for trade_sync."""

    accounts: list[AccountConfig] = Field(default_factory=list)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    reconciliation: ReconciliationConfig = Field(default_factory=ReconciliationConfig)

    # Database; empty falls back to LEDGER_* environment settings
    database_url: Optional[str] = Field(default=None, description="Database connection URL")

    # Notifications
    notification: Optional[NotificationConfig] = None

    @model_validator(mode="after")
    def validate_accounts(self):
        """Ensure account names are unique and apply env credential overrides."""
        names = [acc.name for acc in self.accounts]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate account names: {', '.join(duplicates)}")

        if len(self.accounts) == 1:
            account = self.accounts[0]
            env_key = os.environ.get("BYBIT_API_KEY")
            if env_key:
                account.api_key = env_key
            env_secret = os.environ.get("BYBIT_API_SECRET")
            if env_secret:
                account.api_secret = env_secret

        for account in self.accounts:
            if not account.api_key or not account.api_secret:
                raise ValueError(
                    f"Account '{account.name}' has no API credentials. Provide api_key/api_secret "
                    "or set BYBIT_API_KEY/BYBIT_API_SECRET."
                )
        return self

    def get_account(self, name: str) -> Optional[AccountConfig]:
        """Get account config by name."""
        for acc in self.accounts:
            if acc.name == name:
                return acc
        return None


def load_config(config_path: Optional[str] = None) -> TradeSyncConfig:
    """Load configuration from YAML file.

    Args:
        config_path: Path to config file. If None, checks:
            1. TRADE_SYNC_CONFIG_PATH environment variable
            2. conf/trade_sync.yaml
            3. trade_sync.yaml

    Returns:
        Validated TradeSyncConfig

    Raises:
        FileNotFoundError: If no config file found
        ValueError: If config validation fails
    """
    if config_path is None:
        config_path = os.environ.get("TRADE_SYNC_CONFIG_PATH")

    if config_path is None:
        search_paths = [
            Path("conf/trade_sync.yaml"),
            Path("trade_sync.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    if config_path is None:
        raise FileNotFoundError(
            "No config file found. Set TRADE_SYNC_CONFIG_PATH or create conf/trade_sync.yaml"
        )

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    return TradeSyncConfig(**data)
