"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Smart Money Tracker application, loading and validating environment
variables at startup. Algorithm thresholds are grouped per component and
converted into the frozen config dataclasses the detectors consume.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from smart_money_tracker.detector.position_aggregator import AggregationConfig
from smart_money_tracker.lifecycle.manager import DiscoveryConfig
from smart_money_tracker.profiler.classifier import CategoryConfig, DeactivationConfig, QualificationConfig
from smart_money_tracker.profiler.evaluator import EvaluationConfig

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str = Field(
        alias="DATABASE_URL",
        description="PostgreSQL (or SQLite for local runs) connection string",
    )
    echo: bool = Field(
        default=False,
        alias="DATABASE_ECHO",
        description="Echo SQL statements for debugging",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate database URL format."""
        if not v.startswith(("postgresql://", "postgresql+asyncpg://", "sqlite+aiosqlite://")):
            raise ValueError("DATABASE_URL must be a PostgreSQL or sqlite+aiosqlite connection string")
        return v


class RedisSettings(BaseSettings):
    """Redis connection settings for the event stream."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )
    events_stream: str = Field(
        default="smart_money:events",
        alias="REDIS_EVENTS_STREAM",
        description="Stream key that receives aggregation and wallet lifecycle events",
    )
    events_maxlen: int = Field(
        default=100_000,
        alias="REDIS_EVENTS_MAXLEN",
        ge=100,
        le=10_000_000,
        description="Approximate stream length cap (XADD MAXLEN ~)",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class AggregationSettings(BaseSettings):
    """Position-splitting aggregation settings."""

    model_config = SettingsConfigDict(env_prefix="AGGREGATION_", extra="ignore")

    time_window_minutes: int = Field(
        default=90,
        alias="AGGREGATION_TIME_WINDOW_MINUTES",
        ge=1,
        le=24 * 60,
        description="Max minutes between the first and last buy of one cluster",
    )
    size_tolerance: float = Field(
        default=0.5,
        alias="AGGREGATION_SIZE_TOLERANCE",
        gt=0.0,
        le=5.0,
        description="Max coefficient of variation of purchase sizes inside a cluster",
    )
    min_purchase_count: int = Field(
        default=3,
        alias="AGGREGATION_MIN_PURCHASE_COUNT",
        ge=2,
        le=1000,
        description="Minimum buys for a cluster to be emitted",
    )
    min_total_usd: float = Field(
        default=10_000.0,
        alias="AGGREGATION_MIN_TOTAL_USD",
        ge=0.0,
        description="Minimum cluster total (USD) for a cluster to be emitted",
    )
    max_individual_usd: float | None = Field(
        default=None,
        alias="AGGREGATION_MAX_INDIVIDUAL_USD",
        gt=0.0,
        description="Optional cap on a single buy; a cluster containing a larger buy is never emitted",
    )
    reorder_tolerance_seconds: int = Field(
        default=300,
        alias="AGGREGATION_REORDER_TOLERANCE_SECONDS",
        ge=0,
        le=3600,
        description="How far behind the newest buy a late buy may arrive and still be placed",
    )

    def to_config(self) -> AggregationConfig:
        return AggregationConfig(
            time_window=timedelta(minutes=self.time_window_minutes),
            size_tolerance=self.size_tolerance,
            min_purchase_count=self.min_purchase_count,
            min_total_usd=self.min_total_usd,
            max_individual_usd=self.max_individual_usd,
            reorder_tolerance=timedelta(seconds=self.reorder_tolerance_seconds),
        )


class EvaluationSettings(BaseSettings):
    """Wallet performance evaluation settings."""

    model_config = SettingsConfigDict(env_prefix="EVALUATION_", extra="ignore")

    min_transactions: int = Field(
        default=30,
        alias="EVALUATION_MIN_TRANSACTIONS",
        ge=1,
        le=10_000,
        description="Minimum history length before metrics are computed",
    )
    max_history: int = Field(
        default=100,
        alias="EVALUATION_MAX_HISTORY",
        ge=1,
        le=100_000,
        description="Most recent transactions considered per evaluation",
    )
    early_entry_minutes: int = Field(
        default=30,
        alias="EVALUATION_EARLY_ENTRY_MINUTES",
        ge=1,
        le=7 * 24 * 60,
        description="A buy within this many minutes of a token's first trade counts as early",
    )

    @field_validator("max_history")
    @classmethod
    def validate_max_history(cls, v: int) -> int:
        if v < 2:
            raise ValueError("EVALUATION_MAX_HISTORY must allow at least two transactions")
        return v

    def to_config(self) -> EvaluationConfig:
        return EvaluationConfig(
            min_transactions=self.min_transactions,
            max_history=self.max_history,
            early_entry_window=timedelta(minutes=self.early_entry_minutes),
        )


class CategorySettings(BaseSettings):
    """Cut-offs that assign a wallet its behavioral category."""

    model_config = SettingsConfigDict(env_prefix="CATEGORY_", extra="ignore")

    sniper_min_early_entry_rate: float = Field(
        default=35.0,
        alias="CATEGORY_SNIPER_MIN_EARLY_ENTRY_RATE",
        ge=0.0,
        le=100.0,
        description="Sniper: early entry rate must exceed this (percent)",
    )
    sniper_max_hold_hours: float = Field(
        default=8.0,
        alias="CATEGORY_SNIPER_MAX_HOLD_HOURS",
        gt=0.0,
        description="Sniper: average hold time must be below this",
    )
    hunter_min_hold_hours: float = Field(
        default=1.0,
        alias="CATEGORY_HUNTER_MIN_HOLD_HOURS",
        ge=0.0,
        description="Hunter: average hold time must exceed this",
    )
    hunter_max_hold_hours: float = Field(
        default=48.0,
        alias="CATEGORY_HUNTER_MAX_HOLD_HOURS",
        gt=0.0,
        description="Hunter: average hold time must be below this",
    )
    trader_min_hold_hours: float = Field(
        default=48.0,
        alias="CATEGORY_TRADER_MIN_HOLD_HOURS",
        ge=0.0,
        description="Trader: minimum average hold time",
    )
    trader_min_avg_trade_size: float = Field(
        default=10_000.0,
        alias="CATEGORY_TRADER_MIN_AVG_TRADE_SIZE",
        ge=0.0,
        description="Trader: average trade size must exceed this (USD)",
    )

    @model_validator(mode="after")
    def validate_hunter_range(self) -> CategorySettings:
        if self.hunter_min_hold_hours >= self.hunter_max_hold_hours:
            raise ValueError("CATEGORY_HUNTER_MIN_HOLD_HOURS must be below CATEGORY_HUNTER_MAX_HOLD_HOURS")
        return self

    def to_config(self) -> CategoryConfig:
        return CategoryConfig(
            sniper_min_early_entry_rate=self.sniper_min_early_entry_rate,
            sniper_max_hold_hours=self.sniper_max_hold_hours,
            hunter_min_hold_hours=self.hunter_min_hold_hours,
            hunter_max_hold_hours=self.hunter_max_hold_hours,
            trader_min_hold_hours=self.trader_min_hold_hours,
            trader_min_avg_trade_size=self.trader_min_avg_trade_size,
        )


class QualificationSettings(BaseSettings):
    """Smart-money qualification thresholds."""

    model_config = SettingsConfigDict(env_prefix="QUALIFICATION_", extra="ignore")

    min_win_rate: float = Field(
        default=60.0,
        alias="QUALIFICATION_MIN_WIN_RATE",
        ge=0.0,
        le=100.0,
        description="Minimum win rate (percent)",
    )
    min_total_pnl: float = Field(
        default=20_000.0,
        alias="QUALIFICATION_MIN_TOTAL_PNL",
        description="Minimum realized PnL (USD)",
    )
    min_avg_trade_size: float = Field(
        default=1_500.0,
        alias="QUALIFICATION_MIN_AVG_TRADE_SIZE",
        ge=0.0,
        description="Minimum average trade size (USD)",
    )
    min_total_trades: int = Field(
        default=30,
        alias="QUALIFICATION_MIN_TOTAL_TRADES",
        ge=0,
        description="Minimum number of trades considered",
    )
    min_max_trade_size: float = Field(
        default=5_000.0,
        alias="QUALIFICATION_MIN_MAX_TRADE_SIZE",
        ge=0.0,
        description="Minimum largest single trade (USD)",
    )
    max_inactive_days: int = Field(
        default=7,
        alias="QUALIFICATION_MAX_INACTIVE_DAYS",
        ge=0,
        le=3650,
        description="Maximum days since the most recent trade",
    )

    def to_config(self) -> QualificationConfig:
        return QualificationConfig(
            min_win_rate=self.min_win_rate,
            min_total_pnl=self.min_total_pnl,
            min_avg_trade_size=self.min_avg_trade_size,
            min_total_trades=self.min_total_trades,
            min_max_trade_size=self.min_max_trade_size,
            max_inactive_days=self.max_inactive_days,
        )


class DeactivationSettings(BaseSettings):
    """Thresholds that demote an active wallet."""

    model_config = SettingsConfigDict(env_prefix="DEACTIVATION_", extra="ignore")

    min_win_rate: float = Field(
        default=60.0,
        alias="DEACTIVATION_MIN_WIN_RATE",
        ge=0.0,
        le=100.0,
        description="Deactivate below this win rate (percent)",
    )
    max_inactive_days: int = Field(
        default=30,
        alias="DEACTIVATION_MAX_INACTIVE_DAYS",
        ge=1,
        le=3650,
        description="Deactivate after this many days without activity",
    )
    min_total_pnl: float = Field(
        default=-5_000.0,
        alias="DEACTIVATION_MIN_TOTAL_PNL",
        description="Deactivate below this realized PnL (USD)",
    )
    min_avg_trade_size: float = Field(
        default=2_000.0,
        alias="DEACTIVATION_MIN_AVG_TRADE_SIZE",
        ge=0.0,
        description="Deactivate below this average trade size (USD)",
    )

    def to_config(self) -> DeactivationConfig:
        return DeactivationConfig(
            min_win_rate=self.min_win_rate,
            max_inactive_days=self.max_inactive_days,
            min_total_pnl=self.min_total_pnl,
            min_avg_trade_size=self.min_avg_trade_size,
        )


class DiscoverySettings(BaseSettings):
    """Candidate discovery settings."""

    model_config = SettingsConfigDict(env_prefix="DISCOVERY_", extra="ignore")

    max_new_wallets: int = Field(
        default=10,
        alias="DISCOVERY_MAX_NEW_WALLETS",
        ge=0,
        le=10_000,
        description="Cap on wallets promoted to active per sweep",
    )
    lookback_days: int = Field(
        default=14,
        alias="DISCOVERY_LOOKBACK_DAYS",
        ge=1,
        le=365,
        description="Trading window scanned for candidates",
    )
    min_volume_usd: float = Field(
        default=50_000.0,
        alias="DISCOVERY_MIN_VOLUME_USD",
        ge=0.0,
        description="Minimum candidate volume in the lookback window",
    )
    min_trades: int = Field(
        default=10,
        alias="DISCOVERY_MIN_TRADES",
        ge=1,
        description="Minimum candidate trades in the lookback window",
    )
    min_avg_trade_usd: float = Field(
        default=2_000.0,
        alias="DISCOVERY_MIN_AVG_TRADE_USD",
        ge=0.0,
        description="Minimum candidate average trade in the lookback window",
    )
    min_unique_tokens: int = Field(
        default=3,
        alias="DISCOVERY_MIN_UNIQUE_TOKENS",
        ge=1,
        description="Minimum distinct tokens traded in the lookback window",
    )
    max_candidates: int = Field(
        default=300,
        alias="DISCOVERY_MAX_CANDIDATES",
        ge=1,
        le=100_000,
        description="Top-N candidates (by volume) evaluated per sweep",
    )
    history_limit: int = Field(
        default=100,
        alias="DISCOVERY_HISTORY_LIMIT",
        ge=1,
        le=100_000,
        description="Transactions fetched per wallet evaluation",
    )

    def to_config(self) -> DiscoveryConfig:
        return DiscoveryConfig(
            max_new_wallets=self.max_new_wallets,
            lookback=timedelta(days=self.lookback_days),
            min_volume_usd=self.min_volume_usd,
            min_trades=self.min_trades,
            min_avg_trade_usd=self.min_avg_trade_usd,
            min_unique_tokens=self.min_unique_tokens,
            max_candidates=self.max_candidates,
            history_limit=self.history_limit,
        )


class ScheduleSettings(BaseSettings):
    """Background loop intervals."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULE_", extra="ignore")

    discovery_interval_seconds: int = Field(
        default=48 * 3600,
        alias="SCHEDULE_DISCOVERY_INTERVAL_SECONDS",
        ge=60,
        le=30 * 86_400,
        description="How often to run wallet discovery",
    )
    discovery_initial_delay_seconds: int = Field(
        default=3600,
        alias="SCHEDULE_DISCOVERY_INITIAL_DELAY_SECONDS",
        ge=0,
        le=86_400,
        description="Delay before the first discovery sweep after start",
    )
    deactivation_interval_seconds: int = Field(
        default=48 * 3600,
        alias="SCHEDULE_DEACTIVATION_INTERVAL_SECONDS",
        ge=60,
        le=30 * 86_400,
        description="How often to re-evaluate active wallets",
    )
    alert_interval_seconds: int = Field(
        default=60,
        alias="SCHEDULE_ALERT_INTERVAL_SECONDS",
        ge=1,
        le=3600,
        description="How often to publish pending aggregations",
    )
    window_flush_interval_seconds: int = Field(
        default=300,
        alias="SCHEDULE_WINDOW_FLUSH_INTERVAL_SECONDS",
        ge=10,
        le=86_400,
        description="How often to evict expired aggregation windows",
    )
    report_interval_seconds: int = Field(
        default=12 * 3600,
        alias="SCHEDULE_REPORT_INTERVAL_SECONDS",
        ge=60,
        le=7 * 86_400,
        description="How often to log aggregation statistics",
    )


class Settings(BaseSettings):
    """Main application settings.

    Aggregates all configuration groups and provides application-level
    settings.

    Example:
        ```python
        from smart_money_tracker.config import get_settings

        settings = get_settings()
        print(settings.aggregation.time_window_minutes)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    database: DatabaseSettings = Field(
        default_factory=lambda: DatabaseSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    aggregation: AggregationSettings = Field(
        default_factory=lambda: AggregationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    evaluation: EvaluationSettings = Field(
        default_factory=lambda: EvaluationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    category: CategorySettings = Field(
        default_factory=lambda: CategorySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    qualification: QualificationSettings = Field(
        default_factory=lambda: QualificationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    deactivation: DeactivationSettings = Field(
        default_factory=lambda: DeactivationSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    discovery: DiscoverySettings = Field(
        default_factory=lambda: DiscoverySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    schedule: ScheduleSettings = Field(
        default_factory=lambda: ScheduleSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Log events instead of publishing them",
    )
    external_call_timeout_seconds: float = Field(
        default=5.0,
        alias="EXTERNAL_CALL_TIMEOUT_SECONDS",
        gt=0.0,
        le=300.0,
        description="Timeout for lookups and publishes made during sweeps",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "database_url": self._redact_url(self.database.url),
            "redis_url": self._redact_url(self.redis.url),
            "redis_events_stream": self.redis.events_stream,
            "aggregation": {
                "time_window_minutes": str(self.aggregation.time_window_minutes),
                "size_tolerance": str(self.aggregation.size_tolerance),
                "min_purchase_count": str(self.aggregation.min_purchase_count),
                "min_total_usd": str(self.aggregation.min_total_usd),
            },
            "qualification": {
                "min_win_rate": str(self.qualification.min_win_rate),
                "min_total_pnl": str(self.qualification.min_total_pnl),
                "min_total_trades": str(self.qualification.min_total_trades),
            },
            "deactivation": {
                "min_win_rate": str(self.deactivation.min_win_rate),
                "max_inactive_days": str(self.deactivation.max_inactive_days),
            },
            "discovery": {
                "max_new_wallets": str(self.discovery.max_new_wallets),
                "lookback_days": str(self.discovery.lookback_days),
            },
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
