"""
Configuration Management for the Savings Engine

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All tunables live here (undo windows, rate limits,
market-data timeouts, planning bounds). Components accept explicit values
in their constructors and only fall back to these settings when none are
given, so tests never depend on the environment.
"""

from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExecutionSettings(BaseSettings):
    """Lifecycle windows for monthly executions."""

    model_config = SettingsConfigDict(
        env_prefix="EXECUTION_",
        extra="ignore"
    )

    completion_undo_window_hours: float = Field(
        default=24.0,
        gt=0,
        description="How long a completed month can be reopened"
    )
    start_undo_window_hours: float = Field(
        default=24.0,
        gt=0,
        description="How long a freshly started month can be reverted to draft"
    )

    @property
    def completion_undo_window_millis(self) -> int:
        return int(self.completion_undo_window_hours * 3_600_000)

    @property
    def start_undo_window_millis(self) -> int:
        return int(self.start_undo_window_hours * 3_600_000)


class RateLimitSettings(BaseSettings):
    """Token bucket parameters for outbound market-data calls."""

    model_config = SettingsConfigDict(
        env_prefix="RATE_LIMIT_",
        extra="ignore"
    )

    exchange_max_tokens: float = Field(
        default=10.0,
        gt=0,
        description="Burst size for exchange-rate lookups"
    )
    exchange_refill_per_second: float = Field(
        default=0.5,
        gt=0,
        description="Sustained exchange-rate lookups per second"
    )
    balance_max_tokens: float = Field(
        default=5.0,
        gt=0,
        description="Burst size for on-chain balance lookups"
    )
    balance_refill_per_second: float = Field(
        default=1.0,
        gt=0,
        description="Sustained on-chain balance lookups per second"
    )


class MarketDataSettings(BaseSettings):
    """Exchange-rate and on-chain balance gateway configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MARKET_DATA_",
        extra="ignore"
    )

    fetch_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Per-call timeout for external fetches"
    )
    rate_cache_ttl_seconds: float = Field(
        default=300.0,
        ge=0,
        description="How long a fetched exchange rate is considered fresh"
    )
    balance_cache_ttl_seconds: float = Field(
        default=300.0,
        ge=0,
        description="How long a fetched on-chain balance is considered fresh"
    )
    retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per exchange-rate fetch before giving up"
    )


class PlanningSettings(BaseSettings):
    """Monthly planning configuration."""

    model_config = SettingsConfigDict(
        env_prefix="PLANNING_",
        extra="ignore"
    )

    payment_day: int = Field(
        default=1,
        ge=1,
        le=28,
        description="Day of month on which contributions are planned"
    )
    flex_min: float = Field(
        default=0.0,
        ge=0.0,
        description="Lowest flex multiplier a user may apply"
    )
    flex_max: float = Field(
        default=1.5,
        ge=0.0,
        le=2.0,
        description="Highest flex multiplier a user may apply"
    )
    display_currency: str = Field(
        default="USD",
        min_length=1,
        description="Currency used for planning totals"
    )

    @model_validator(mode="after")
    def validate_flex_bounds(self) -> "PlanningSettings":
        if self.flex_min > self.flex_max:
            raise ValueError("flex_min cannot exceed flex_max")
        self.display_currency = self.display_currency.strip().upper()
        return self


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def execution(self) -> ExecutionSettings:
        return ExecutionSettings()

    @property
    def rate_limits(self) -> RateLimitSettings:
        return RateLimitSettings()

    @property
    def market_data(self) -> MarketDataSettings:
        return MarketDataSettings()

    @property
    def planning(self) -> PlanningSettings:
        return PlanningSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings sections load from the current environment.

    Returns a dict of {section_name: is_valid}, plus `<section>_error`
    entries for the ones that failed.
    """
    results = {}

    settings = get_settings()

    for name in ("execution", "rate_limits", "market_data", "planning", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
