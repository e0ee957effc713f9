"""Configuration package."""

from savings_engine.config.settings import (
    AppSettings,
    ExecutionSettings,
    MarketDataSettings,
    PlanningSettings,
    RateLimitSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "ExecutionSettings",
    "MarketDataSettings",
    "PlanningSettings",
    "RateLimitSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
