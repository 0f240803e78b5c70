"""
Configuration management for the churnwatch alerting engine
"""
from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "churnwatch Partner Alerting Engine"
    environment: str = "development"
    log_level: str = "INFO"
    log_dir: Optional[str] = None  # file sinks are only added when set

    # Windows (days)
    active_days: int = 30
    churn_days: int = 60
    short_window_days: int = 7
    long_window_days: int = 30

    # Scoring
    default_avg_order_value: float = 5000.0  # rubles
    concentration_threshold_pct: float = 30.0

    # Alerts cache
    alerts_cache_max_entries: int = 500
    alerts_cache_ttl_seconds: Optional[int] = None  # None = until invalidated

    # Feature Flags
    enable_sku_alerts: bool = True
    enable_concentration_alerts: bool = True

    class Config:
        env_file = ".env"
        env_prefix = "CHURNWATCH_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
