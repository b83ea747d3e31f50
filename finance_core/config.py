"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class FinanceCoreConfig(BaseSettings):
    """Finance core configuration"""

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Money configuration
    default_currency: str = "INR"

    # Amortization configuration
    day_count_basis: str = "actual_365"  # actual_365 or thirty_360

    # Billing configuration
    due_soon_days: int = 5  # Due date within this many days counts as "due soon"
    minimum_due_rate: str = "0.05"  # 5% of total due
    minimum_due_floor_inr: str = "500.00"
    minimum_due_floor_usd: str = "25.00"

    # Credit limit configuration (percent of limit used)
    credit_warning_utilization: str = "80"
    credit_danger_utilization: str = "100"

    # Statement configuration
    installment_description_template: str = "{description} - installment {number} of {total}"

    class Config:
        env_prefix = "FINCORE_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = FinanceCoreConfig()


def get_config() -> FinanceCoreConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> FinanceCoreConfig:
    """Reload configuration from environment"""
    global config
    config = FinanceCoreConfig()
    return config
