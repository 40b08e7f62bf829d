"""Application configuration module.

Reads settings from environment variables with sane defaults for a single
school deployment (a few thousand students, a few hundred positions).
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from core.constants import CacheDefaults, DatabaseDefaults, LotteryDefaults
from core.exceptions import ConfigurationError

# Load environment variables from .env file
load_dotenv()


def _get_bool(name: str, default: bool = False) -> bool:
    """Get boolean from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    """Get integer from environment variable with fallback."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_str(name: str, default: str = "") -> str:
    """Get string from environment variable."""
    return os.getenv(name, default)


@dataclass(frozen=True)
class Config:
    environment: str
    debug: bool
    web_host: str
    web_port: int
    secret_key: str
    database_path: str
    log_folder: str
    db_pool_size: int
    db_busy_timeout: int
    lottery_progress_batch: int
    lottery_attempts: int
    lottery_commit_timeout: int
    lottery_commit_retries: int
    report_cache_ttl: int

    def validate(self) -> None:
        """Reject settings the lottery cannot run with."""
        if self.db_pool_size < 1:
            raise ConfigurationError("DB_POOL_SIZE must be at least 1")
        if self.lottery_progress_batch < 1:
            raise ConfigurationError("LOTTERY_PROGRESS_BATCH must be at least 1")
        if self.lottery_attempts < 1:
            raise ConfigurationError("LOTTERY_ATTEMPTS must be at least 1")
        if self.lottery_commit_retries < 1:
            raise ConfigurationError("LOTTERY_COMMIT_RETRIES must be at least 1")
        if self.environment == "production" and self.secret_key.startswith("dev_"):
            raise ConfigurationError("SECRET_KEY must be set in production")


def load_config() -> Config:
    """Load application configuration from environment variables.

    Returns:
        Config: Application configuration with validated values
    """
    config = Config(
        environment=_get_str("ENVIRONMENT", "development"),
        debug=_get_bool("DEBUG", False),
        web_host=_get_str("WEB_HOST", "0.0.0.0"),
        web_port=_get_int("WEB_PORT", 5000),
        secret_key=_get_str("SECRET_KEY", "dev_secret_key_change_in_production"),
        database_path=_get_str("DATABASE_PATH", "data/job_shadow.sqlite"),
        log_folder=_get_str("LOG_FOLDER", "logs"),
        db_pool_size=_get_int("DB_POOL_SIZE", DatabaseDefaults.POOL_SIZE),
        db_busy_timeout=_get_int("DB_BUSY_TIMEOUT", DatabaseDefaults.BUSY_TIMEOUT),
        lottery_progress_batch=_get_int("LOTTERY_PROGRESS_BATCH", LotteryDefaults.PROGRESS_BATCH),
        lottery_attempts=_get_int("LOTTERY_ATTEMPTS", LotteryDefaults.ATTEMPTS),
        lottery_commit_timeout=_get_int("LOTTERY_COMMIT_TIMEOUT", LotteryDefaults.COMMIT_TIMEOUT),
        lottery_commit_retries=_get_int("LOTTERY_COMMIT_RETRIES", LotteryDefaults.COMMIT_RETRIES),
        report_cache_ttl=_get_int("REPORT_CACHE_TTL", CacheDefaults.REPORT_TTL),
    )
    config.validate()
    return config
