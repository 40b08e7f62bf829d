"""Tests for environment configuration, seeds and the report cache."""

import pytest

from config import load_config
from core.exceptions import ConfigurationError
from services.cache import ReportCache
from services.lottery import SecureLottery


def test_defaults(monkeypatch):
    for name in ("ENVIRONMENT", "DATABASE_PATH", "DB_POOL_SIZE", "LOTTERY_ATTEMPTS"):
        monkeypatch.delenv(name, raising=False)

    config = load_config()

    assert config.environment == "development"
    assert config.database_path == "data/job_shadow.sqlite"
    assert config.db_pool_size == 10
    assert config.lottery_attempts == 1


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DB_POOL_SIZE", "3")
    monkeypatch.setenv("LOTTERY_ATTEMPTS", "5")
    monkeypatch.setenv("DEBUG", "yes")
    monkeypatch.setenv("WEB_PORT", "not-a-number")

    config = load_config()

    assert config.db_pool_size == 3
    assert config.lottery_attempts == 5
    assert config.debug is True
    assert config.web_port == 5000


@pytest.mark.parametrize("name, value", [
    ("DB_POOL_SIZE", "0"),
    ("LOTTERY_PROGRESS_BATCH", "0"),
    ("LOTTERY_ATTEMPTS", "0"),
    ("LOTTERY_COMMIT_RETRIES", "0"),
])
def test_invalid_values_are_rejected(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError):
        load_config()


def test_production_requires_secret(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    monkeypatch.delenv("SECRET_KEY", raising=False)

    with pytest.raises(ConfigurationError):
        load_config()


def test_generated_seeds_fit_sqlite_integer():
    lottery = SecureLottery()
    seeds = {lottery.generate_seed() for _ in range(20)}

    assert len(seeds) == 20
    assert all(0 <= seed < 2 ** 63 for seed in seeds)


def test_pinned_seed_is_kept():
    lottery = SecureLottery()

    assert lottery.resolve_seed(123) == 123
    with pytest.raises(ValueError):
        lottery.resolve_seed(2 ** 63)


def test_report_cache_invalidates_one_job():
    cache = ReportCache(ttl=60)
    loads = []

    def loader(value):
        def load():
            loads.append(value)
            return value
        return load

    assert cache.get_or_set("statistics", 1, loader("a")) == "a"
    assert cache.get_or_set("statistics", 1, loader("b")) == "a"
    cache.get_or_set("positions", 2, loader("c"))

    cache.invalidate(1)

    assert cache.get_or_set("statistics", 1, loader("d")) == "d"
    assert cache.get_or_set("positions", 2, loader("e")) == "c"
    assert loads == ["a", "c", "d"]
