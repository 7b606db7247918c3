"""Tests for environment-driven settings."""

from glucolink.services.fetcher import create_fetcher
from glucolink.services.storage import MemoryStore
from glucolink.settings import Settings


def test_environment_names_are_aliases():
    settings = Settings.model_validate(
        {
            "LIBRE_USERNAME": "user@example.com",
            "LIBRE_PASSWORD": "secret",
            "CACHE_FRESH_MINUTES": "2",
            "RATE_LIMIT_GRACE_MULTIPLIER": "1.5",
            "UNRELATED_VARIABLE": "ignored",
        }
    )

    assert settings.username == "user@example.com"
    assert settings.cache_fresh_minutes == 2
    assert settings.rate_limit_grace_multiplier == 1.5
    assert settings.token_ttl_minutes == 50
    assert settings.max_rate_limit_retries is None


def test_create_fetcher_applies_settings(clock):
    settings = Settings(
        username="user@example.com",
        password="secret",
        cache_fresh_minutes=2,
        error_grace_multiplier=4,
        min_request_interval=10,
    )

    fetcher = create_fetcher(settings, clock=clock, store=MemoryStore())

    assert fetcher.config.cache_fresh_window == 120
    assert fetcher.config.error_grace_window == 480
    assert fetcher.config.rate_limit_grace_window == 240
    assert fetcher.get_status()["throttler"]["time_until_turn"] == 0
