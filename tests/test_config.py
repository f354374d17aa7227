"""
Configuration tests.
"""

import pytest

from app.config import PROVIDER_CALL_COSTS_USD, Settings, get_settings


def test_get_settings_returns_cached_settings() -> None:
    settings = get_settings()
    assert isinstance(settings, Settings)
    assert get_settings() is settings
    assert settings.app_name == "FactLedger"


def test_database_url_from_env() -> None:
    """conftest forces an in-memory SQLite URL."""
    assert get_settings().database_url == "sqlite://"


def test_generic_postgres_url_gets_psycopg_driver(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db:5432/facts")
    assert Settings().database_url == "postgresql+psycopg://u:p@db:5432/facts"


def test_defaults() -> None:
    settings = get_settings()
    assert settings.generator_timeout_seconds == 45.0
    assert settings.global_rate_limit_max_requests == 100
    assert settings.identity_rate_limit_max_requests == 10
    assert settings.global_rate_limit_window_ms == 60_000
    assert settings.default_monthly_budget_usd == 10.0
    assert settings.budget_alert_threshold == 0.8


def test_knobs_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GENERATOR_TIMEOUT_SECONDS", "12.5")
    monkeypatch.setenv("IDENTITY_RATE_LIMIT_MAX_REQUESTS", "0")
    monkeypatch.setenv("GLOBAL_RATE_LIMIT_WINDOW_MS", "5000")
    monkeypatch.setenv("DEFAULT_MONTHLY_BUDGET_USD", "25")
    monkeypatch.setenv("LLM_MAX_RETRIES", "5")
    settings = Settings()
    assert settings.generator_timeout_seconds == 12.5
    assert settings.identity_rate_limit_max_requests == 0
    assert settings.global_rate_limit_window_ms == 5000
    assert settings.default_monthly_budget_usd == 25.0
    assert settings.llm_max_retries == 5


def test_generator_provider_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "a-key")
    monkeypatch.setenv("GEMINI_API_KEY", "g-key")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-1.5-pro")
    monkeypatch.setenv("PROGRESS_QUEUE_MAXSIZE", "25")
    settings = Settings()
    assert settings.anthropic_api_key == "a-key"
    assert settings.anthropic_base_url == "https://api.anthropic.com/v1/"
    assert settings.gemini_api_key == "g-key"
    assert settings.gemini_model == "gemini-1.5-pro"
    assert settings.progress_queue_maxsize == 25


@pytest.mark.parametrize("value", ["0", "-1"])
def test_generator_timeout_must_be_positive(monkeypatch: pytest.MonkeyPatch, value: str) -> None:
    monkeypatch.setenv("GENERATOR_TIMEOUT_SECONDS", value)
    with pytest.raises(ValueError, match="GENERATOR_TIMEOUT_SECONDS"):
        Settings()


def test_provider_cost_lookup() -> None:
    settings = get_settings()
    assert settings.provider_cost_usd("openai") == PROVIDER_CALL_COSTS_USD["openai"]
    assert settings.provider_cost_usd(" Perplexity ") == 0.01
    assert settings.provider_cost_usd("unknown") == settings.default_provider_cost_usd
