"""
Application configuration. Loads from environment variables.
Secrets and sensitive config must never be hardcoded.
"""

import os

from dotenv import load_dotenv

load_dotenv()
from functools import lru_cache
from typing import Optional


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Return cached settings instance."""
    return Settings()


# USD per entity per generator call. Providers missing here use
# DEFAULT_PROVIDER_COST_USD.
PROVIDER_CALL_COSTS_USD: dict[str, float] = {
    "openai": 0.03,
    "anthropic": 0.025,
    "gemini": 0.02,
    "perplexity": 0.01,
}


def _parse_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _parse_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class Settings:
    """Application settings loaded from environment."""

    # App
    app_name: str = "FactLedger"
    debug: bool = False

    # Database (postgresql+psycopg for psycopg3; use postgresql:// for psycopg2)
    database_url: str = "postgresql+psycopg://localhost:5432/factledger_dev"
    db_connect_timeout: int = 10  # seconds

    # Security
    internal_job_token: str = ""  # Required for /internal/* endpoints

    # Generators (OpenAI-compatible chat APIs)
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    perplexity_api_key: Optional[str] = None
    perplexity_model: str = "sonar"
    perplexity_base_url: str = "https://api.perplexity.ai"
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-3-5-haiku-latest"
    anthropic_base_url: str = "https://api.anthropic.com/v1/"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai/"
    llm_max_retries: int = 3
    # Per-call timeout. Required: there is no implicit "wait forever".
    generator_timeout_seconds: float = 45.0

    # Rate limiting (fixed window, in-process, single instance only)
    global_rate_limit_window_ms: int = 60_000
    global_rate_limit_max_requests: int = 100
    identity_rate_limit_window_ms: int = 60_000
    identity_rate_limit_max_requests: int = 10

    # Cost governance
    default_monthly_budget_usd: float = 10.0
    budget_alert_threshold: float = 0.8  # fraction of the monthly budget
    default_provider_cost_usd: float = 0.02

    # Progress
    progress_queue_maxsize: int = 100

    def __init__(self) -> None:
        self.app_name = os.getenv("APP_NAME", self.app_name)
        self.debug = os.getenv("DEBUG", "false").lower() == "true"

        default_user = os.getenv("PGUSER") or os.getenv("USER") or "postgres"
        default_url = (
            f"postgresql+psycopg://{default_user}:"
            f"{os.getenv('PGPASSWORD', '')}@"
            f"{os.getenv('PGHOST', 'localhost')}:"
            f"{os.getenv('PGPORT', '5432')}/"
            f"{os.getenv('PGDATABASE', 'factledger_dev')}"
        )
        raw_url = os.getenv("DATABASE_URL", default_url)
        # Ensure psycopg3 driver if URL uses generic postgresql://
        if raw_url.startswith("postgresql://") and not raw_url.startswith("postgresql+psycopg"):
            raw_url = raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
        self.database_url = raw_url
        self.db_connect_timeout = _parse_int("DB_CONNECT_TIMEOUT", self.db_connect_timeout)

        self.internal_job_token = os.getenv("INTERNAL_JOB_TOKEN", "")

        self.openai_api_key = os.getenv("OPENAI_API_KEY")
        self.openai_model = os.getenv("OPENAI_MODEL", self.openai_model)
        self.perplexity_api_key = os.getenv("PERPLEXITY_API_KEY")
        self.perplexity_model = os.getenv("PERPLEXITY_MODEL", self.perplexity_model)
        self.perplexity_base_url = os.getenv("PERPLEXITY_BASE_URL", self.perplexity_base_url)
        self.anthropic_api_key = os.getenv("ANTHROPIC_API_KEY")
        self.anthropic_model = os.getenv("ANTHROPIC_MODEL", self.anthropic_model)
        self.anthropic_base_url = os.getenv("ANTHROPIC_BASE_URL", self.anthropic_base_url)
        self.gemini_api_key = os.getenv("GEMINI_API_KEY")
        self.gemini_model = os.getenv("GEMINI_MODEL", self.gemini_model)
        self.gemini_base_url = os.getenv("GEMINI_BASE_URL", self.gemini_base_url)
        self.llm_max_retries = _parse_int("LLM_MAX_RETRIES", self.llm_max_retries)
        self.generator_timeout_seconds = _parse_float(
            "GENERATOR_TIMEOUT_SECONDS", self.generator_timeout_seconds
        )
        if self.generator_timeout_seconds <= 0:
            raise ValueError("GENERATOR_TIMEOUT_SECONDS must be greater than 0")

        self.global_rate_limit_window_ms = _parse_int(
            "GLOBAL_RATE_LIMIT_WINDOW_MS", self.global_rate_limit_window_ms
        )
        self.global_rate_limit_max_requests = _parse_int(
            "GLOBAL_RATE_LIMIT_MAX_REQUESTS", self.global_rate_limit_max_requests
        )
        self.identity_rate_limit_window_ms = _parse_int(
            "IDENTITY_RATE_LIMIT_WINDOW_MS", self.identity_rate_limit_window_ms
        )
        self.identity_rate_limit_max_requests = _parse_int(
            "IDENTITY_RATE_LIMIT_MAX_REQUESTS", self.identity_rate_limit_max_requests
        )

        self.default_monthly_budget_usd = _parse_float(
            "DEFAULT_MONTHLY_BUDGET_USD", self.default_monthly_budget_usd
        )
        self.budget_alert_threshold = _parse_float(
            "BUDGET_ALERT_THRESHOLD", self.budget_alert_threshold
        )
        self.default_provider_cost_usd = _parse_float(
            "DEFAULT_PROVIDER_COST_USD", self.default_provider_cost_usd
        )

        self.progress_queue_maxsize = _parse_int(
            "PROGRESS_QUEUE_MAXSIZE", self.progress_queue_maxsize
        )

    def provider_cost_usd(self, provider_id: str) -> float:
        """Projected USD cost of one generator call for *provider_id*."""
        return PROVIDER_CALL_COSTS_USD.get(
            provider_id.strip().lower(), self.default_provider_cost_usd
        )
