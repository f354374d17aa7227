"""
Claim generator router / factory.

Returns the ClaimGenerator for a provider id based on application settings.
Instances are cached per provider id to reuse HTTP connections.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from app.llm.provider import ClaimGenerator

if TYPE_CHECKING:
    from app.config import Settings

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openai", "anthropic", "gemini", "perplexity")

# provider_id -> (has a base_url setting, json_mode).
# All four are reached through OpenAI-compatible chat endpoints. Perplexity
# rejects response_format=json_object and Anthropic's compatibility layer
# ignores it, so both rely on the prompt for JSON output.
_PROVIDER_OPTIONS: dict[str, tuple[bool, bool]] = {
    "openai": (False, True),
    "anthropic": (True, False),
    "gemini": (True, True),
    "perplexity": (True, False),
}

# Module-level cache: provider_id -> instance
_generator_cache: dict[str, ClaimGenerator] = {}


def get_generator(provider_id: str, settings: Settings | None = None) -> ClaimGenerator:
    """Return a cached ClaimGenerator for *provider_id*.

    Raises:
        ValueError: If the provider is not supported or its API key is missing.
    """
    if settings is None:
        from app.config import get_settings

        settings = get_settings()

    key = provider_id.strip().lower()
    if key in _generator_cache:
        return _generator_cache[key]

    if key not in _PROVIDER_OPTIONS:
        raise ValueError(
            f"Unknown generator provider: '{provider_id}'. "
            f"Supported providers: {', '.join(SUPPORTED_PROVIDERS)}"
        )

    api_key = getattr(settings, f"{key}_api_key", None)
    if not api_key:
        raise ValueError(
            f"{key.upper()}_API_KEY is required for the {key} generator. "
            "Set it in your environment or .env file."
        )

    from app.llm.openai_provider import OpenAICompatibleGenerator

    has_base_url, json_mode = _PROVIDER_OPTIONS[key]
    generator = OpenAICompatibleGenerator(
        provider_id=key,
        api_key=api_key,
        model=getattr(settings, f"{key}_model"),
        base_url=getattr(settings, f"{key}_base_url") if has_base_url else None,
        timeout=settings.generator_timeout_seconds,
        max_retries=settings.llm_max_retries,
        json_mode=json_mode,
    )

    _generator_cache[key] = generator
    logger.info("Created generator: provider=%s model=%s", key, generator.model)
    return generator


def clear_generator_cache() -> None:
    """Clear the generator cache. Useful for testing."""
    _generator_cache.clear()
