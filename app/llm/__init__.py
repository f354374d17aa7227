"""Claim generators. A generator reports claims; it never gates, scores or persists."""

from app.llm.openai_provider import OpenAICompatibleGenerator
from app.llm.provider import ClaimGenerator
from app.llm.router import clear_generator_cache, get_generator

__all__ = ["ClaimGenerator", "OpenAICompatibleGenerator", "clear_generator_cache", "get_generator"]
