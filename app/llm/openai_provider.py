"""
OpenAI-compatible claim generator.

Uses the openai Python SDK (>=1.0.0) async client. Serves OpenAI itself and
any provider exposing the same chat-completions API (Anthropic, Gemini,
Perplexity) via base_url.
Retries with exponential backoff on rate-limit, timeout and connection errors.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from datetime import UTC, date, datetime
from typing import Any

from openai import APIConnectionError, APIError, APITimeoutError, AsyncOpenAI, RateLimitError

from app.llm.provider import ClaimGenerator
from app.prompts.loader import render_prompt
from app.schemas.analysis import GeneratorResult

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = "entity_claims_v1"
SYSTEM_PROMPT = "You return factual company data as a single JSON object."

# Retry configuration
INITIAL_BACKOFF = 1.0  # seconds
BACKOFF_MULTIPLIER = 2.0

# Errors that trigger retry
_RETRYABLE_ERRORS = (RateLimitError, APITimeoutError, APIConnectionError)


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def _age_days(as_of: Any, today: date) -> float:
    """Days between an ISO date the provider reports and today; 0 when unknown."""
    if not isinstance(as_of, str) or not as_of.strip():
        return 0.0
    try:
        reported = date.fromisoformat(as_of.strip()[:10])
    except ValueError:
        return 0.0
    return float(max(0, (today - reported).days))


def parse_generator_response(provider_id: str, text: str, today: date | None = None) -> GeneratorResult:
    """Turn a model's JSON reply into a GeneratorResult.

    Raises:
        ValueError: The reply is not a JSON object with a "claims" object.
    """
    try:
        payload = json.loads(_strip_code_fence(text))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{provider_id} returned non-JSON output") from exc
    if not isinstance(payload, dict) or not isinstance(payload.get("claims"), dict):
        raise ValueError(f"{provider_id} response has no claims object")

    claims = {
        str(k): v
        for k, v in payload["claims"].items()
        if v is not None and not (isinstance(v, str) and not v.strip())
    }
    confidence = payload.get("confidence_score")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = None
    else:
        confidence = max(0.0, min(100.0, float(confidence)))

    return GeneratorResult(
        provider_id=provider_id,
        claims=claims,
        confidence_score=confidence,
        data_age_days=_age_days(payload.get("as_of"), today or datetime.now(UTC).date()),
    )


class OpenAICompatibleGenerator(ClaimGenerator):
    """Claim generator backed by an OpenAI-compatible chat completions API."""

    def __init__(
        self,
        provider_id: str,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        timeout: float = 45.0,
        max_retries: int = 3,
        json_mode: bool = True,
    ) -> None:
        self.provider_id = provider_id
        self.model = model
        self.timeout = timeout
        self.max_retries = max_retries
        self.json_mode = json_mode
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)

    # ------------------------------------------------------------------
    # ClaimGenerator interface
    # ------------------------------------------------------------------

    async def generate(self, entity_name: str) -> GeneratorResult:
        prompt = render_prompt(PROMPT_TEMPLATE, ENTITY_NAME=entity_name)
        create_kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.0,
        }
        if self.json_mode:
            create_kwargs["response_format"] = {"type": "json_object"}
        text = await self._call_with_retry(create_kwargs, entity_name)
        return parse_generator_response(self.provider_id, text)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _call_with_retry(self, create_kwargs: dict[str, Any], entity_name: str) -> str:
        """Call the API with exponential-backoff retry on rate limit/timeout/connection."""
        backoff = INITIAL_BACKOFF
        for attempt in range(1, self.max_retries + 1):
            try:
                start = time.monotonic()
                response = await self._client.chat.completions.create(**create_kwargs)
                elapsed = time.monotonic() - start

                text = response.choices[0].message.content or ""
                usage = response.usage
                logger.info(
                    "Generator call: provider=%s model=%s entity=%r tokens_in=%d tokens_out=%d latency=%.2fs",
                    self.provider_id,
                    create_kwargs["model"],
                    entity_name,
                    usage.prompt_tokens if usage else 0,
                    usage.completion_tokens if usage else 0,
                    elapsed,
                )
                return text

            except _RETRYABLE_ERRORS as exc:
                if attempt == self.max_retries:
                    logger.error(
                        "%s retryable error: giving up after %d attempts: %s",
                        self.provider_id,
                        self.max_retries,
                        exc,
                    )
                    raise
                logger.warning(
                    "%s %s: retry %d/%d in %.1fs",
                    self.provider_id,
                    type(exc).__name__,
                    attempt,
                    self.max_retries,
                    backoff,
                )
                await asyncio.sleep(backoff)
                backoff *= BACKOFF_MULTIPLIER

            except APIError as exc:
                logger.error("%s API error: %s", self.provider_id, exc)
                raise
        raise RuntimeError(f"{self.provider_id}: max_retries must be >= 1")
