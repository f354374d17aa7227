"""Test builders shared across modules."""

from __future__ import annotations

from datetime import UTC, datetime

from app.config import Settings
from app.schemas.analysis import GeneratorResult
from app.schemas.costs import LedgerEntry
from app.llm.provider import ClaimGenerator


def make_settings(**overrides) -> Settings:
    """Settings with class defaults only (no env reads), plus *overrides*."""
    s = object.__new__(Settings)  # skip __init__ (avoids env reads)
    for k, v in overrides.items():
        setattr(s, k, v)
    return s


def ledger_entry(
    identity: str,
    amount_usd: float,
    *,
    timestamp: datetime | None = None,
    entity_id: str | None = None,
    provider: str | None = "openai",
    idempotency_key: str | None = None,
) -> LedgerEntry:
    return LedgerEntry(
        identity=identity,
        amount_usd=amount_usd,
        timestamp=timestamp or datetime.now(UTC),
        provider=provider,
        related_entity_id=entity_id,
        idempotency_key=idempotency_key,
    )


class StubGenerator(ClaimGenerator):
    """Generator returning canned claims, raising, or sleeping past a timeout."""

    def __init__(
        self,
        provider_id: str,
        claims: dict | None = None,
        confidence_score: float | None = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
        data_age_days: float = 0.0,
    ) -> None:
        self.provider_id = provider_id
        self.claims = claims or {}
        self.confidence_score = confidence_score
        self.error = error
        self.delay = delay
        self.data_age_days = data_age_days
        self.calls: list[str] = []

    async def generate(self, entity_name: str) -> GeneratorResult:
        import asyncio

        self.calls.append(entity_name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GeneratorResult(
            provider_id=self.provider_id,
            claims=dict(self.claims),
            confidence_score=self.confidence_score,
            data_age_days=self.data_age_days,
        )
