"""Trust scoring schemas: evidence attached to a claimed value, and the scoring output."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

TrustTier = Literal["high", "medium", "low"]


class SourceEvidence(BaseModel):
    """One generator's support for a claimed value. Never persisted on its own."""

    model_config = ConfigDict(frozen=True)

    source: str = Field(..., min_length=1)
    reliability: float = Field(..., ge=0.0, le=1.0)
    freshness_days: float = Field(0.0, description="Age of the evidence in days; negatives clamp to 0")
    verification: float = Field(..., ge=0.0, le=1.0)
    agreement: float = Field(..., ge=0.0, le=1.0)


class Fact(BaseModel):
    """One claimed attribute of an entity with all of its evidence."""

    model_config = ConfigDict(frozen=True)

    field: str = Field(..., min_length=1)
    value: Any = None
    sources: tuple[SourceEvidence, ...] = ()
    ai_consensus: float | None = Field(None, description="Cross-model agreement in [0, 1]")


class TrustResult(BaseModel):
    """Score for one Fact. components are kept for audit only."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(..., ge=0.0, le=100.0)
    tier: TrustTier
    components: dict[str, Any] = Field(default_factory=dict)
