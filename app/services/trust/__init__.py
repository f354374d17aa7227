"""Trust scoring for claimed entity attributes."""

from app.services.trust.trust_engine import (
    freshness_multiplier,
    half_life_for_field,
    score_fact,
    score_facts,
    tier_for_score,
)

__all__ = [
    "freshness_multiplier",
    "half_life_for_field",
    "score_fact",
    "score_facts",
    "tier_for_score",
]
