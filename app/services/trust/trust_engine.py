"""Trust Scoring Engine.

Scores one claimed field (a Fact) on a 0–100 scale from the evidence attached
to it:

    F   = exp(-ln2 * max(0, age_days) / max(HL, 0.001))      per source
    E   = Σ reliability * F * verification * agreement
    BA  = 1 + λ * clamp(ai_consensus, 0, 1)
    raw = min(100, 100 * (E / Z) * BA)

HL is the half-life for the field's category (trust_constants). Pure
functions only; a malformed fact scores 0 / "low" instead of raising.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from app.pipeline.errors import ScoringError
from app.schemas.trust import Fact, TrustResult, TrustTier
from app.services.trust.trust_constants import (
    CALIBRATION_Z,
    CONSENSUS_LAMBDA,
    HALF_LIFE_CATEGORIES,
    HALF_LIFE_DEFAULT_DAYS,
    MIN_HALF_LIFE_DAYS,
    SCORE_CAP,
    TIER_HIGH_MIN,
    TIER_MEDIUM_MIN,
)

logger = logging.getLogger(__name__)

_CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")


def _field_tokens(field: str) -> set[str]:
    """Split a field name (snake, kebab, camel or spaced) into lowercase tokens."""
    snake = _CAMEL_BOUNDARY_RE.sub("_", field).lower()
    return {t for t in _TOKEN_SPLIT_RE.split(snake) if t}


def half_life_for_field(field: str) -> float:
    """Return the freshness half-life in days for a field name.

    Unknown names fall through to the 90-day default.
    """
    tokens = _field_tokens(field or "")
    for _category, half_life, keywords in HALF_LIFE_CATEGORIES:
        for keyword in keywords:
            if all(part in tokens for part in keyword):
                return half_life
    return HALF_LIFE_DEFAULT_DAYS


def freshness_multiplier(age_days: float, half_life_days: float) -> float:
    """Exponential half-life decay; evidence exactly one half-life old counts 50%.

    Negative ages are clamped to 0 so they never inflate the score.
    """
    age = max(0.0, float(age_days))
    hl = max(float(half_life_days), MIN_HALF_LIFE_DAYS)
    return math.exp(-math.log(2) * age / hl)


def tier_for_score(score: float) -> TrustTier:
    """Map a 0–100 score to its tier: ≥85 high, ≥70 medium, else low."""
    if score >= TIER_HIGH_MIN:
        return "high"
    if score >= TIER_MEDIUM_MIN:
        return "medium"
    return "low"


def _clamp_unit(value: float | None) -> float:
    if value is None:
        return 0.0
    return max(0.0, min(1.0, float(value)))


def _coerce_fact(fact: Fact | Mapping[str, Any]) -> Fact:
    """Validate input into a Fact. Raises ScoringError when it cannot be scored."""
    if isinstance(fact, Fact):
        parsed = fact
    else:
        try:
            parsed = Fact.model_validate(fact)
        except ValidationError as exc:
            raise ScoringError(
                f"malformed fact: {exc.error_count()} validation error(s)"
            ) from exc
    if not parsed.field.strip():
        raise ScoringError("malformed fact: blank field name")
    return parsed


def _fail_closed(reason: str) -> TrustResult:
    return TrustResult(score=0.0, tier="low", components={"error": reason})


def score_fact(fact: Fact | Mapping[str, Any]) -> TrustResult:
    """Compute the trust score and tier for one Fact.

    Accepts a Fact or a plain mapping with the same keys. Zero sources yields
    score 0 and tier "low".
    """
    try:
        parsed = _coerce_fact(fact)
    except ScoringError as exc:
        logger.warning("Trust scoring failed closed: %s", exc)
        return _fail_closed(str(exc))

    half_life = half_life_for_field(parsed.field)
    evidence = 0.0
    for source in parsed.sources:
        f = freshness_multiplier(source.freshness_days, half_life)
        evidence += source.reliability * f * source.verification * source.agreement

    consensus = _clamp_unit(parsed.ai_consensus)
    bonus = 1.0 + CONSENSUS_LAMBDA * consensus
    raw = min(SCORE_CAP, 100.0 * (evidence / CALIBRATION_Z) * bonus)
    score = round(raw, 2)
    tier = tier_for_score(score)

    logger.debug(
        "Trust score: field=%s score=%.2f tier=%s sources=%d HL=%s",
        parsed.field,
        score,
        tier,
        len(parsed.sources),
        half_life,
    )
    return TrustResult(
        score=score,
        tier=tier,
        components={
            "E": evidence,
            "Z": CALIBRATION_Z,
            "BA": bonus,
            "CA": consensus,
            "lambda": CONSENSUS_LAMBDA,
            "HL": half_life,
        },
    )


def score_facts(facts: Iterable[Fact | Mapping[str, Any]]) -> dict[str, TrustResult]:
    """Score several facts; keyed by field name (later duplicates win).

    Malformed entries are keyed by their position as ``"#<index>"``.
    """
    results: dict[str, TrustResult] = {}
    for index, fact in enumerate(facts):
        if isinstance(fact, Fact):
            key = fact.field
        elif isinstance(fact, Mapping) and isinstance(fact.get("field"), str) and fact["field"].strip():
            key = fact["field"]
        else:
            key = f"#{index}"
        results[key] = score_fact(fact)
    return results
