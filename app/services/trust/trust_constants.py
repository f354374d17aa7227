"""Trust scoring and aggregation constants.

Centralized configuration for the Trust Scoring Engine and the aggregation
field-score heuristics. No magic numbers inside the engines; all values are
defined here.
"""

from __future__ import annotations

# ── Calibration ─────────────────────────────────────────────────────────

# Evidence normaliser: one fresh, fully verified, fully agreeing source with
# reliability 1.0 lands at 100 / 1.5 ≈ 66.7 before the consensus bonus.
CALIBRATION_Z: float = 1.5
# Consensus weight: full cross-model agreement boosts the score by up to 15%.
CONSENSUS_LAMBDA: float = 0.15
SCORE_CAP: float = 100.0
MIN_HALF_LIFE_DAYS: float = 0.001

# ── Tiers ───────────────────────────────────────────────────────────────

TIER_HIGH_MIN: float = 85.0
TIER_MEDIUM_MIN: float = 70.0

# ── Freshness half-lives (days) by field category ───────────────────────

HALF_LIFE_PRICE_DAYS: float = 0.02  # same-day only
HALF_LIFE_MARKET_DAYS: float = 2.0
HALF_LIFE_FUNDING_DAYS: float = 365.0
HALF_LIFE_STABLE_DAYS: float = 730.0
HALF_LIFE_NEWS_DAYS: float = 14.0
HALF_LIFE_DEFAULT_DAYS: float = 90.0

# Ordered: first category whose keyword matches the field name wins.
# A keyword is a tuple of name tokens that must all be present.
HALF_LIFE_CATEGORIES: tuple[tuple[str, float, tuple[tuple[str, ...], ...]], ...] = (
    ("price", HALF_LIFE_PRICE_DAYS, (("price",), ("prices",), ("stock",), ("quote",))),
    (
        "market",
        HALF_LIFE_MARKET_DAYS,
        (("market", "cap"), ("marketcap",), ("volume",), ("ratio",), ("ratios",)),
    ),
    ("funding", HALF_LIFE_FUNDING_DAYS, (("funding",), ("round",), ("rounds",), ("raised",))),
    (
        "stable",
        HALF_LIFE_STABLE_DAYS,
        (("founded",), ("founding",), ("location",), ("headquarters",), ("industry",)),
    ),
    ("news", HALF_LIFE_NEWS_DAYS, (("news",), ("sentiment",), ("headline",), ("headlines",))),
)

# ── Provider reliability used when building evidence from generator output ──

PROVIDER_RELIABILITY: dict[str, float] = {
    "openai": 0.9,
    "anthropic": 0.9,
    "perplexity": 0.85,
    "gemini": 0.85,
}
DEFAULT_PROVIDER_RELIABILITY: float = 0.75

# ── Aggregation field scores ────────────────────────────────────────────

DEFAULT_OVERALL_CONFIDENCE: float = 75.0
DEFAULT_ACCURACY_SCORE: float = 75.0
CANONICAL_IDENTITY_FIELD: str = "name"
COMPLETENESS_WITH_IDENTITY: float = 85.0
COMPLETENESS_WITHOUT_IDENTITY: float = 50.0
# TODO: placeholder baselines; replace with freshness derived from fact ages
# and relevance from the requested analysis dimensions.
FRESHNESS_BASELINE_SCORE: float = 90.0
RELEVANCE_BASELINE_SCORE: float = 88.0
