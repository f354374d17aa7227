"""Pipeline package: error taxonomy, rate limits, progress observers."""

from app.pipeline.errors import (
    BudgetExceeded,
    GeneratorFailure,
    PipelineError,
    RateLimitExceeded,
    ScoringError,
    StorageFailure,
)
from app.pipeline.rate_limits import FixedWindowRateLimiter, check_rate_limit

__all__ = [
    "BudgetExceeded",
    "FixedWindowRateLimiter",
    "GeneratorFailure",
    "PipelineError",
    "RateLimitExceeded",
    "ScoringError",
    "StorageFailure",
    "check_rate_limit",
]
