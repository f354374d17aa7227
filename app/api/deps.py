"""Shared FastAPI dependencies for API routes.

Long-lived services are built once in the app lifespan and kept on
``app.state``; routes reach them through these dependencies so tests can swap
them by assigning to ``app.state``.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Header, HTTPException, Request

from app.config import get_settings
from app.pipeline.rate_limits import FixedWindowRateLimiter
from app.services.aggregation import AggregationEngine
from app.services.cost_governor import CostGovernor
from app.storage.base import AnalysisStore

logger = logging.getLogger(__name__)

__all__ = [
    "get_engine",
    "get_governor",
    "get_limiter",
    "get_store",
    "require_internal_token",
]


def require_internal_token(x_internal_token: str = Header(...)) -> None:
    """Validate the internal job token from the request header.

    Uses constant-time comparison to prevent timing attacks.
    Raises 403 if the token is empty or does not match the configured value.
    """
    expected = get_settings().internal_job_token
    if not expected or not secrets.compare_digest(x_internal_token, expected):
        logger.warning("Internal endpoint auth failed: invalid or missing token")
        raise HTTPException(status_code=403, detail="Invalid internal token")


def _state_attr(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"Service '{name}' is not initialised")
    return service


def get_store(request: Request) -> AnalysisStore:
    return _state_attr(request, "store")


def get_limiter(request: Request) -> FixedWindowRateLimiter:
    return _state_attr(request, "limiter")


def get_governor(request: Request) -> CostGovernor:
    return _state_attr(request, "governor")


def get_engine(request: Request) -> AggregationEngine:
    return _state_attr(request, "engine")
