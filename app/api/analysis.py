"""Internal analysis and cost endpoints.

Secured with a static token (X-Internal-Token header); meant for trusted
callers (cron jobs, other services), not end users.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import (
    get_engine,
    get_governor,
    get_limiter,
    get_store,
    require_internal_token,
)
from app.config import get_settings
from app.pipeline.errors import BudgetExceeded, RateLimitExceeded, StorageFailure
from app.pipeline.rate_limits import FixedWindowRateLimiter, check_rate_limit
from app.schemas.analysis import AggregatedRecordData, AnalysisRunRequest, AnalysisRunResult
from app.schemas.costs import CostSummary
from app.services.aggregation import AggregationEngine
from app.services.cost_governor import CostGovernor
from app.storage.base import AnalysisStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", dependencies=[Depends(require_internal_token)])

RUN_OPERATION = "analysis_run"


def _admit_run(
    limiter: FixedWindowRateLimiter,
    governor: CostGovernor,
    body: AnalysisRunRequest,
) -> None:
    """Reject the whole request up front when it cannot start at all.

    Raises 429 when the run itself is rate limited and 402 when the identity
    cannot afford even the cheapest requested call. Partial affordability is
    handled per call by the engine.
    """
    settings = get_settings()
    try:
        check_rate_limit(limiter, body.identity, RUN_OPERATION, settings)
    except RateLimitExceeded as exc:
        raise HTTPException(
            status_code=429,
            detail=str(exc),
            headers={"X-RateLimit-Reset": exc.reset_time.isoformat()},
        ) from exc

    cheapest = min(settings.provider_cost_usd(p) for p in body.providers)
    check = governor.check_allowed(body.identity, cheapest)
    if not check.allowed:
        exc = BudgetExceeded(body.identity, check.current_spend, cheapest, check.limit)
        logger.warning("Run rejected: %s", exc)
        raise HTTPException(status_code=402, detail=str(exc))


@router.post("/analysis/run", response_model=AnalysisRunResult)
async def run_analysis(
    body: AnalysisRunRequest,
    engine: AggregationEngine = Depends(get_engine),
    limiter: FixedWindowRateLimiter = Depends(get_limiter),
    governor: CostGovernor = Depends(get_governor),
) -> AnalysisRunResult:
    """Run an analysis for the listed entities with the listed providers."""
    _admit_run(limiter, governor, body)
    return await engine.run_analysis(
        body.entities,
        body.providers,
        identity=body.identity,
        session_id=body.session_id,
    )


@router.get("/analysis/runs/{session_id}")
def get_run(session_id: str, store: AnalysisStore = Depends(get_store)) -> dict:
    """Progress and outcome of one analysis session."""
    try:
        run = store.get_run(session_id)
    except StorageFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run


@router.get("/analysis/records/{entity_id}", response_model=AggregatedRecordData)
def get_record(entity_id: str, store: AnalysisStore = Depends(get_store)) -> AggregatedRecordData:
    """Stored aggregated record for one entity."""
    try:
        record = store.get_record(entity_id)
    except StorageFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return record


@router.get("/costs/{identity}", response_model=CostSummary)
def get_costs(identity: str, governor: CostGovernor = Depends(get_governor)) -> CostSummary:
    """Month-to-date spend, limit and remaining budget for an identity."""
    try:
        return governor.summary(identity)
    except StorageFailure as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
