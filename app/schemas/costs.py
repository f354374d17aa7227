"""Cost governance schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntry(BaseModel):
    """One immutable cost-incurring event attributed to an identity."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(..., min_length=1, max_length=255)
    amount_usd: float = Field(..., ge=0.0)
    timestamp: datetime
    provider: str | None = None
    related_entity_id: str | None = None
    idempotency_key: str | None = Field(None, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Budget(BaseModel):
    """Monthly spend cap for one identity."""

    identity: str
    monthly_limit_usd: float = Field(..., ge=0.0)
    alert_threshold: float = Field(0.8, ge=0.0, le=1.0)


class CostCheck(BaseModel):
    """Outcome of a budget check for a projected call."""

    allowed: bool
    current_spend: float
    limit: float
    projected_cost: float = 0.0
    remaining: float = 0.0


class CostSummary(BaseModel):
    """Month-to-date spend for an identity (response)."""

    identity: str
    month_start: datetime
    current_spend: float
    limit: float
    remaining: float
