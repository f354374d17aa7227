"""Analysis schemas: generator output, per-entity results, run results and stored records."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

EntityStatus = Literal["completed", "failed"]


class GeneratorResult(BaseModel):
    """Structured claims returned by one provider for one entity."""

    provider_id: str = Field(..., min_length=1)
    claims: dict[str, Any] = Field(default_factory=dict)
    confidence_score: float | None = Field(None, ge=0.0, le=100.0)
    # Days since the provider's underlying data was current; 0 for fresh output
    data_age_days: float = Field(0.0, ge=0.0)


class AggregatedRecordData(BaseModel):
    """In-memory result of merging one entity's raw payload and provider results."""

    entity_id: str
    entity_name: str | None = None
    status: EntityStatus = "completed"
    overall_confidence: float
    field_scores: dict[str, float] = Field(default_factory=dict)
    trust_scores: dict[str, dict[str, Any]] = Field(default_factory=dict)
    aggregated_result: dict[str, Any] = Field(default_factory=dict)
    provenance_map: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)


class AggregatedRecordRead(BaseModel):
    """Schema for reading a stored aggregated record (response)."""

    model_config = ConfigDict(from_attributes=True)

    entity_id: str
    entity_name: str | None = None
    status: str
    overall_confidence: float
    field_scores: dict[str, float] | None = None
    trust_scores: dict[str, dict[str, Any]] | None = None
    aggregated_result: dict[str, Any] | None = None
    provenance_map: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AnalysisResult(BaseModel):
    """Caller-facing outcome for one entity."""

    name: str
    entity_id: str
    status: EntityStatus
    fields: dict[str, Any] = Field(default_factory=dict)
    data_quality_score: float | None = None
    providers_used: list[str] = Field(default_factory=list)
    providers_skipped: list[str] = Field(default_factory=list)
    skip_reasons: dict[str, str] = Field(default_factory=dict)
    cost_usd: float = 0.0


class AnalysisRunResult(BaseModel):
    """Caller-facing outcome of one run_analysis call."""

    success: bool
    session_id: str
    results: list[AnalysisResult] = Field(default_factory=list)
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)
    total_cost_usd: float = 0.0


class AnalysisRunRequest(BaseModel):
    """Request body for POST /internal/analysis/run."""

    model_config = ConfigDict(extra="forbid")

    identity: str = Field(..., min_length=1, max_length=255)
    entities: list[str] = Field(..., min_length=1, max_length=50)
    providers: list[str] = Field(..., min_length=1, max_length=10)
    session_id: str | None = Field(None, max_length=64)


class ProgressUpdate(BaseModel):
    """One progress notification for a running analysis session."""

    session_id: str
    status: str
    completed: int
    total: int
    percentage: float
    current_entity: str | None = None
    error: str | None = None
