"""Pydantic schemas for request/response validation."""

from app.schemas.analysis import (
    AggregatedRecordData,
    AggregatedRecordRead,
    AnalysisResult,
    AnalysisRunRequest,
    AnalysisRunResult,
    GeneratorResult,
    ProgressUpdate,
)
from app.schemas.costs import Budget, CostCheck, CostSummary, LedgerEntry
from app.schemas.trust import Fact, SourceEvidence, TrustResult

__all__ = [
    "AggregatedRecordData",
    "AggregatedRecordRead",
    "AnalysisResult",
    "AnalysisRunRequest",
    "AnalysisRunResult",
    "Budget",
    "CostCheck",
    "CostSummary",
    "Fact",
    "GeneratorResult",
    "LedgerEntry",
    "ProgressUpdate",
    "SourceEvidence",
    "TrustResult",
]
