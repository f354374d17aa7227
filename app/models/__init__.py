"""SQLAlchemy models."""

from app.models.aggregated_record import AggregatedRecord
from app.models.analysis_run import AnalysisRun
from app.models.cost_budget import CostBudget
from app.models.cost_ledger_entry import CostLedgerEntry

__all__ = [
    "AggregatedRecord",
    "AnalysisRun",
    "CostBudget",
    "CostLedgerEntry",
]
