"""Persistence for aggregated records, the cost ledger, budgets and run progress."""

from app.storage.base import AnalysisStore
from app.storage.memory import InMemoryAnalysisStore
from app.storage.sql_store import SqlAnalysisStore

__all__ = ["AnalysisStore", "InMemoryAnalysisStore", "SqlAnalysisStore"]
