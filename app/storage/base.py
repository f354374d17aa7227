"""
Store abstraction used by the aggregation engine and the cost governor.

The engines never touch sessions directly; they call these methods, and every
implementation raises StorageFailure when the backend fails.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from app.schemas.analysis import AggregatedRecordData, ProgressUpdate
from app.schemas.costs import Budget, LedgerEntry


def merge_records(
    existing: AggregatedRecordData, incoming: AggregatedRecordData
) -> AggregatedRecordData:
    """Combine a stored record with a freshly aggregated one.

    Both backends apply these rules so they never disagree:

    - aggregated_result, trust_scores and provenance_map["sources"] merge per
      top-level key, incoming keys winning. Values (None, nested dicts) are
      stored as given and never merged further.
    - A failed aggregation that no provider contributed to only flips status
      to "failed"; the last good data stays.
    - entity_name keeps the stored value when the incoming one is missing.
    - Everything else is replaced.
    """
    entity_name = incoming.entity_name or existing.entity_name
    if incoming.status == "failed" and not incoming.provenance_map.get("providers"):
        return existing.model_copy(
            deep=True, update={"status": "failed", "entity_name": entity_name, "warnings": []}
        )
    provenance_map = dict(incoming.provenance_map)
    if "sources" in existing.provenance_map or "sources" in incoming.provenance_map:
        provenance_map["sources"] = {
            **existing.provenance_map.get("sources", {}),
            **incoming.provenance_map.get("sources", {}),
        }
    return incoming.model_copy(
        deep=True,
        update={
            "entity_name": entity_name,
            "aggregated_result": {**existing.aggregated_result, **incoming.aggregated_result},
            "trust_scores": {**existing.trust_scores, **incoming.trust_scores},
            "provenance_map": provenance_map,
            "warnings": [],
        },
    )


class AnalysisStore(ABC):
    """Abstract base for analysis persistence backends."""

    @abstractmethod
    def get_record(self, entity_id: str) -> AggregatedRecordData | None:
        """Return the live aggregated record for *entity_id*, or None."""
        ...

    @abstractmethod
    def upsert_record(self, record: AggregatedRecordData) -> None:
        """Insert or update the record for record.entity_id in one atomic step.

        An existing record is combined with *record* by merge_records().
        """
        ...

    @abstractmethod
    def append_ledger_entry(self, entry: LedgerEntry) -> None:
        """Append one immutable cost entry."""
        ...

    @abstractmethod
    def sum_ledger(self, identity: str, start: datetime, end: datetime) -> float:
        """Sum of the identity's ledger amounts with start <= timestamp < end."""
        ...

    @abstractmethod
    def sum_entity_ledger(self, entity_id: str) -> float:
        """Sum of all ledger amounts tied to *entity_id*."""
        ...

    @abstractmethod
    def get_budget(self, identity: str) -> Budget | None:
        """Active monthly budget configured for *identity*, or None for the default."""
        ...

    @abstractmethod
    def save_run_progress(
        self,
        update: ProgressUpdate,
        *,
        identity: str | None = None,
        providers: list[str] | None = None,
        error: str | None = None,
    ) -> None:
        """Create or update the tracking row for update.session_id."""
        ...

    @abstractmethod
    def get_run(self, session_id: str) -> dict[str, Any] | None:
        """Return the tracking row for *session_id* as a dict, or None."""
        ...
