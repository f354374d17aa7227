"""In-process AnalysisStore for tests and single-shot CLI runs.

Behaves like SqlAnalysisStore: record upserts go through merge_records(), a
repeated idempotency key is rejected, budgets that are inactive are invisible.
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import Any

from app.pipeline.errors import StorageFailure
from app.schemas.analysis import AggregatedRecordData, ProgressUpdate
from app.schemas.costs import Budget, LedgerEntry
from app.storage.base import AnalysisStore, merge_records


class InMemoryAnalysisStore(AnalysisStore):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, AggregatedRecordData] = {}
        self._ledger: list[LedgerEntry] = []
        self._idempotency_keys: set[str] = set()
        self._budgets: dict[str, Budget] = {}
        self._runs: dict[str, dict[str, Any]] = {}

    def get_record(self, entity_id: str) -> AggregatedRecordData | None:
        with self._lock:
            record = self._records.get(entity_id)
            return record.model_copy(deep=True) if record is not None else None

    def upsert_record(self, record: AggregatedRecordData) -> None:
        incoming = record.model_copy(deep=True, update={"warnings": []})
        with self._lock:
            existing = self._records.get(record.entity_id)
            if existing is not None:
                incoming = merge_records(existing, incoming)
            self._records[record.entity_id] = incoming

    def append_ledger_entry(self, entry: LedgerEntry) -> None:
        with self._lock:
            if entry.idempotency_key is not None:
                if entry.idempotency_key in self._idempotency_keys:
                    raise StorageFailure(
                        "append_ledger_entry",
                        ValueError(f"duplicate idempotency key {entry.idempotency_key!r}"),
                    )
                self._idempotency_keys.add(entry.idempotency_key)
            self._ledger.append(entry)

    def ledger_entries(self, identity: str | None = None) -> list[LedgerEntry]:
        with self._lock:
            return [e for e in self._ledger if identity is None or e.identity == identity]

    def sum_ledger(self, identity: str, start: datetime, end: datetime) -> float:
        with self._lock:
            return float(
                sum(
                    e.amount_usd
                    for e in self._ledger
                    if e.identity == identity and start <= e.timestamp < end
                )
            )

    def sum_entity_ledger(self, entity_id: str) -> float:
        with self._lock:
            return float(
                sum(e.amount_usd for e in self._ledger if e.related_entity_id == entity_id)
            )

    def set_budget(self, budget: Budget | None, identity: str | None = None) -> None:
        """Configure (or, with budget=None, remove) the budget for an identity."""
        with self._lock:
            if budget is None:
                if identity is not None:
                    self._budgets.pop(identity, None)
                return
            self._budgets[budget.identity] = budget

    def get_budget(self, identity: str) -> Budget | None:
        with self._lock:
            return self._budgets.get(identity)

    def save_run_progress(
        self,
        update: ProgressUpdate,
        *,
        identity: str | None = None,
        providers: list[str] | None = None,
        error: str | None = None,
    ) -> None:
        with self._lock:
            run = self._runs.setdefault(
                update.session_id,
                {
                    "session_id": update.session_id,
                    "identity": None,
                    "providers": [],
                    "error": None,
                    "started_at": datetime.now(UTC),
                    "finished_at": None,
                },
            )
            if identity is not None:
                run["identity"] = identity
            if providers is not None:
                run["providers"] = list(providers)
            if error is not None:
                run["error"] = error
            run.update(
                status=update.status,
                total=update.total,
                completed=update.completed,
                percentage=update.percentage,
                current_entity=update.current_entity,
            )
            if update.status in ("completed", "failed"):
                run["finished_at"] = datetime.now(UTC)

    def get_run(self, session_id: str) -> dict[str, Any] | None:
        with self._lock:
            run = self._runs.get(session_id)
            return dict(run) if run is not None else None
