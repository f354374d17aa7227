"""SQLAlchemy-backed AnalysisStore.

Each call opens its own session from the factory and commits before returning,
so the store is safe to share between concurrent analysis runs. Record writes
try INSERT ... ON CONFLICT DO NOTHING keyed by entity_id (PostgreSQL in
deployment, SQLite in tests). When the row already exists it is re-read
under SELECT ... FOR UPDATE and combined with merge_records() inside the same
transaction, so both backends share one set of merge rules.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.aggregated_record import AggregatedRecord
from app.models.analysis_run import AnalysisRun
from app.models.cost_budget import CostBudget
from app.models.cost_ledger_entry import CostLedgerEntry
from app.pipeline.errors import StorageFailure
from app.schemas.analysis import AggregatedRecordData, ProgressUpdate
from app.schemas.costs import Budget, LedgerEntry
from app.storage.base import AnalysisStore, merge_records

logger = logging.getLogger(__name__)

_TERMINAL_RUN_STATUSES = frozenset({"completed", "failed"})


def _dialect_insert(dialect_name: str):
    """Return the dialect-specific insert() that supports ON CONFLICT clauses."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert

        return insert
    if dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert

        return insert
    raise StorageFailure(f"upsert_record (unsupported dialect {dialect_name})")


def _record_columns(record: AggregatedRecordData) -> dict[str, Any]:
    return {
        "entity_name": record.entity_name,
        "status": record.status,
        "overall_confidence": record.overall_confidence,
        "field_scores": record.field_scores,
        "trust_scores": record.trust_scores,
        "aggregated_result": record.aggregated_result,
        "provenance_map": record.provenance_map,
    }


def _record_data(row: AggregatedRecord) -> AggregatedRecordData:
    return AggregatedRecordData(
        entity_id=row.entity_id,
        entity_name=row.entity_name,
        status=row.status,
        overall_confidence=row.overall_confidence,
        field_scores=row.field_scores or {},
        trust_scores=row.trust_scores or {},
        aggregated_result=row.aggregated_result or {},
        provenance_map=row.provenance_map or {},
    )


class SqlAnalysisStore(AnalysisStore):
    """AnalysisStore over a SQLAlchemy session factory."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Aggregated records
    # ------------------------------------------------------------------

    def get_record(self, entity_id: str) -> AggregatedRecordData | None:
        with self._session_factory() as db:
            try:
                row = db.scalars(
                    select(AggregatedRecord).where(AggregatedRecord.entity_id == entity_id)
                ).first()
            except SQLAlchemyError as exc:
                raise StorageFailure("get_record", exc) from exc
            if row is None:
                return None
            return _record_data(row)

    def upsert_record(self, record: AggregatedRecordData) -> None:
        now = datetime.now(UTC)
        with self._session_factory() as db:
            try:
                insert = _dialect_insert(db.get_bind().dialect.name)
                stmt = (
                    insert(AggregatedRecord)
                    .values(
                        entity_id=record.entity_id,
                        created_at=now,
                        updated_at=now,
                        **_record_columns(record),
                    )
                    .on_conflict_do_nothing(index_elements=["entity_id"])
                )
                if db.execute(stmt).rowcount == 0:
                    row = db.scalars(
                        select(AggregatedRecord)
                        .where(AggregatedRecord.entity_id == record.entity_id)
                        .with_for_update()
                    ).one()
                    merged = merge_records(_record_data(row), record)
                    for column, value in _record_columns(merged).items():
                        setattr(row, column, value)
                    row.updated_at = now
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("Upsert failed for entity_id=%s: %s", record.entity_id, exc)
                raise StorageFailure("upsert_record", exc) from exc

    # ------------------------------------------------------------------
    # Cost ledger and budgets
    # ------------------------------------------------------------------

    def append_ledger_entry(self, entry: LedgerEntry) -> None:
        with self._session_factory() as db:
            try:
                db.add(
                    CostLedgerEntry(
                        identity=entry.identity,
                        amount_usd=entry.amount_usd,
                        provider=entry.provider,
                        related_entity_id=entry.related_entity_id,
                        idempotency_key=entry.idempotency_key,
                        metadata_json=dict(entry.metadata),
                        created_at=entry.timestamp,
                    )
                )
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error(
                    "Ledger append failed: identity=%s amount=%.4f key=%s: %s",
                    entry.identity,
                    entry.amount_usd,
                    entry.idempotency_key,
                    exc,
                )
                raise StorageFailure("append_ledger_entry", exc) from exc

    def sum_ledger(self, identity: str, start: datetime, end: datetime) -> float:
        with self._session_factory() as db:
            try:
                total = db.scalar(
                    select(func.coalesce(func.sum(CostLedgerEntry.amount_usd), 0)).where(
                        CostLedgerEntry.identity == identity,
                        CostLedgerEntry.created_at >= start,
                        CostLedgerEntry.created_at < end,
                    )
                )
            except SQLAlchemyError as exc:
                raise StorageFailure("sum_ledger", exc) from exc
        return float(total or 0.0)

    def sum_entity_ledger(self, entity_id: str) -> float:
        with self._session_factory() as db:
            try:
                total = db.scalar(
                    select(func.coalesce(func.sum(CostLedgerEntry.amount_usd), 0)).where(
                        CostLedgerEntry.related_entity_id == entity_id
                    )
                )
            except SQLAlchemyError as exc:
                raise StorageFailure("sum_entity_ledger", exc) from exc
        return float(total or 0.0)

    def get_budget(self, identity: str) -> Budget | None:
        with self._session_factory() as db:
            try:
                row = db.get(CostBudget, identity)
            except SQLAlchemyError as exc:
                raise StorageFailure("get_budget", exc) from exc
            if row is None or not row.is_active:
                return None
            return Budget(
                identity=row.identity,
                monthly_limit_usd=float(row.monthly_cost_limit_usd),
                alert_threshold=row.alert_threshold,
            )

    # ------------------------------------------------------------------
    # Run tracking
    # ------------------------------------------------------------------

    def save_run_progress(
        self,
        update: ProgressUpdate,
        *,
        identity: str | None = None,
        providers: list[str] | None = None,
        error: str | None = None,
    ) -> None:
        with self._session_factory() as db:
            try:
                run = db.scalars(
                    select(AnalysisRun).where(AnalysisRun.session_id == update.session_id)
                ).first()
                if run is None:
                    run = AnalysisRun(session_id=update.session_id, identity=identity)
                    db.add(run)
                if identity is not None:
                    run.identity = identity
                if providers is not None:
                    run.providers_selected = list(providers)
                run.status = update.status
                run.total_entities = update.total
                run.completed_entities = update.completed
                run.percentage = update.percentage
                run.current_entity = update.current_entity
                if error is not None:
                    run.error_message = error
                if update.status in _TERMINAL_RUN_STATUSES:
                    run.finished_at = datetime.now(UTC)
                db.commit()
            except SQLAlchemyError as exc:
                db.rollback()
                raise StorageFailure("save_run_progress", exc) from exc

    def get_run(self, session_id: str) -> dict[str, Any] | None:
        with self._session_factory() as db:
            try:
                run = db.scalars(
                    select(AnalysisRun).where(AnalysisRun.session_id == session_id)
                ).first()
            except SQLAlchemyError as exc:
                raise StorageFailure("get_run", exc) from exc
            if run is None:
                return None
            return {
                "session_id": run.session_id,
                "identity": run.identity,
                "status": run.status,
                "total": run.total_entities,
                "completed": run.completed_entities,
                "percentage": run.percentage,
                "current_entity": run.current_entity,
                "providers": run.providers_selected or [],
                "error": run.error_message,
                "started_at": run.started_at,
                "finished_at": run.finished_at,
            }
