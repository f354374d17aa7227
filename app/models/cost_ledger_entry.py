"""CostLedgerEntry model."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base
from app.models.types import JSONDocument


class CostLedgerEntry(Base):
    """One cost-incurring generator call attributed to an identity.

    Append-only: rows are never updated or deleted by the application.
    idempotency_key is unique when provided so a retried write cannot double-charge.
    """

    __tablename__ = "cost_ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    identity: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    amount_usd: Mapped[float] = mapped_column(Numeric(12, 6, asdecimal=False), nullable=False)
    provider: Mapped[str | None] = mapped_column(String(64), nullable=True)
    related_entity_id: Mapped[str | None] = mapped_column(
        String(255), nullable=True, index=True
    )
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSONDocument, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False, index=True
    )
