"""AggregatedRecord model."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base
from app.models.types import JSONDocument


class AggregatedRecord(Base):
    """Merged, authoritative view of one entity across all analysis runs.

    Exactly one row per entity_id; runs upsert into it (last write wins per
    attribute in aggregated_result). History is not kept here.
    """

    __tablename__ = "aggregated_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    entity_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), default="completed", nullable=False)
    overall_confidence: Mapped[float] = mapped_column(Float, nullable=False)
    field_scores: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    trust_scores: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    aggregated_result: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    provenance_map: Mapped[dict | None] = mapped_column(JSONDocument, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )
