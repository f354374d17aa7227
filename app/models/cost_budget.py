"""CostBudget model."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import Boolean, DateTime, Float, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.session import Base


class CostBudget(Base):
    """Per-identity monthly spend cap. Identities without an active row use the default budget."""

    __tablename__ = "cost_budgets"

    identity: Mapped[str] = mapped_column(String(255), primary_key=True)
    monthly_cost_limit_usd: Mapped[float] = mapped_column(
        Numeric(12, 6, asdecimal=False), nullable=False
    )
    alert_threshold: Mapped[float] = mapped_column(Float, default=0.8, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )
