"""Cost Governor: monthly budget checks and the append-only spend ledger.

Current spend is the identity's ledger sum for the calendar month (UTC) plus
any amounts reserved by calls that have been approved but not yet recorded.
A call is allowed when current + projected <= limit.

Reservations live in process memory; like the rate limiter they only hold the
line for a single-instance deployment. The ledger itself is durable.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from app.pipeline.errors import BudgetExceeded, StorageFailure
from app.schemas.costs import Budget, CostCheck, CostSummary, LedgerEntry
from app.storage.base import AnalysisStore

if TYPE_CHECKING:
    from app.config import Settings

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    """First instant of now's month and of the following month, both UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    now = now.astimezone(UTC)
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


@dataclass(frozen=True)
class Reservation:
    """Budget held for one approved call until it is recorded or released."""

    reservation_id: str
    identity: str
    amount_usd: float
    entity_id: str | None = None


class CostGovernor:
    """Gate billable generator calls against per-identity monthly budgets."""

    def __init__(
        self,
        store: AnalysisStore,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if settings is None:
            from app.config import get_settings

            settings = get_settings()
        self._store = store
        self._settings = settings
        self._clock = clock or _utc_now
        self._lock = threading.Lock()
        self._reservations: dict[str, Reservation] = {}

    def budget_for(self, identity: str) -> Budget:
        """Configured budget for *identity*, falling back to the deployment default."""
        budget = self._store.get_budget(identity)
        if budget is not None:
            return budget
        return Budget(
            identity=identity,
            monthly_limit_usd=self._settings.default_monthly_budget_usd,
            alert_threshold=self._settings.budget_alert_threshold,
        )

    def month_spend(self, identity: str) -> float:
        """Recorded ledger spend for the current month (excludes reservations)."""
        start, end = month_bounds(self._clock())
        return self._store.sum_ledger(identity, start, end)

    def _reserved_locked(self, identity: str) -> float:
        return sum(r.amount_usd for r in self._reservations.values() if r.identity == identity)

    def _check_locked(self, identity: str, projected_cost_usd: float) -> CostCheck:
        if projected_cost_usd < 0:
            raise ValueError("projected_cost_usd must be >= 0")
        limit = self.budget_for(identity).monthly_limit_usd
        current = self.month_spend(identity) + self._reserved_locked(identity)
        return CostCheck(
            allowed=current + projected_cost_usd <= limit,
            current_spend=round(current, 6),
            limit=limit,
            projected_cost=projected_cost_usd,
            remaining=round(max(0.0, limit - current), 6),
        )

    def check_allowed(self, identity: str, projected_cost_usd: float) -> CostCheck:
        """Would a call costing *projected_cost_usd* stay within this month's budget?"""
        with self._lock:
            return self._check_locked(identity, projected_cost_usd)

    def reserve(
        self,
        identity: str,
        cost_usd: float,
        *,
        entity_id: str | None = None,
    ) -> Reservation:
        """Check and hold *cost_usd* in one step.

        Raises:
            BudgetExceeded: the hold would push the identity past its limit.
        """
        with self._lock:
            check = self._check_locked(identity, cost_usd)
            if not check.allowed:
                logger.warning(
                    "Budget exceeded: identity=%s current=%.4f projected=%.4f limit=%.2f",
                    identity,
                    check.current_spend,
                    cost_usd,
                    check.limit,
                )
                raise BudgetExceeded(identity, check.current_spend, cost_usd, check.limit)
            reservation = Reservation(
                reservation_id=uuid.uuid4().hex,
                identity=identity,
                amount_usd=cost_usd,
                entity_id=entity_id,
            )
            self._reservations[reservation.reservation_id] = reservation
            return reservation

    def release(self, reservation: Reservation) -> None:
        """Drop a hold for a call that never reached the provider."""
        with self._lock:
            self._reservations.pop(reservation.reservation_id, None)

    def record(self, entry: LedgerEntry, reservation: Reservation | None = None) -> LedgerEntry:
        """Append *entry* to the ledger and release *reservation*.

        The reservation is released even when the append fails, so a storage
        outage cannot leak held budget; the StorageFailure still propagates.
        Once the append succeeds the entry counts as recorded: a failure while
        checking the alert threshold is logged, not raised.
        """
        try:
            self._store.append_ledger_entry(entry)
        finally:
            if reservation is not None:
                self.release(reservation)
        try:
            self._maybe_alert(entry)
        except StorageFailure as exc:
            logger.error(
                "Budget alert check failed after recording: identity=%s amount=%.4f: %s",
                entry.identity,
                entry.amount_usd,
                exc,
            )
        return entry

    def _maybe_alert(self, entry: LedgerEntry) -> None:
        budget = self.budget_for(entry.identity)
        if budget.monthly_limit_usd <= 0:
            return
        threshold = budget.alert_threshold * budget.monthly_limit_usd
        spend = self.month_spend(entry.identity)
        if spend >= threshold > spend - entry.amount_usd:
            logger.warning(
                "Budget alert: identity=%s spend=%.4f crossed %.0f%% of limit %.2f",
                entry.identity,
                spend,
                budget.alert_threshold * 100,
                budget.monthly_limit_usd,
            )

    def entity_cost(self, entity_id: str) -> float:
        """Cumulative ledger spend tied to *entity_id*, recomputed from the ledger."""
        return self._store.sum_entity_ledger(entity_id)

    def summary(self, identity: str) -> CostSummary:
        start, _ = month_bounds(self._clock())
        limit = self.budget_for(identity).monthly_limit_usd
        spend = self.month_spend(identity)
        return CostSummary(
            identity=identity,
            month_start=start,
            current_spend=round(spend, 6),
            limit=limit,
            remaining=round(max(0.0, limit - spend), 6),
        )
