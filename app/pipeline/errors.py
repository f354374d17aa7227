"""Pipeline error taxonomy.

RateLimitExceeded and BudgetExceeded are raised before dispatch and abort only
the call they gate. GeneratorFailure is converted into a skipped provider by the
aggregation engine. ScoringError never escapes the trust engine (it fails
closed). StorageFailure is surfaced as a warning next to in-memory results.
"""

from __future__ import annotations

from datetime import datetime


class PipelineError(Exception):
    """Base class for fact pipeline errors."""


class RateLimitExceeded(PipelineError):
    """A fixed-window limit rejected the call. scope is "global" or "identity"."""

    def __init__(
        self,
        identity: str,
        operation: str,
        reset_time: datetime,
        scope: str = "identity",
    ) -> None:
        self.identity = identity
        self.operation = operation
        self.reset_time = reset_time
        self.scope = scope
        super().__init__(
            f"Rate limit exceeded ({scope}) for {identity} on {operation}; "
            f"resets at {reset_time.isoformat()}"
        )


class BudgetExceeded(PipelineError):
    """The projected call would push the identity past its monthly budget."""

    def __init__(
        self,
        identity: str,
        current_spend: float,
        projected_cost: float,
        limit: float,
    ) -> None:
        self.identity = identity
        self.current_spend = current_spend
        self.projected_cost = projected_cost
        self.limit = limit
        remaining = max(0.0, limit - current_spend)
        super().__init__(
            f"Projected cost ${projected_cost:.2f} exceeds remaining budget for {identity} "
            f"(remaining: ${remaining:.2f} of ${limit:.2f})"
        )


class GeneratorFailure(PipelineError):
    """One provider failed or timed out for one entity."""

    def __init__(
        self,
        provider_id: str,
        entity_name: str,
        reason: str,
        timed_out: bool = False,
    ) -> None:
        self.provider_id = provider_id
        self.entity_name = entity_name
        self.reason = reason
        self.timed_out = timed_out
        super().__init__(f"Generator {provider_id} failed for {entity_name!r}: {reason}")


class ScoringError(PipelineError):
    """A Fact could not be scored (missing field name, out-of-range evidence)."""


class StorageFailure(PipelineError):
    """An upsert, ledger write or read against the store failed."""

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        self.operation = operation
        self.cause = cause
        message = f"Storage operation '{operation}' failed"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
