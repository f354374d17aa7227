"""
Claim generator abstraction.

A generator answers one question: what does this provider claim about an
entity? It returns structured claims plus an optional self-reported
confidence. It may NOT: touch the database, check budgets or rate limits,
or decide which claim wins. Gating and merging belong to the aggregation
engine.
"""

from abc import ABC, abstractmethod

from app.schemas.analysis import GeneratorResult


class ClaimGenerator(ABC):
    """Abstract base for claim generators."""

    provider_id: str

    @abstractmethod
    async def generate(self, entity_name: str) -> GeneratorResult:
        """Return the provider's claims for *entity_name*.

        Raises on failure; the caller converts any exception into a skipped
        provider.
        """
        ...
