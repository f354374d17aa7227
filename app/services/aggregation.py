"""Aggregation Engine: fan out to claim generators, merge their claims, persist.

run_analysis gates every (entity, provider) call through the rate limiter and
the cost governor, dispatches the admitted calls for an entity concurrently,
and waits for all of them to settle. A failed, timed-out or gated provider is
skipped for that entity; it never aborts the run.

aggregate is the synchronous merge step: it turns provider claims into
scored facts, picks one value per field, computes the record-level scores and
upserts the record. The upsert is serialized per entity id.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import threading
import uuid
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from app.pipeline.errors import (
    BudgetExceeded,
    GeneratorFailure,
    RateLimitExceeded,
    StorageFailure,
)
from app.pipeline.progress import (
    CompositeProgressObserver,
    ProgressObserver,
    RunTrackingObserver,
    safe_notify,
)
from app.pipeline.rate_limits import FixedWindowRateLimiter, check_rate_limit
from app.schemas.analysis import (
    AggregatedRecordData,
    AnalysisResult,
    AnalysisRunResult,
    GeneratorResult,
    ProgressUpdate,
)
from app.schemas.costs import LedgerEntry
from app.schemas.trust import Fact, SourceEvidence
from app.services.cost_governor import CostGovernor, Reservation
from app.services.trust.trust_constants import (
    CANONICAL_IDENTITY_FIELD,
    COMPLETENESS_WITH_IDENTITY,
    COMPLETENESS_WITHOUT_IDENTITY,
    DEFAULT_ACCURACY_SCORE,
    DEFAULT_OVERALL_CONFIDENCE,
    DEFAULT_PROVIDER_RELIABILITY,
    FRESHNESS_BASELINE_SCORE,
    PROVIDER_RELIABILITY,
    RELEVANCE_BASELINE_SCORE,
)
from app.services.trust.trust_engine import score_fact
from app.storage.base import AnalysisStore

if TYPE_CHECKING:
    from app.config import Settings
    from app.llm.provider import ClaimGenerator

logger = logging.getLogger(__name__)

QUALITY_SCORE_KEY = "data_quality_score"

# Legal suffixes dropped when deriving an entity id from a name
_LEGAL_SUFFIXES = ("incorporated", "corporation", "limited", "inc", "llc", "ltd", "corp", "co")
_SUFFIX_RE = re.compile(r"(?:\s+(?:" + "|".join(_LEGAL_SUFFIXES) + r"))+$")
_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


def normalize_entity_name(name: str) -> str:
    """Derive a stable entity id from a display name.

    Lowercase, strip punctuation, drop trailing legal suffixes, collapse
    whitespace. "Acme Co." and "ACME, Inc" both become "acme". A name made of
    nothing but a suffix keeps it ("Co" -> "co").
    """
    if not name:
        return ""
    cleaned = _WS_RE.sub(" ", _PUNCT_RE.sub(" ", name.lower())).strip()
    stripped = _SUFFIX_RE.sub("", cleaned).strip()
    return stripped or cleaned


def _value_key(value: Any) -> str:
    if isinstance(value, str):
        return "s:" + _WS_RE.sub(" ", value).strip().casefold()
    try:
        return "j:" + json.dumps(value, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return "r:" + repr(value)


def provider_reliability(provider_id: str) -> float:
    return PROVIDER_RELIABILITY.get(provider_id.strip().lower(), DEFAULT_PROVIDER_RELIABILITY)


def merge_claims(
    provider_results: Sequence[GeneratorResult],
) -> tuple[dict[str, Any], dict[str, dict[str, Any]], dict[str, str]]:
    """Pick one value per claimed field.

    Every distinct value for a field becomes a Fact whose sources are the
    providers that claimed it. agreement and ai_consensus are both the share
    of providers supporting the value. The highest-scoring value wins; on a
    tie the value first claimed (in provider order) wins.

    Returns (values, trust_scores, sources): winning value, trust result and
    winning provider per field.
    """
    total = len(provider_results)
    candidates: dict[str, dict[str, dict[str, Any]]] = {}
    for result in provider_results:
        for field, value in result.claims.items():
            by_value = candidates.setdefault(field, {})
            entry = by_value.setdefault(_value_key(value), {"value": value, "supporters": []})
            entry["supporters"].append(result)

    values: dict[str, Any] = {}
    trust_scores: dict[str, dict[str, Any]] = {}
    sources: dict[str, str] = {}
    for field, by_value in candidates.items():
        scored = []
        for entry in by_value.values():
            supporters: list[GeneratorResult] = entry["supporters"]
            share = len(supporters) / total
            fact = Fact(
                field=field,
                value=entry["value"],
                sources=tuple(
                    SourceEvidence(
                        source=r.provider_id,
                        reliability=provider_reliability(r.provider_id),
                        freshness_days=r.data_age_days,
                        verification=(
                            r.confidence_score / 100.0 if r.confidence_score is not None else 1.0
                        ),
                        agreement=share,
                    )
                    for r in supporters
                ),
                ai_consensus=share,
            )
            scored.append((entry, score_fact(fact)))
        # max() keeps the first of equal scores, i.e. the earliest claimed value
        entry, trust = max(scored, key=lambda pair: pair[1].score)
        winners = [r.provider_id for r in entry["supporters"]]
        values[field] = entry["value"]
        sources[field] = winners[0]
        trust_scores[field] = {
            "score": trust.score,
            "tier": trust.tier,
            "providers": winners,
            "alternatives": len(by_value) - 1,
        }
    return values, trust_scores, sources


def compute_overall_confidence(
    quality_score: float | None, provider_results: Sequence[GeneratorResult]
) -> float:
    """Mean of the payload quality score and provider confidences; 75 when none."""
    values = [float(quality_score)] if quality_score is not None else []
    values += [r.confidence_score for r in provider_results if r.confidence_score is not None]
    if not values:
        return DEFAULT_OVERALL_CONFIDENCE
    return round(sum(values) / len(values), 2)


def compute_field_scores(attributes: Mapping[str, Any], quality_score: float | None) -> dict[str, float]:
    """Heuristic per-dimension scores. freshness and relevance are fixed baselines."""
    identity_value = attributes.get(CANONICAL_IDENTITY_FIELD)
    has_identity = identity_value is not None and str(identity_value).strip() != ""
    return {
        "completeness": COMPLETENESS_WITH_IDENTITY if has_identity else COMPLETENESS_WITHOUT_IDENTITY,
        "accuracy": float(quality_score) if quality_score is not None else DEFAULT_ACCURACY_SCORE,
        "freshness": FRESHNESS_BASELINE_SCORE,
        "relevance": RELEVANCE_BASELINE_SCORE,
    }


class AggregationEngine:
    """Runs analyses and merges their output into stored aggregated records."""

    def __init__(
        self,
        store: AnalysisStore,
        limiter: FixedWindowRateLimiter,
        governor: CostGovernor,
        *,
        generator_factory: Callable[[str], ClaimGenerator] | None = None,
        settings: Settings | None = None,
        observer: ProgressObserver | None = None,
        timeout_seconds: float | None = None,
        track_runs: bool = True,
    ) -> None:
        if settings is None:
            from app.config import get_settings

            settings = get_settings()
        if generator_factory is None:
            from app.llm.router import get_generator

            def generator_factory(provider_id: str) -> ClaimGenerator:
                return get_generator(provider_id, settings)

        timeout = timeout_seconds if timeout_seconds is not None else settings.generator_timeout_seconds
        if timeout <= 0:
            raise ValueError("timeout_seconds must be greater than 0")

        self._store = store
        self._limiter = limiter
        self._governor = governor
        self._generator_factory = generator_factory
        self._settings = settings
        self._observer = observer
        self._timeout = timeout
        self._track_runs = track_runs
        self._entity_locks: dict[str, threading.Lock] = {}
        self._entity_locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Merge + persist
    # ------------------------------------------------------------------

    def _entity_lock(self, entity_id: str) -> threading.Lock:
        with self._entity_locks_guard:
            lock = self._entity_locks.get(entity_id)
            if lock is None:
                lock = threading.Lock()
                self._entity_locks[entity_id] = lock
            return lock

    def aggregate(
        self,
        entity_id: str,
        raw_payload: Mapping[str, Any] | None,
        provider_results: Sequence[GeneratorResult],
        *,
        entity_name: str | None = None,
        status: str = "completed",
    ) -> AggregatedRecordData:
        """Merge *raw_payload* with provider claims and upsert the record.

        Winning provider claims override payload attributes of the same name.
        The store combines this with any existing record via merge_records(),
        so a failed aggregation with no provider results only marks the stored
        record failed. A storage failure is logged and returned as a warning on
        the record; the merged record is returned either way.
        """
        if not entity_id:
            raise ValueError("entity_id is required")
        payload = dict(raw_payload or {})
        quality_score = payload.pop(QUALITY_SCORE_KEY, None)
        if quality_score is not None:
            quality_score = float(quality_score)

        values, trust_scores, sources = merge_claims(provider_results)
        attributes = {**payload, **values}
        provider_ids = [r.provider_id for r in provider_results]

        if entity_name is None and attributes.get(CANONICAL_IDENTITY_FIELD):
            entity_name = str(attributes[CANONICAL_IDENTITY_FIELD])

        record = AggregatedRecordData(
            entity_id=entity_id,
            entity_name=entity_name,
            status=status,
            overall_confidence=compute_overall_confidence(quality_score, provider_results),
            field_scores=compute_field_scores(attributes, quality_score),
            trust_scores=trust_scores,
            aggregated_result=attributes,
            provenance_map={
                "sources": sources,
                "providers": provider_ids,
                "provider_count": len(provider_ids),
                "created_at": datetime.now(UTC).isoformat(),
            },
        )

        with self._entity_lock(entity_id):
            try:
                self._store.upsert_record(record)
            except StorageFailure as exc:
                logger.error("Aggregated record not persisted for %s: %s", entity_id, exc)
                record.warnings.append(f"Record for {entity_id} was not persisted: {exc}")
        return record

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def run_analysis(
        self,
        entity_names: Sequence[str],
        providers: Sequence[str],
        *,
        identity: str,
        session_id: str | None = None,
        observer: ProgressObserver | None = None,
    ) -> AnalysisRunResult:
        """Analyze each entity with each provider and merge the results.

        Returns success=false with an error (never raises) when there is
        nothing to run or when no entity produced results.
        """
        session_id = session_id or uuid.uuid4().hex
        provider_ids = list(dict.fromkeys(p.strip().lower() for p in providers if p and p.strip()))
        if not entity_names:
            return AnalysisRunResult(success=False, session_id=session_id, error="No entities to analyze")
        if not provider_ids:
            return AnalysisRunResult(success=False, session_id=session_id, error="No providers selected")

        warnings: list[str] = []
        entities: list[tuple[str, str]] = []
        seen: set[str] = set()
        for name in entity_names:
            entity_id = normalize_entity_name(name)
            if not entity_id:
                warnings.append(f"Skipped blank entity name {name!r}")
                continue
            if entity_id in seen:
                warnings.append(f"Skipped duplicate entity {name!r} ({entity_id})")
                continue
            seen.add(entity_id)
            entities.append((name.strip(), entity_id))
        if not entities:
            return AnalysisRunResult(
                success=False, session_id=session_id, error="No valid entities to analyze", warnings=warnings
            )

        observers = [o for o in (self._observer, observer) if o is not None]
        if self._track_runs:
            observers.append(RunTrackingObserver(self._store, identity=identity, providers=provider_ids))
        progress = CompositeProgressObserver(observers)

        total = len(entities)
        completed = 0
        logger.info(
            "Analysis %s started: identity=%s entities=%d providers=%s",
            session_id,
            identity,
            total,
            provider_ids,
        )
        safe_notify(
            progress,
            ProgressUpdate(session_id=session_id, status="running", completed=0, total=total, percentage=0.0),
        )

        async def run_one(name: str, entity_id: str) -> tuple[AnalysisResult, list[str]]:
            nonlocal completed
            try:
                return await self._analyze_entity(name, entity_id, provider_ids, identity, session_id)
            finally:
                # No await between increment and notify: updates leave in completion order
                completed += 1
                safe_notify(
                    progress,
                    ProgressUpdate(
                        session_id=session_id,
                        status="running",
                        completed=completed,
                        total=total,
                        percentage=round(100.0 * completed / total, 2),
                        current_entity=name,
                    ),
                )

        outcomes = await asyncio.gather(
            *(run_one(name, entity_id) for name, entity_id in entities),
            return_exceptions=True,
        )

        results: list[AnalysisResult] = []
        for (name, entity_id), outcome in zip(entities, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.exception("Analysis of %r failed unexpectedly", name, exc_info=outcome)
                warnings.append(f"{name}: {outcome}")
                results.append(
                    AnalysisResult(
                        name=name,
                        entity_id=entity_id,
                        status="failed",
                        providers_skipped=list(provider_ids),
                    )
                )
                continue
            result, entity_warnings = outcome
            results.append(result)
            warnings.extend(entity_warnings)

        succeeded = sum(1 for r in results if r.status == "completed")
        total_cost = round(sum(r.cost_usd for r in results), 6)
        error = None
        if succeeded == 0:
            error = f"All {total} entities failed: no provider returned results"

        safe_notify(
            progress,
            ProgressUpdate(
                session_id=session_id,
                status="completed" if succeeded else "failed",
                completed=total,
                total=total,
                percentage=100.0,
                error=error,
            ),
        )
        logger.info(
            "Analysis %s finished: %d/%d entities completed cost=$%.4f",
            session_id,
            succeeded,
            total,
            total_cost,
        )
        return AnalysisRunResult(
            success=succeeded > 0,
            session_id=session_id,
            results=results,
            error=error,
            warnings=warnings,
            total_cost_usd=total_cost,
        )

    async def _analyze_entity(
        self,
        name: str,
        entity_id: str,
        provider_ids: list[str],
        identity: str,
        session_id: str,
    ) -> tuple[AnalysisResult, list[str]]:
        skip_reasons: dict[str, str] = {}
        dispatched: list[tuple[str, ClaimGenerator, Reservation]] = []

        for provider_id in provider_ids:
            try:
                check_rate_limit(self._limiter, identity, f"generate:{provider_id}", self._settings)
            except RateLimitExceeded as exc:
                skip_reasons[provider_id] = f"rate_limited:{exc.scope}"
                continue
            try:
                reservation = self._governor.reserve(
                    identity, self._settings.provider_cost_usd(provider_id), entity_id=entity_id
                )
            except BudgetExceeded:
                skip_reasons[provider_id] = "budget_exceeded"
                continue
            try:
                generator = self._generator_factory(provider_id)
            except (KeyError, ValueError) as exc:
                self._governor.release(reservation)
                logger.warning("Generator %s unavailable: %s", provider_id, exc)
                skip_reasons[provider_id] = f"unavailable: {exc}"
                continue
            dispatched.append((provider_id, generator, reservation))

        outcomes = await asyncio.gather(
            *(self._call_generator(generator, provider_id, name) for provider_id, generator, _ in dispatched),
            return_exceptions=True,
        )

        warnings: list[str] = []
        successes: list[GeneratorResult] = []
        cost = 0.0
        for (provider_id, _, reservation), outcome in zip(dispatched, outcomes):
            ok = isinstance(outcome, GeneratorResult)
            try:
                self._governor.record(
                    LedgerEntry(
                        identity=identity,
                        amount_usd=reservation.amount_usd,
                        timestamp=datetime.now(UTC),
                        provider=provider_id,
                        related_entity_id=entity_id,
                        # One reservation per dispatched call, so keys never repeat across runs
                        idempotency_key=reservation.reservation_id,
                        metadata={"session_id": session_id, "success": ok},
                    ),
                    reservation,
                )
                cost += reservation.amount_usd
            except StorageFailure as exc:
                logger.error("Cost not recorded for %s/%s: %s", entity_id, provider_id, exc)
                warnings.append(f"Cost for {name}/{provider_id} was not recorded: {exc}")

            if ok:
                if outcome.provider_id != provider_id:
                    outcome = outcome.model_copy(update={"provider_id": provider_id})
                successes.append(outcome)
            elif isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                reason = "timeout" if isinstance(outcome, GeneratorFailure) and outcome.timed_out else "failed"
                logger.warning("Provider %s skipped for %r: %s", provider_id, name, outcome)
                skip_reasons[provider_id] = f"{reason}: {getattr(outcome, 'reason', outcome)}"

        status = "completed" if successes else "failed"
        record = self.aggregate(
            entity_id,
            {CANONICAL_IDENTITY_FIELD: name},
            successes,
            entity_name=name,
            status=status,
        )
        warnings.extend(record.warnings)

        used = [r.provider_id for r in successes]
        skipped = [p for p in provider_ids if p in skip_reasons]
        return (
            AnalysisResult(
                name=name,
                entity_id=entity_id,
                status=status,
                fields=record.aggregated_result,
                data_quality_score=record.overall_confidence,
                providers_used=used,
                providers_skipped=skipped,
                skip_reasons={p: skip_reasons[p] for p in skipped},
                cost_usd=round(cost, 6),
            ),
            warnings,
        )

    async def _call_generator(
        self, generator: ClaimGenerator, provider_id: str, entity_name: str
    ) -> GeneratorResult:
        try:
            return await asyncio.wait_for(generator.generate(entity_name), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise GeneratorFailure(
                provider_id, entity_name, f"no response within {self._timeout:g}s", timed_out=True
            ) from exc
        except GeneratorFailure:
            raise
        except Exception as exc:
            raise GeneratorFailure(provider_id, entity_name, str(exc) or type(exc).__name__) from exc
