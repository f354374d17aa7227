"""Tests for AggregationEngine.run_analysis: gating, concurrency, partial failure, progress."""

from __future__ import annotations

import pytest

from app.pipeline.progress import QueueProgressObserver
from app.pipeline.rate_limits import FixedWindowRateLimiter
from app.schemas.costs import Budget
from app.services.aggregation import AggregationEngine
from app.services.cost_governor import CostGovernor
from tests.factories import StubGenerator, make_settings
from tests.test_constants import TEST_IDENTITY


def _build_engine(store, generators: dict, *, observer=None, timeout_seconds=None, **settings_overrides):
    settings = make_settings(**settings_overrides)

    def factory(provider_id: str):
        if provider_id not in generators:
            raise ValueError(f"no generator for {provider_id}")
        return generators[provider_id]

    return AggregationEngine(
        store,
        FixedWindowRateLimiter(),
        CostGovernor(store, settings),
        generator_factory=factory,
        settings=settings,
        observer=observer,
        timeout_seconds=timeout_seconds,
    )


@pytest.fixture
def acme_generators() -> dict:
    return {
        "openai": StubGenerator("openai", {"name": "Acme Co", "industry": "Software"}, 80),
        "perplexity": StubGenerator("perplexity", {"name": "Acme Co", "founded": "1999"}, 90),
    }


@pytest.mark.asyncio
async def test_two_providers_succeed(memory_store, acme_generators):
    engine = _build_engine(memory_store, acme_generators)
    run = await engine.run_analysis(["Acme Co"], ["openai", "perplexity"], identity=TEST_IDENTITY)

    assert run.success is True
    assert run.error is None
    [result] = run.results
    assert result.name == "Acme Co"
    assert result.entity_id == "acme"
    assert result.status == "completed"
    assert result.data_quality_score == 85.0
    assert result.providers_used == ["openai", "perplexity"]
    assert result.providers_skipped == []
    assert result.fields == {"name": "Acme Co", "industry": "Software", "founded": "1999"}
    assert result.cost_usd == pytest.approx(0.04)
    assert run.total_cost_usd == pytest.approx(0.04)

    stored = memory_store.get_record("acme")
    assert stored.overall_confidence == 85.0
    assert stored.provenance_map["provider_count"] == 2


@pytest.mark.asyncio
async def test_every_dispatched_call_is_recorded(memory_store, acme_generators):
    engine = _build_engine(memory_store, acme_generators)
    run = await engine.run_analysis(["Acme Co"], ["openai", "perplexity"], identity=TEST_IDENTITY)

    entries = memory_store.ledger_entries(TEST_IDENTITY)
    assert sorted(e.provider for e in entries) == ["openai", "perplexity"]
    assert all(e.related_entity_id == "acme" for e in entries)
    assert all(e.metadata["session_id"] == run.session_id for e in entries)
    assert len({e.idempotency_key for e in entries}) == 2
    assert memory_store.sum_entity_ledger("acme") == pytest.approx(0.04)


@pytest.mark.asyncio
async def test_one_failing_provider_is_skipped(memory_store, acme_generators):
    generators = {
        **acme_generators,
        "anthropic": StubGenerator("anthropic", error=RuntimeError("upstream 500")),
    }
    engine = _build_engine(memory_store, generators)
    run = await engine.run_analysis(
        ["Acme Co"], ["openai", "anthropic", "perplexity"], identity=TEST_IDENTITY
    )

    assert run.success is True
    [result] = run.results
    assert result.status == "completed"
    assert result.providers_used == ["openai", "perplexity"]
    assert result.providers_skipped == ["anthropic"]
    assert result.skip_reasons["anthropic"].startswith("failed")
    # The failed attempt was dispatched, so it is still charged
    failed = [e for e in memory_store.ledger_entries() if e.provider == "anthropic"]
    assert len(failed) == 1
    assert failed[0].metadata["success"] is False


@pytest.mark.asyncio
async def test_timed_out_provider_is_skipped(memory_store, acme_generators):
    generators = {**acme_generators, "gemini": StubGenerator("gemini", {"name": "x"}, delay=5.0)}
    engine = _build_engine(memory_store, generators, timeout_seconds=0.05)
    run = await engine.run_analysis(
        ["Acme Co"], ["openai", "perplexity", "gemini"], identity=TEST_IDENTITY
    )

    [result] = run.results
    assert run.success is True
    assert result.providers_skipped == ["gemini"]
    assert result.skip_reasons["gemini"].startswith("timeout")
    assert "gemini" not in memory_store.get_record("acme").provenance_map["providers"]


@pytest.mark.asyncio
async def test_all_providers_fail(memory_store):
    generators = {
        "openai": StubGenerator("openai", error=RuntimeError("boom")),
        "perplexity": StubGenerator("perplexity", error=TimeoutError("slow")),
    }
    engine = _build_engine(memory_store, generators)
    run = await engine.run_analysis(["Acme Co"], ["openai", "perplexity"], identity=TEST_IDENTITY)

    assert run.success is False
    assert "failed" in run.error
    [result] = run.results
    assert result.status == "failed"
    assert result.providers_used == []
    assert result.providers_skipped == ["openai", "perplexity"]
    assert memory_store.get_record("acme").status == "failed"


@pytest.mark.asyncio
async def test_partial_entity_failure_still_succeeds(memory_store):
    class PickyGenerator(StubGenerator):
        async def generate(self, entity_name):
            if entity_name == "Globex":
                raise RuntimeError("unknown company")
            return await super().generate(entity_name)

    engine = _build_engine(memory_store, {"openai": PickyGenerator("openai", {"name": "n"}, 70)})
    run = await engine.run_analysis(["Acme", "Globex"], ["openai"], identity=TEST_IDENTITY)

    assert run.success is True
    assert [r.status for r in run.results] == ["completed", "failed"]


@pytest.mark.asyncio
async def test_empty_inputs_return_unsuccessful_result(memory_store, acme_generators):
    engine = _build_engine(memory_store, acme_generators)

    no_entities = await engine.run_analysis([], ["openai"], identity=TEST_IDENTITY)
    assert no_entities.success is False
    assert no_entities.error == "No entities to analyze"

    no_providers = await engine.run_analysis(["Acme"], [], identity=TEST_IDENTITY)
    assert no_providers.success is False
    assert no_providers.error == "No providers selected"

    blank = await engine.run_analysis(["   "], ["openai"], identity=TEST_IDENTITY)
    assert blank.success is False
    assert blank.warnings


@pytest.mark.asyncio
async def test_duplicate_entities_are_analyzed_once(memory_store, acme_generators):
    engine = _build_engine(memory_store, acme_generators)
    run = await engine.run_analysis(["Acme Co", "ACME, Inc."], ["openai"], identity=TEST_IDENTITY)

    assert len(run.results) == 1
    assert any("duplicate" in w for w in run.warnings)
    assert acme_generators["openai"].calls == ["Acme Co"]


@pytest.mark.asyncio
async def test_unknown_provider_is_skipped_without_charge(memory_store, acme_generators):
    engine = _build_engine(memory_store, acme_generators)
    run = await engine.run_analysis(["Acme"], ["openai", "mystery"], identity=TEST_IDENTITY)

    [result] = run.results
    assert result.providers_skipped == ["mystery"]
    assert result.skip_reasons["mystery"].startswith("unavailable")
    assert [e.provider for e in memory_store.ledger_entries()] == ["openai"]


@pytest.mark.asyncio
async def test_budget_gate_skips_unaffordable_provider(memory_store, acme_generators):
    memory_store.set_budget(Budget(identity=TEST_IDENTITY, monthly_limit_usd=0.035))
    engine = _build_engine(memory_store, acme_generators)
    run = await engine.run_analysis(["Acme"], ["openai", "perplexity"], identity=TEST_IDENTITY)

    [result] = run.results
    assert result.providers_used == ["openai"]
    assert result.skip_reasons == {"perplexity": "budget_exceeded"}
    assert acme_generators["perplexity"].calls == []


@pytest.mark.asyncio
async def test_rate_limit_gate_skips_provider(memory_store, acme_generators):
    engine = _build_engine(memory_store, acme_generators, identity_rate_limit_max_requests=1)
    run = await engine.run_analysis(["Acme", "Globex"], ["openai"], identity=TEST_IDENTITY)

    acme, globex = run.results
    assert acme.providers_used == ["openai"]
    assert globex.status == "failed"
    assert globex.skip_reasons == {"openai": "rate_limited:identity"}
    assert acme_generators["openai"].calls == ["Acme"]
    # A rejected call is never charged
    assert len(memory_store.ledger_entries()) == 1


@pytest.mark.asyncio
async def test_global_rate_limit_applies_across_identities(memory_store, acme_generators):
    engine = _build_engine(memory_store, acme_generators, global_rate_limit_max_requests=1)
    first = await engine.run_analysis(["Acme"], ["openai"], identity=TEST_IDENTITY)
    second = await engine.run_analysis(["Acme"], ["openai"], identity="someone-else")

    assert first.success is True
    assert second.success is False
    assert second.results[0].skip_reasons == {"openai": "rate_limited:global"}


@pytest.mark.asyncio
async def test_progress_is_monotonic_in_completion_order(memory_store):
    class StaggeredGenerator(StubGenerator):
        async def generate(self, entity_name):
            self.delay = {"Alpha": 0.05, "Beta": 0.0, "Gamma": 0.02}[entity_name]
            return await super().generate(entity_name)

    observer = QueueProgressObserver(maxsize=50)
    engine = _build_engine(
        memory_store, {"openai": StaggeredGenerator("openai", {"name": "n"}, 80)}, observer=observer
    )
    run = await engine.run_analysis(
        ["Alpha", "Beta", "Gamma"], ["openai"], identity=TEST_IDENTITY, session_id="s-progress"
    )

    updates = observer.drain()
    assert updates[0].status == "running" and updates[0].completed == 0
    entity_updates = updates[1:-1]
    assert [u.current_entity for u in entity_updates] == ["Beta", "Gamma", "Alpha"]
    assert [u.completed for u in entity_updates] == [1, 2, 3]
    percentages = [u.percentage for u in updates]
    assert percentages == sorted(percentages)
    assert updates[-1].status == "completed"
    assert updates[-1].percentage == 100.0
    assert all(u.session_id == "s-progress" for u in updates)
    # Results keep request order regardless of completion order
    assert [r.name for r in run.results] == ["Alpha", "Beta", "Gamma"]


@pytest.mark.asyncio
async def test_run_is_tracked_in_store(memory_store, acme_generators):
    engine = _build_engine(memory_store, acme_generators)
    run = await engine.run_analysis(["Acme", "Globex"], ["openai"], identity=TEST_IDENTITY)

    tracked = memory_store.get_run(run.session_id)
    assert tracked["status"] == "completed"
    assert tracked["completed"] == 2
    assert tracked["total"] == 2
    assert tracked["identity"] == TEST_IDENTITY
    assert tracked["providers"] == ["openai"]


@pytest.mark.asyncio
async def test_failing_observer_does_not_break_run(memory_store, acme_generators):
    class BrokenObserver(QueueProgressObserver):
        def notify(self, update):
            raise RuntimeError("observer down")

    engine = _build_engine(memory_store, acme_generators, observer=BrokenObserver())
    run = await engine.run_analysis(["Acme"], ["openai"], identity=TEST_IDENTITY)
    assert run.success is True


def test_timeout_must_be_positive(memory_store):
    with pytest.raises(ValueError):
        _build_engine(memory_store, {}, timeout_seconds=0)


@pytest.mark.asyncio
async def test_reused_session_id_still_charges_every_call(memory_store, acme_generators):
    memory_store.set_budget(Budget(identity=TEST_IDENTITY, monthly_limit_usd=0.10))
    engine = _build_engine(memory_store, acme_generators, identity_rate_limit_max_requests=100)
    for _ in range(10):
        await engine.run_analysis(["Acme"], ["openai"], identity=TEST_IDENTITY, session_id="fixed")

    entries = memory_store.ledger_entries(TEST_IDENTITY)
    assert len(acme_generators["openai"].calls) == len(entries) == 3
    assert sum(e.amount_usd for e in entries) == pytest.approx(0.09)


@pytest.mark.asyncio
@pytest.mark.parametrize("backend", ["memory", "sql"])
async def test_failed_rerun_keeps_last_good_record(request, backend, acme_generators):
    store = request.getfixturevalue(f"{backend}_store")
    engine = _build_engine(store, acme_generators)
    await engine.run_analysis(["Acme Co"], ["openai", "perplexity"], identity=TEST_IDENTITY)

    acme_generators["openai"].error = RuntimeError("down")
    acme_generators["perplexity"].error = RuntimeError("down")
    run = await engine.run_analysis(["Acme Co"], ["openai", "perplexity"], identity=TEST_IDENTITY)

    assert run.success is False
    stored = store.get_record("acme")
    assert stored.status == "failed"
    assert stored.overall_confidence == 85.0
    assert stored.aggregated_result["founded"] == "1999"
    assert stored.provenance_map["providers"] == ["openai", "perplexity"]
    assert set(stored.provenance_map["sources"]) == {"name", "industry", "founded"}


@pytest.mark.asyncio
async def test_narrower_rerun_keeps_sources_of_earlier_attributes(memory_store, acme_generators):
    engine = _build_engine(memory_store, acme_generators)
    await engine.run_analysis(["Acme Co"], ["openai", "perplexity"], identity=TEST_IDENTITY)
    await engine.run_analysis(["Acme Co"], ["openai"], identity=TEST_IDENTITY)

    stored = memory_store.get_record("acme")
    assert stored.aggregated_result["founded"] == "1999"
    assert stored.provenance_map["sources"]["founded"] == "perplexity"
    assert stored.provenance_map["providers"] == ["openai"]
