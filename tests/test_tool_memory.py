# tests/test_tool_memory.py
from __future__ import annotations

from datetime import timedelta

import pytest

from toolmemory.core.types import ToolResult
from toolmemory.orchestration.tool_memory import ToolMemory, infer_resource_type

S = "run_1"
T = "org_a"


def ok(data, **meta) -> ToolResult:
    return ToolResult.model_validate({"success": True, "data": data, "metadata": meta})


@pytest.mark.asyncio
async def test_end_to_end_store_lookup_resolve_and_expire(memory, clock):
    params = {"market": "US"}
    await memory.store("create_audience", params, ok({"audienceId": "aud_1"}), S, T)

    hit = await memory.find_previous("create_audience", {"market": "US"}, S, T)
    assert hit is not None
    assert hit.output["audienceId"] == "aud_1"
    assert await memory.resolve_reference("create_audience.audienceId", S, T) == "aud_1"

    clock.advance(minutes=30)
    assert await memory.cleanup_expired() == 0
    assert await memory.find_previous("create_audience", params, S, T) is not None

    clock.advance(minutes=31)
    assert await memory.find_previous("create_audience", params, S, T) is None
    assert await memory.cleanup_expired() == 1
    assert memory.repo.count_session(T, S) == 0


@pytest.mark.asyncio
async def test_lookup_returns_most_recent_success(memory, clock):
    await memory.store("build_crosstab", {"rows": ["age"]}, ok({"v": 1}), S, T)
    clock.advance(seconds=5)
    await memory.store("build_crosstab", {"rows": ["age"]}, ok({"v": 2}), S, T)
    clock.advance(seconds=5)
    await memory.store("build_crosstab", {"rows": ["age"]}, {"success": False, "error": "timeout"}, S, T)

    hit = await memory.find_previous("build_crosstab", {"rows": ["age"]}, S, T)
    assert hit.output == {"v": 2}


@pytest.mark.asyncio
async def test_failed_result_is_stored_but_never_a_hit(memory):
    entry = await memory.store("create_chart", {"id": 1}, {"success": False, "error": "boom", "data": {"x": 1}}, S, T)
    assert entry.success is False
    assert entry.error == "boom"
    assert entry.output == {}
    assert await memory.find_previous("create_chart", {"id": 1}, S, T) is None


@pytest.mark.asyncio
async def test_lookup_distinguishes_tool_params_and_session(memory):
    await memory.store("create_audience", {"market": "US"}, ok({"audienceId": "aud_1"}), S, T)
    assert await memory.find_previous("create_audience", {"market": "GB"}, S, T) is None
    assert await memory.find_previous("create_chart", {"market": "US"}, S, T) is None
    assert await memory.find_previous("create_audience", {"market": "US"}, "run_2", T) is None


@pytest.mark.asyncio
async def test_deduplication_can_be_disabled(repo, clock):
    memory = ToolMemory(repo, clock=clock, enable_deduplication=False)
    await memory.store("create_audience", {"market": "US"}, ok({"audienceId": "aud_1"}), S, T)
    assert await memory.find_previous("create_audience", {"market": "US"}, S, T) is None


@pytest.mark.asyncio
async def test_custom_ttl_and_never_expiring_entries(repo, clock):
    memory = ToolMemory(repo, clock=clock, default_ttl=None)
    forever = await memory.store("a", {}, ok({}), S, T)
    short = await memory.store("b", {}, ok({}), S, T, ttl=timedelta(seconds=10))
    assert forever.expires_at is None
    assert short.expires_at == clock.now + timedelta(seconds=10)

    clock.advance(days=365)
    assert await memory.cleanup_expired() == 1
    assert await memory.find_previous("a", {}, S, T) is not None


@pytest.mark.asyncio
async def test_truncated_digest_still_requires_exact_params(repo, clock, monkeypatch):
    memory = ToolMemory(repo, clock=clock)
    # force every params map onto the same digest
    monkeypatch.setattr(memory, "hash_params", lambda params: "collide")
    await memory.store("create_audience", {"market": "US"}, ok({"audienceId": "aud_1"}), S, T)
    assert await memory.find_previous("create_audience", {"market": "GB"}, S, T) is None
    assert await memory.find_previous("create_audience", {"market": "US"}, S, T) is not None


@pytest.mark.asyncio
async def test_eviction_keeps_newest_entries(repo, clock):
    memory = ToolMemory(repo, clock=clock, max_entries_per_session=10)
    assert memory.eviction_batch == 1
    for i in range(15):
        await memory.store("step", {"i": i}, ok({"i": i}), S, T)
        clock.advance(seconds=1)
        assert memory.repo.count_session(T, S) <= 10

    history = await memory.get_session_history(S, T)
    assert [o["i"] for o in history["step"]] == list(range(5, 15))


@pytest.mark.asyncio
async def test_eviction_drops_a_tenth_of_the_cap(repo, clock):
    memory = ToolMemory(repo, clock=clock, max_entries_per_session=20)
    for i in range(21):
        await memory.store("step", {"i": i}, ok({"i": i}), S, T)
        clock.advance(seconds=1)
    # 20 stored, the 21st insert removed the two oldest first
    assert memory.repo.count_session(T, S) == 19
    assert await memory.find_previous("step", {"i": 1}, S, T) is None
    assert await memory.find_previous("step", {"i": 2}, S, T) is not None


@pytest.mark.asyncio
async def test_eviction_is_per_session(repo, clock):
    memory = ToolMemory(repo, clock=clock, max_entries_per_session=3)
    for i in range(3):
        await memory.store("step", {"i": i}, ok({}), "other", T)
        clock.advance(seconds=1)
    for i in range(5):
        await memory.store("step", {"i": i}, ok({}), S, T)
        clock.advance(seconds=1)
    assert memory.repo.count_session(T, "other") == 3


@pytest.mark.asyncio
async def test_session_results_last_write_wins_with_indexed_history(memory, clock):
    await memory.store("create_audience", {"m": "US"}, ok({"audienceId": "A"}), S, T)
    clock.advance(seconds=1)
    await memory.store("build_crosstab", {}, ok({"crosstabId": "X"}), S, T)
    clock.advance(seconds=1)
    await memory.store("create_audience", {"m": "GB"}, ok({"audienceId": "B"}), S, T)
    clock.advance(seconds=1)
    await memory.store("create_audience", {"m": "DE"}, {"success": False, "error": "no"}, S, T)

    results = await memory.get_session_results(S, T)
    assert results["create_audience"] == {"audienceId": "B"}
    assert results["create_audience_1"] == {"audienceId": "A"}
    assert results["create_audience_2"] == {"audienceId": "B"}
    assert "create_audience_3" not in results
    assert results["build_crosstab_1"] == {"crosstabId": "X"}

    history = await memory.get_session_history(S, T)
    assert history == {
        "create_audience": [{"audienceId": "A"}, {"audienceId": "B"}],
        "build_crosstab": [{"crosstabId": "X"}],
    }


@pytest.mark.asyncio
async def test_resolve_reference_never_raises(memory):
    await memory.store("create_audience", {}, ok({"audienceId": "aud_1", "size": 5, "meta": None}), S, T)
    assert await memory.resolve_reference("create_audience.audienceId", S, T) == "aud_1"
    assert await memory.resolve_reference("create_audience_1.audienceId", S, T) == "aud_1"
    assert await memory.resolve_reference("never_called.audienceId", S, T) is None
    assert await memory.resolve_reference("create_audience.missing", S, T) is None
    assert await memory.resolve_reference("create_audience.size.value", S, T) is None
    assert await memory.resolve_reference("create_audience.meta.value", S, T) is None
    assert await memory.resolve_reference("", S, T) is None


@pytest.mark.asyncio
async def test_session_resources_declared_and_inferred_types(memory, clock):
    await memory.store(
        "create_audience", {}, ok({"audienceName": "Gen Z"}, resourcesCreated=[{"id": "aud_1"}]), S, T,
    )
    clock.advance(seconds=1)
    await memory.store(
        "build_chart_dashboard", {}, ok({"chartName": "Reach"}, resourcesCreated=[{"id": "ch_1"}, {"id": "db_1", "type": "dashboard"}]), S, T,
    )
    clock.advance(seconds=1)
    await memory.store("summarize", {}, ok({"name": "Weekly"}, resourcesCreated=[{"id": "ins_1"}]), S, T)
    clock.advance(seconds=1)
    await memory.store("create_audience", {"again": 1}, ok({}, resourcesCreated=[{"id": "aud_1"}]), S, T)
    await memory.store("noop", {}, ok({"name": "none"}), S, T)
    await memory.store("create_chart", {}, {"success": False, "error": "x", "metadata": {"resourcesCreated": [{"id": "lost"}]}}, S, T)

    refs = await memory.get_session_resources(S, T)
    by_id = [(r.id, r.type, r.name) for r in refs]
    assert ("aud_1", "audience", "Gen Z") in by_id
    # first vocabulary match wins for untyped resources
    assert ("ch_1", "chart", "Reach") in by_id
    assert ("db_1", "dashboard", "Reach") in by_id
    assert ("ins_1", "insight", "Weekly") in by_id
    assert sum(1 for r in refs if r.id == "aud_1") == 2
    assert all(r.id != "lost" for r in refs)
    assert len(refs) == 5


def test_infer_resource_type() -> None:
    assert infer_resource_type("create_audience") == "audience"
    assert infer_resource_type("BuildCrosstab") == "crosstab"
    assert infer_resource_type("render_dashboard") == "dashboard"
    assert infer_resource_type("lookup_stats") == "insight"


@pytest.mark.asyncio
async def test_session_stats_sum_exactly(memory):
    for i, (ms, tok) in enumerate([(100, 10), (200, 20), (300, 30)]):
        await memory.store(
            "ok_tool", {"i": i},
            ok({}, executionTimeMs=ms, tokensUsed=tok, resourcesCreated=[{"id": f"r{i}"}]), S, T,
        )
    await memory.store("bad_tool", {"i": 1}, {"success": False, "error": "e", "metadata": {"executionTimeMs": 40, "tokensUsed": 4}}, S, T)
    await memory.store("bad_tool", {"i": 2}, {"success": False, "error": "e"}, S, T)

    stats = await memory.get_session_stats(S, T)
    assert stats.total_calls == 5
    assert stats.successful_calls == 3
    assert stats.failed_calls == 2
    assert stats.total_execution_time_ms == 640
    assert stats.total_tokens_used == 64
    assert stats.resources_created == 3


@pytest.mark.asyncio
async def test_tenant_isolation(memory):
    params = {"market": "US"}
    await memory.store("create_audience", params, ok({"audienceId": "aud_a"}, resourcesCreated=[{"id": "aud_a"}]), S, "org_a")

    assert await memory.find_previous("create_audience", params, S, "org_b") is None
    assert await memory.get_session_results(S, "org_b") == {}
    assert await memory.get_session_history(S, "org_b") == {}
    assert await memory.get_session_resources(S, "org_b") == []
    assert await memory.resolve_reference("create_audience.audienceId", S, "org_b") is None
    assert (await memory.get_session_stats(S, "org_b")).total_calls == 0

    await memory.clear_session(S, "org_b")
    assert await memory.find_previous("create_audience", params, S, "org_a") is not None


@pytest.mark.asyncio
async def test_clear_session_ignores_expiry(memory):
    await memory.store("a", {}, ok({}), S, T)
    await memory.store("b", {}, ok({}), S, T, ttl=timedelta(days=30))
    await memory.store("a", {}, ok({}), "run_2", T)
    await memory.clear_session(S, T)
    assert memory.repo.count_session(T, S) == 0
    assert memory.repo.count_session(T, "run_2") == 1


@pytest.mark.asyncio
async def test_zero_ttl_expires_immediately(memory, clock):
    entry = await memory.store("create_audience", {"market": "US"}, ok({"audienceId": "aud_1"}), S, T, ttl=0)
    assert entry.expires_at == clock.now
    assert await memory.find_previous("create_audience", {"market": "US"}, S, T) is None

    clock.advance(days=400)
    assert await memory.find_previous("create_audience", {"market": "US"}, S, T) is None
    assert await memory.cleanup_expired() == 1


@pytest.mark.asyncio
async def test_entry_is_expired_exactly_at_expires_at(memory, clock):
    entry = await memory.store("build_crosstab", {"rows": ["age"]}, ok({"v": 1}), S, T, ttl=timedelta(minutes=10))

    clock.advance(minutes=10)
    assert clock.now == entry.expires_at
    assert await memory.find_previous("build_crosstab", {"rows": ["age"]}, S, T) is None
    assert await memory.cleanup_expired() == 1


@pytest.mark.asyncio
async def test_fractional_metrics_are_kept(memory):
    await memory.store(
        "create_chart", {}, ok({}, executionTimeMs=12.5, tokensUsed=0.25), S, T,
    )
    await memory.store(
        "create_chart", {"b": 1}, ok({}, executionTimeMs=7.25, tokensUsed=1), S, T,
    )
    stats = await memory.get_session_stats(S, T)
    assert stats.total_execution_time_ms == pytest.approx(19.75)
    assert stats.total_tokens_used == pytest.approx(1.25)
