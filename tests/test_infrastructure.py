"""Tests for settings, profile caching, keyed locks and metrics."""

import asyncio

import pytest

from support_agent.domain.context.memory.cache_memory_store import (
    CachedProfileDirectory, StaticProfileDirectory, TTLCache
)
from support_agent.domain.context.state.keyed_lock import KeyedLock
from support_agent.domain.models.agent_state import Profile
from support_agent.infrastructure.config.settings import AgentSettings
from support_agent.infrastructure.observability.logging import MetricsCollector


class FlakyDirectory:
    def __init__(self):
        self.calls = 0

    async def get(self, context_id):
        self.calls += 1
        raise ConnectionError("directory down")


class CountingDirectory(StaticProfileDirectory):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0

    async def get(self, context_id):
        self.calls += 1
        return await super().get(context_id)


class TestSettings:
    def test_defaults(self):
        settings = AgentSettings()

        assert settings.max_tool_steps == 5
        assert settings.max_retries == 3
        assert settings.history_limit == 6
        assert settings.rag_top_k == 3
        assert settings.rag_min_similarity == 0.5
        assert settings.wizard_idle_timeout_ms == 300_000

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SUPPORT_AGENT_MAX_RETRIES", "5")
        monkeypatch.setenv("SUPPORT_AGENT_RAG_ENABLED", "false")

        settings = AgentSettings()

        assert settings.max_retries == 5
        assert settings.rag_enabled is False


class TestProfileCache:
    @pytest.mark.asyncio
    async def test_lookups_are_cached(self):
        directory = CountingDirectory({"ctx1": Profile(name="Nova", timezone="Asia/Tashkent")})
        profiles = CachedProfileDirectory(directory, TTLCache(default_ttl=60))

        first = await profiles.get("ctx1")
        second = await profiles.get("ctx1")

        assert first.name == "Nova"
        assert second == first
        assert directory.calls == 1

    @pytest.mark.asyncio
    async def test_entries_expire(self, clock):
        directory = CountingDirectory({"ctx1": Profile(name="Nova")})
        profiles = CachedProfileDirectory(directory, TTLCache(default_ttl=60, clock=clock))

        await profiles.get("ctx1")
        clock.advance(61)
        await profiles.get("ctx1")

        assert directory.calls == 2

    @pytest.mark.asyncio
    async def test_missing_or_failing_lookup_falls_back(self):
        fallback = Profile(name="Fallback")
        flaky = CachedProfileDirectory(FlakyDirectory(), TTLCache(), fallback=fallback)
        empty = CachedProfileDirectory(StaticProfileDirectory(), TTLCache(), fallback=fallback)

        assert (await flaky.get("ctx1")).name == "Fallback"
        assert (await empty.get("ctx1")).name == "Fallback"

    @pytest.mark.asyncio
    async def test_invalidate(self):
        directory = CountingDirectory({"ctx1": Profile()})
        profiles = CachedProfileDirectory(directory, TTLCache())

        await profiles.get("ctx1")
        assert await profiles.invalidate("ctx1") is True
        await profiles.get("ctx1")

        assert directory.calls == 2


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_runs_in_arrival_order(self):
        locks = KeyedLock()
        events = []

        async def worker(name, delay):
            async with locks.hold("u1"):
                events.append(f"{name}:start")
                await asyncio.sleep(delay)
                events.append(f"{name}:end")

        first = asyncio.ensure_future(worker("a", 0.03))
        await asyncio.sleep(0)
        assert locks.is_locked("u1")
        await asyncio.gather(first, worker("b", 0.0))

        assert events == ["a:start", "a:end", "b:start", "b:end"]
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_different_keys_do_not_block(self):
        locks = KeyedLock()
        events = []

        async def worker(key, delay):
            async with locks.hold(key):
                events.append(f"{key}:start")
                await asyncio.sleep(delay)
                events.append(f"{key}:end")

        await asyncio.gather(worker("u1", 0.03), worker("u2", 0.0))

        assert events.index("u2:end") < events.index("u1:end")


class TestMetricsCollector:
    def test_latency_and_counters(self):
        metrics = MetricsCollector()
        metrics.record_latency("chat", 100.0)
        metrics.record_latency("chat", 300.0)
        metrics.increment_counter("chat.retries")
        metrics.increment_counter("chat.retries", 2)

        summary = metrics.get_metrics_summary()

        assert summary["latency.chat"] == {"count": 2, "avg": 200.0, "min": 100.0, "max": 300.0}
        assert summary["chat.retries"] == 3
