"""Tests for the per-user session store."""

from support_agent.domain.context.state.session_store import SessionStore


class TestMergeSemantics:
    """Merge-on-write behaviour and timestamps."""

    def test_two_partial_writes_merge(self, clock):
        """A set followed by a disjoint set yields the union with both stamps."""
        store = SessionStore(clock=clock)
        t0 = clock()
        store.set("u1", {"a": 1})
        t1 = clock.advance(5)
        store.set("u1", {"b": 2})

        assert store.get("u1") == {"a": 1, "b": 2, "created_at": t0, "last_updated": t1}

    def test_created_at_is_set_once(self, clock):
        """Repeated writes never move created_at."""
        store = SessionStore(clock=clock)
        first = clock()
        for index in range(10):
            store.set("u1", {"step": index})
            clock.advance(1)
        store.set("u1", {"step": 10})

        assert store.get_field("u1", "created_at") == first
        assert store.get_field("u1", "last_updated") == clock()

    def test_partial_cannot_overwrite_created_at(self, clock):
        store = SessionStore(clock=clock)
        first = clock()
        store.set("u1", {"a": 1})
        store.set("u1", {"created_at": "tampered"})

        assert store.get_field("u1", "created_at") == first

    def test_later_keys_win_per_field(self, clock):
        store = SessionStore(clock=clock)
        store.set("u1", {"a": 1, "b": 1})
        store.set("u1", {"b": 2})

        bag = store.get("u1")
        assert bag["a"] == 1
        assert bag["b"] == 2

    def test_get_returns_a_copy(self, clock):
        store = SessionStore(clock=clock)
        store.set("u1", {"a": 1})
        store.get("u1")["a"] = 99

        assert store.get_field("u1", "a") == 1


class TestTotalOperations:
    """Operations over absent keys never raise."""

    def test_absent_key(self):
        store = SessionStore()
        assert store.get("nobody") is None
        assert store.get_field("nobody", "a") is None
        assert store.has("nobody") is False
        assert store.clear("nobody") is False
        assert store.size() == 0

    def test_clear_and_clear_all(self):
        store = SessionStore()
        store.set("u1", {"a": 1})
        store.set("u2", {"a": 2})

        assert store.clear("u1") is True
        assert not store.has("u1")
        assert store.size() == 1
        assert store.clear_all() == 1
        assert store.size() == 0


class TestBoundedRegistry:
    """Eviction keeps abandoned sessions from piling up."""

    def test_lru_cap_evicts_least_recently_written(self, clock):
        store = SessionStore(max_entries=2, clock=clock)
        store.set("u1", {"a": 1})
        store.set("u2", {"a": 2})
        store.set("u1", {"b": 1})
        store.set("u3", {"a": 3})

        assert store.has("u1")
        assert store.has("u3")
        assert not store.has("u2")
        assert store.size() == 2

    def test_sweep_expired(self, clock):
        store = SessionStore(ttl_seconds=60, clock=clock)
        store.set("stale", {"a": 1})
        clock.advance(30)
        store.set("fresh", {"a": 2})
        clock.advance(45)

        assert store.sweep_expired() == 1
        assert not store.has("stale")
        assert store.has("fresh")

    def test_sweep_without_ttl_is_noop(self, clock):
        store = SessionStore(clock=clock)
        store.set("u1", {"a": 1})
        clock.advance(10_000)

        assert store.sweep_expired() == 0
        assert store.has("u1")

    def test_debug_snapshot(self, clock):
        store = SessionStore(max_entries=5, ttl_seconds=60, clock=clock)
        store.set("u1", {"a": 1})

        assert store.debug() == {"size": 1, "max_entries": 5, "ttl_seconds": 60, "keys": ["u1"]}
