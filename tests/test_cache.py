"""Tests for the response cache."""

import pytest

from canvas_mcp.cache import CacheEntry, ResponseCache, make_key


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> ResponseCache:
    """Create a small cache driven by the fake clock."""
    return ResponseCache(max_entries=3, default_ttl=60, clock=clock)


class TestMakeKey:
    """Tests for cache key construction."""

    def test_key_ignores_argument_order(self):
        """Should produce the same key regardless of dict ordering."""
        assert make_key("get_course", {"a": 1, "b": 2}) == make_key("get_course", {"b": 2, "a": 1})

    def test_key_includes_method(self):
        """Should separate identical arguments for different tools."""
        assert make_key("get_course", {"a": 1}) != make_key("list_courses", {"a": 1})
        assert make_key("get_course", {}).startswith("get_course:")

    def test_key_distinguishes_values(self):
        """Should give different arguments different keys."""
        assert make_key("t", {"id": "1"}) != make_key("t", {"id": "2"})

    def test_none_params_match_empty(self):
        """Should treat None and {} the same."""
        assert make_key("t", None) == make_key("t", {})


class TestGetAndPut:
    """Tests for basic storage."""

    def test_miss_returns_none(self, cache):
        """Should return None for unknown keys."""
        assert cache.get("missing") is None
        assert cache.stats()["misses"] == 1

    def test_hit_returns_stored_value(self, cache):
        """Should return the stored value."""
        cache.put("k", {"result": 1})

        assert cache.get("k") == {"result": 1}
        assert "k" in cache
        assert cache.stats()["hits"] == 1

    def test_put_replaces_existing_entry(self, cache):
        """Should keep only the latest value for a key."""
        cache.put("k", 1)
        cache.put("k", 2)

        assert cache.get("k") == 2
        assert len(cache) == 1

    def test_non_positive_ttl_is_not_stored(self, cache):
        """Should skip entries that would expire immediately."""
        cache.put("k", 1, ttl=0)
        assert cache.get("k") is None

    def test_invalidate_and_clear(self, cache):
        """Should drop entries on request."""
        cache.put("a", 1)
        cache.put("b", 2)
        cache.invalidate("a")
        assert "a" not in cache

        cache.clear()
        assert len(cache) == 0

    def test_rejects_invalid_limits(self):
        """Should refuse a zero-sized cache or zero default lifetime."""
        with pytest.raises(ValueError):
            ResponseCache(max_entries=0)
        with pytest.raises(ValueError):
            ResponseCache(default_ttl=0)


class TestExpiry:
    """Tests for time-to-live handling."""

    def test_entry_expires_after_ttl(self, cache, clock):
        """Should treat an entry as absent once its ttl has elapsed."""
        cache.put("k", "v", ttl=10)

        clock.advance(9.9)
        assert cache.get("k") == "v"

        clock.advance(0.1)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_uses_default_ttl(self, cache, clock):
        """Should fall back to the default ttl."""
        cache.put("k", "v")
        clock.advance(59)
        assert "k" in cache
        clock.advance(1)
        assert "k" not in cache

    def test_cache_entry_expiry(self):
        """Should compute expiry from creation time and ttl."""
        entry = CacheEntry(key="k", value=1, created_at=100.0, ttl=5.0)
        assert entry.expires_at == 105.0
        assert not entry.is_expired(104.9)
        assert entry.is_expired(105.0)


class TestEviction:
    """Tests for capacity limits."""

    def test_never_exceeds_capacity(self, cache):
        """Should hold at most max_entries entries."""
        for i in range(10):
            cache.put(f"k{i}", i)
            assert len(cache) <= 3

    def test_evicts_least_recently_used(self, cache):
        """Should evict the entry that was used longest ago."""
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        cache.get("a")

        cache.put("d", 4)

        assert "b" not in cache
        assert "a" in cache
        assert "c" in cache
        assert "d" in cache
        assert cache.stats()["evictions"] == 1

    def test_evicts_expired_entry_before_live_ones(self, cache, clock):
        """Should prefer an expired entry over the LRU candidate."""
        cache.put("old", 1, ttl=100)
        cache.put("short", 2, ttl=5)
        cache.put("fresh", 3, ttl=100)
        clock.advance(10)

        cache.put("new", 4)

        assert "short" not in cache
        assert cache.get("old") == 1
        assert cache.get("fresh") == 3
        assert cache.get("new") == 4

    def test_replacing_key_does_not_evict(self, cache):
        """Should not evict when overwriting an existing key at capacity."""
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        cache.put("a", 10)

        assert len(cache) == 3
        assert cache.stats()["evictions"] == 0
