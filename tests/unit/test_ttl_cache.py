import asyncio
import re
import pytest

from sharedkit.cache.ttl_cache import TTLCache, CacheConfig, create_cache, get_default_cache
from tests.helpers.fake_clock import FakeClock


@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def cache(clock):
    c = TTLCache(CacheConfig(default_ttl_s=1.0, max_size=100), clock=clock)
    yield c
    c.destroy()

# ---- get / set / has ----

def test_set_then_get_within_ttl(cache):
    cache.set("k", "v")
    assert cache.get("k") == "v"

def test_missing_key(cache):
    assert cache.get("nope") is None
    assert cache.has("nope") is False

def test_expired_key_is_dropped(cache, clock):
    cache.set("k", "v")
    clock.advance(1.5)
    assert cache.get("k") is None
    assert len(cache) == 0

def test_has_expired_drops_without_counting(cache, clock):
    cache.set("k", "v")
    clock.advance(1.5)
    assert cache.has("k") is False
    assert len(cache) == 0
    st = cache.get_stats()
    assert (st.hits, st.misses) == (0, 0)

def test_expiry_is_strictly_after_deadline(cache, clock):
    cache.set("k", "v")
    clock.advance(1.0)  # exactly at expires_at: still valid
    assert cache.has("k") is True
    clock.advance(0.001)
    assert cache.has("k") is False

def test_custom_ttl(cache, clock):
    cache.set("short", 1, ttl_s=0.1)
    cache.set("long", 2, ttl_s=10.0)
    clock.advance(0.5)
    assert cache.get("short") is None
    assert cache.get("long") == 2

def test_has_distinguishes_cached_none(cache):
    cache.set("k", None)
    assert cache.get("k") is None
    assert cache.has("k") is True
    assert "k" in cache

# ---- invalidation ----

def test_invalidate(cache):
    cache.set("k", 1)
    assert cache.invalidate("k") is True
    assert cache.has("k") is False
    assert cache.invalidate("k") is False

def test_invalidate_pattern(cache):
    for k in ("user:1", "user:2", "item:1"):
        cache.set(k, k)
    assert cache.invalidate_pattern(re.compile(r"^user:")) == 2
    assert cache.has("item:1")
    assert not cache.has("user:1") and not cache.has("user:2")

def test_invalidate_pattern_accepts_string_and_searches(cache):
    cache.set("a:user:1", 1)
    cache.set("b:item:1", 2)
    assert cache.invalidate_pattern("user") == 1
    assert len(cache) == 1

def test_invalidate_prefix(cache):
    for k in ("user:1", "user:2", "users", "item:1"):
        cache.set(k, k)
    assert cache.invalidate_prefix("user:") == 2
    assert cache.has("users") and cache.has("item:1")

# ---- eviction ----

def test_evicts_oldest_created_when_full(clock):
    c = TTLCache(CacheConfig(max_size=3), clock=clock)
    for k in ("a", "b", "c"):
        c.set(k, k)
        clock.advance(0.01)
    # reading "a" must not save it: eviction is by creation time
    assert c.get("a") == "a"
    c.set("d", "d")
    assert c.has("a") is False
    assert [c.get(k) for k in ("b", "c", "d")] == ["b", "c", "d"]
    assert len(c) == 3
    c.destroy()

def test_overwrite_at_capacity_does_not_evict(clock):
    c = TTLCache(CacheConfig(max_size=2), clock=clock)
    c.set("a", 1)
    clock.advance(0.01)
    c.set("b", 2)
    c.set("a", 10)
    assert c.get("a") == 10 and c.get("b") == 2
    c.destroy()

def test_eviction_tie_breaks_on_insertion_order(clock):
    c = TTLCache(CacheConfig(max_size=2), clock=clock)
    c.set("first", 1)
    c.set("second", 2)  # same created_at
    c.set("third", 3)
    assert not c.has("first")
    assert c.has("second") and c.has("third")
    c.destroy()

# ---- wrap ----

@pytest.mark.asyncio
async def test_wrap_calls_producer_once(clock):
    cache = TTLCache(clock=clock)
    calls = 0
    async def produce():
        nonlocal calls
        calls += 1
        return {"id": 7}

    assert await cache.wrap("k", produce) == {"id": 7}
    assert await cache.wrap("k", produce) == {"id": 7}
    assert calls == 1
    cache.destroy()

@pytest.mark.asyncio
async def test_wrap_caches_none(clock):
    cache = TTLCache(clock=clock)
    calls = 0
    async def produce():
        nonlocal calls
        calls += 1
        return None

    assert await cache.wrap("k", produce) is None
    assert await cache.wrap("k", produce) is None
    assert calls == 1
    cache.destroy()

@pytest.mark.asyncio
async def test_wrap_failure_is_not_cached(clock):
    cache = TTLCache(clock=clock)
    async def boom():
        raise RuntimeError("backend down")

    with pytest.raises(RuntimeError, match="backend down"):
        await cache.wrap("k", boom)
    assert cache.has("k") is False
    assert cache.get_stats().hits == 0
    cache.destroy()

@pytest.mark.asyncio
async def test_wrap_honours_ttl(clock):
    cache = TTLCache(clock=clock)
    calls = 0
    async def produce():
        nonlocal calls
        calls += 1
        return calls

    assert await cache.wrap("k", produce, ttl_s=0.2) == 1
    clock.advance(0.3)
    assert await cache.wrap("k", produce, ttl_s=0.2) == 2
    cache.destroy()

@pytest.mark.asyncio
async def test_wrap_concurrent_misses_both_run_producer(clock):
    cache = TTLCache(clock=clock)
    calls = 0
    async def slow():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return "v"

    results = await asyncio.gather(cache.wrap("k", slow), cache.wrap("k", slow))
    assert results == ["v", "v"]
    assert calls == 2
    cache.destroy()

# ---- stats / clear ----

def test_stats_hits_misses_rate(cache):
    assert cache.get_stats().hit_rate == 0.0
    cache.set("k", 1)
    cache.get("k")
    cache.get("k")
    cache.get("x")
    st = cache.get_stats()
    assert (st.size, st.hits, st.misses) == (1, 2, 1)
    assert st.hit_rate == pytest.approx(2 / 3)

def test_clear_resets_entries_and_counters(cache):
    cache.set("a", 1)
    cache.get("a")
    cache.get("b")
    cache.clear()
    st = cache.get_stats()
    assert (st.size, st.hits, st.misses, st.hit_rate) == (0, 0, 0, 0.0)

# ---- sweep / lifecycle ----

def test_purge_expired(cache, clock):
    cache.set("old", 1, ttl_s=0.1)
    cache.set("new", 2, ttl_s=5.0)
    clock.advance(1.0)
    assert cache.purge_expired() == 1
    assert len(cache) == 1
    assert cache.purge_expired() == 0

def test_no_sweep_without_loop(cache):
    assert cache.sweeping is False

@pytest.mark.asyncio
async def test_background_sweep_removes_expired(clock):
    c = TTLCache(CacheConfig(default_ttl_s=1.0, cleanup_interval_s=0.01), clock=clock)
    assert c.sweeping is True
    c.set("k", "v")
    clock.advance(2.0)
    await asyncio.sleep(0.05)
    assert len(c) == 0
    c.destroy()

@pytest.mark.asyncio
async def test_sweep_started_lazily_by_set(clock):
    c = await asyncio.to_thread(TTLCache, CacheConfig(cleanup_interval_s=0.01), clock=clock)
    assert c.sweeping is False
    c.set("k", 1)
    assert c.sweeping is True
    c.destroy()

@pytest.mark.asyncio
async def test_sweep_survives_failing_tick(clock, monkeypatch):
    c = TTLCache(CacheConfig(default_ttl_s=1.0, cleanup_interval_s=0.01), clock=clock)
    ticks = {"n": 0}
    real = c.purge_expired

    def flaky():
        ticks["n"] += 1
        if ticks["n"] == 1:
            raise RuntimeError("tick failed")
        return real()

    monkeypatch.setattr(c, "purge_expired", flaky)
    c.set("k", "v")
    clock.advance(2.0)
    await asyncio.sleep(0.1)
    assert ticks["n"] >= 2
    assert len(c) == 0
    assert c.sweeping is True
    c.destroy()

@pytest.mark.asyncio
async def test_destroy_is_idempotent_and_final(clock):
    c = TTLCache(CacheConfig(cleanup_interval_s=0.01), clock=clock)
    c.set("k", 1)
    c.destroy()
    c.destroy()
    assert len(c) == 0
    assert c.sweeping is False
    c.set("k", 2)  # still usable as a plain map, but no sweep restarts
    assert c.sweeping is False
    c.destroy()

def test_create_cache_and_default_instance():
    c = create_cache(max_size=5, default_ttl_s=2.0)
    assert c.cfg.max_size == 5 and c.cfg.default_ttl_s == 2.0
    c.destroy()
    assert get_default_cache() is get_default_cache()
