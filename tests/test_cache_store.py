"""Tests for CacheStore — TTL, age queries and eviction."""

import pytest

from smartpoll.cache.store import CacheStore


@pytest.fixture
def store(clock) -> CacheStore:
    return CacheStore(default_ttl_ms=1000, max_entries=3, retention_ms=5000, clock=clock)


# -- get / set -----------------------------------------------------------------


def test_get_returns_fresh_value(store: CacheStore) -> None:
    store.set("t1", {"v": 1})
    assert store.get("t1") == {"v": 1}


def test_get_missing_returns_none(store: CacheStore) -> None:
    assert store.get("nope") is None


def test_get_returns_none_once_expired(store: CacheStore, clock) -> None:
    store.set("t1", "x")
    clock.advance_ms(1000)
    assert store.get("t1") is None


def test_expired_value_still_readable_with_age(store: CacheStore, clock) -> None:
    store.set("t1", "x")
    clock.advance_ms(2500)
    cached = store.get_with_age("t1")
    assert cached is not None
    assert cached.value == "x"
    assert cached.age_ms == pytest.approx(2500)
    assert cached.is_expired is True
    assert cached.is_stale is True


def test_get_with_age_on_fresh_value(store: CacheStore, clock) -> None:
    store.set("t1", "x")
    clock.advance_ms(100)
    cached = store.get_with_age("t1")
    assert cached is not None
    assert cached.is_expired is False
    assert cached.is_stale is False


def test_entry_evicted_after_retention(store: CacheStore, clock) -> None:
    store.set("t1", "x")
    clock.advance_ms(1000 + 5000)
    assert store.get_with_age("t1") is None
    assert "t1" not in store


def test_set_uses_explicit_ttl_and_metadata(store: CacheStore, clock) -> None:
    entry = store.set("t1", "x", ttl_ms=3000, metadata={"source": "timer"})
    assert entry.ttl_ms == 3000
    assert entry.metadata == {"source": "timer"}
    clock.advance_ms(2000)
    assert store.get("t1") == "x"


def test_set_replaces_previous_value(store: CacheStore) -> None:
    store.set("t1", "old")
    store.set("t1", "new")
    assert store.get("t1") == "new"
    assert len(store) == 1


# -- delete / clear / cleanup --------------------------------------------------


def test_delete(store: CacheStore) -> None:
    store.set("t1", "x")
    assert store.delete("t1") is True
    assert store.delete("t1") is False
    assert store.get_with_age("t1") is None


def test_clear_resets_entries_and_counters(store: CacheStore) -> None:
    store.set("t1", "x")
    store.get("t1")
    store.clear()
    assert len(store) == 0
    assert store.stats().hits == 0


def test_cleanup_removes_only_entries_past_retention(
    store: CacheStore, clock
) -> None:
    store.set("old", 1)
    clock.advance_ms(5500)
    store.set("new", 2)
    clock.advance_ms(600)
    assert store.cleanup() == 1
    assert "old" not in store
    assert "new" in store


# -- Bounds --------------------------------------------------------------------


def test_max_entries_evicts_oldest(store: CacheStore, clock) -> None:
    for key in ("a", "b", "c"):
        store.set(key, key)
        clock.advance_ms(10)
    store.set("d", "d")
    assert "a" not in store
    assert {e.key for e in store.entries()} == {"b", "c", "d"}


def test_overwrite_does_not_evict(store: CacheStore) -> None:
    for key in ("a", "b", "c"):
        store.set(key, key)
    store.set("a", "again")
    assert len(store) == 3


@pytest.mark.parametrize("max_entries", [0, -1])
def test_max_entries_must_be_positive(max_entries: int) -> None:
    with pytest.raises(ValueError, match="max_entries"):
        CacheStore(max_entries=max_entries)


def test_single_entry_store_keeps_latest(clock) -> None:
    store = CacheStore(max_entries=1, clock=clock)
    store.set("a", 1)
    store.set("b", 2)
    assert len(store) == 1
    assert store.get("b") == 2


# -- Extras --------------------------------------------------------------------


def test_has(store: CacheStore, clock) -> None:
    store.set("t1", "x")
    assert store.has("t1") is True
    clock.advance_ms(1500)
    assert store.has("t1") is False


def test_touch_restarts_freshness(store: CacheStore, clock) -> None:
    store.set("t1", "x")
    clock.advance_ms(900)
    assert store.touch("t1") is True
    clock.advance_ms(900)
    assert store.get("t1") == "x"
    assert store.touch("missing") is False


def test_is_stale_after_fraction_of_ttl(store: CacheStore, clock) -> None:
    store.set("t1", "x")
    clock.advance_ms(700)
    assert store.is_stale("t1") is False
    clock.advance_ms(200)
    assert store.is_stale("t1") is True


def test_get_expiring(store: CacheStore, clock) -> None:
    store.set("soon", 1, ttl_ms=1000)
    store.set("later", 2, ttl_ms=100000)
    expiring = store.get_expiring(within_ms=2000)
    assert [e.key for e in expiring] == ["soon"]


def test_stats_track_hits_and_misses(store: CacheStore, clock) -> None:
    store.set("t1", "x")
    clock.advance_ms(10)
    store.set("t2", "y")
    store.get("t1")
    store.get("t1")
    store.get("missing")
    stats = store.stats()
    assert stats.total_entries == 2
    assert stats.hits == 2
    assert stats.misses == 1
    assert stats.hit_rate == pytest.approx(2 / 3)
    assert stats.oldest_stored_at < stats.newest_stored_at


def test_stats_on_empty_store(store: CacheStore) -> None:
    stats = store.stats()
    assert stats.hit_rate == 0.0
    assert stats.oldest_stored_at is None
