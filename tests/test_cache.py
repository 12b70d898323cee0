"""
Tests for the request cache.
"""

from seatsync.services.cache import MAX_PARAMS_KEY_LENGTH, RequestCache
from seatsync.services.results import ApiResult


def test_key_is_independent_of_dict_ordering():
    a = RequestCache.generate_key("getSeatData", [{"b": 1, "a": 2}, "G1"])
    b = RequestCache.generate_key("getSeatData", [{"a": 2, "b": 1}, "G1"])
    assert a == b
    assert a.startswith("getSeatData:")


def test_long_params_are_hashed_but_keep_the_operation_prefix():
    params = [["A" + str(i) for i in range(200)]]
    key = RequestCache.generate_key("checkInMultipleSeats", params)
    assert key.startswith("checkInMultipleSeats:#")
    assert len(key) < len("checkInMultipleSeats:") + MAX_PARAMS_KEY_LENGTH


def test_entry_lives_for_ttl(clock):
    cache = RequestCache(ttl=60, clock=clock)
    key = cache.generate_key("getSeatData", ["G1", "1", "A", False])
    result = ApiResult.ok({"seats": []})
    cache.set(key, result)

    clock.advance(59)
    entry = cache.get(key)
    assert entry is not None
    assert entry.value is result

    clock.advance(2)
    assert cache.get(key) is None
    assert key not in cache


def test_negative_results_are_never_stored(clock):
    cache = RequestCache(clock=clock)
    assert cache.set("getSeatData:[]", ApiResult.fail("boom")) is False
    assert cache.set("getSeatData:[1]", {"success": False}) is False
    assert len(cache) == 0

    assert cache.set("getSeatData:[2]", {"success": True}) is True
    assert len(cache) == 1


def test_invalidate_prefix_matches_whole_operation_names(clock):
    cache = RequestCache(clock=clock)
    cache.set(cache.generate_key("getSeatData", ["G1"]), ApiResult.ok(1))
    cache.set(cache.generate_key("getSeatData", ["G2"]), ApiResult.ok(2))
    cache.set(cache.generate_key("getSeatDataMinimal", ["G1"]), ApiResult.ok(3))
    cache.set(cache.generate_key("getSystemLock", []), ApiResult.ok(4))

    assert cache.invalidate_prefix("getSeatData") == 2
    assert cache.generate_key("getSeatDataMinimal", ["G1"]) in cache
    assert cache.generate_key("getSystemLock", []) in cache


def test_oldest_entry_is_evicted_when_full(clock):
    cache = RequestCache(max_size=2, clock=clock)
    cache.set("a:[]", ApiResult.ok(1))
    clock.advance(1)
    cache.set("b:[]", ApiResult.ok(2))
    clock.advance(1)
    cache.set("c:[]", ApiResult.ok(3))

    assert "a:[]" not in cache
    assert "b:[]" in cache and "c:[]" in cache
    assert cache.get_stats().evictions == 1


def test_cleanup_expired_sweeps_stale_entries(clock):
    cache = RequestCache(ttl=10, clock=clock)
    cache.set("a:[]", ApiResult.ok(1))
    clock.advance(6)
    cache.set("b:[]", ApiResult.ok(2))
    clock.advance(5)

    assert cache.sweep_interval == 5
    assert cache.cleanup_expired() == 1
    assert "b:[]" in cache

    stats = cache.get_stats()
    assert stats.valid_entries == 1
    assert stats.to_dict()["total_entries"] == 1


def test_generation_moves_on_every_purge(clock):
    cache = RequestCache(clock=clock)
    before = cache.generation("getSeatData")
    other = cache.generation("getSystemLock")

    cache.invalidate_prefix("getSeatData")
    assert cache.generation("getSeatData") != before
    assert cache.generation("getSystemLock") == other

    cache.clear()
    assert cache.generation("getSystemLock") != other
