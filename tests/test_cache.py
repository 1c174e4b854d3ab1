"""
Cache-aside layer: hits, misses, TTL expiry, fail-open and key partitioning.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import orjson
import pytest
import redis

from catalog.access import project
from catalog.cache import CacheAside, MemoryCacheProvider, RedisCacheProvider, build_cache_key
from catalog.errors import CacheFailure, NotFound
from catalog.plans import PlanTier
from catalog.store import MemoryRecordStore
from tests.conftest import FakeClock, make_draft


class BrokenProvider:
    def get(self, key):
        raise ConnectionError("cache down")

    def set_with_ttl(self, key, value, ttl):
        raise ConnectionError("cache down")


class TestRead:
    def test_miss_computes_then_hit_skips_compute(self, cache: CacheAside) -> None:
        compute = MagicMock(return_value={"n": 1})

        assert cache.read("k", compute, 60) == {"n": 1}
        assert cache.read("k", compute, 60) == {"n": 1}
        compute.assert_called_once()

    def test_stale_until_ttl_then_fresh(self, clock: FakeClock) -> None:
        store = MemoryRecordStore()
        record = store.upsert(make_draft(1, title="Old title"))
        cache = CacheAside(MemoryCacheProvider(clock=clock))

        def compute():
            return project(store.find_by_id(record.id), PlanTier.PRO).model_dump()

        key = build_cache_key("record", {"id": record.id}, PlanTier.PRO)
        assert cache.read(key, compute, 300)["title"] == "Old title"

        store.upsert(make_draft(1, title="New title"))
        clock.advance(299)
        assert cache.read(key, compute, 300)["title"] == "Old title"

        clock.advance(2)
        assert cache.read(key, compute, 300)["title"] == "New title"

    def test_provider_errors_fall_back_to_compute(self) -> None:
        cache = CacheAside(BrokenProvider())
        assert cache.read("k", lambda: [1, 2], 60) == [1, 2]

    def test_no_provider_always_computes(self) -> None:
        cache = CacheAside(None)
        compute = MagicMock(return_value=[])
        cache.read("k", compute, 60)
        cache.read("k", compute, 60)
        assert compute.call_count == 2
        assert not cache.enabled

    def test_compute_errors_propagate_and_are_not_cached(self, cache: CacheAside) -> None:
        def missing():
            raise NotFound("Record not found")

        with pytest.raises(NotFound):
            cache.read("k", missing, 60)
        assert cache.provider.get("k") is None

    def test_corrupt_entry_is_a_miss(self) -> None:
        provider = MemoryCacheProvider()
        provider.set_with_ttl("k", b"{not json", 60)
        assert CacheAside(provider).read("k", lambda: {"ok": True}, 60) == {"ok": True}


class TestCacheKey:
    def test_tier_partitions_keys(self) -> None:
        keys = {build_cache_key("search", {"q": "hp"}, tier) for tier in PlanTier}
        assert len(keys) == len(PlanTier)

    def test_format(self) -> None:
        assert build_cache_key("latest", {}, PlanTier.BASIC) == "latest:all:BASIC"
        assert build_cache_key("price-range", {"min": 1000.0, "max": 2000}, "pro") == (
            "price-range:max=2000&min=1000:PRO"
        )

    def test_equivalent_queries_share_a_key(self) -> None:
        folded = build_cache_key("search", {"q": " HP "}, "MEGA", casefold=("q",))
        assert folded == build_cache_key("search", {"q": "hp"}, "MEGA", casefold=("q",))

    def test_opaque_params_keep_their_case(self) -> None:
        upper = build_cache_key("record", {"id": "AB12"}, "PRO")
        lower = build_cache_key("record", {"id": "ab12"}, "PRO")
        assert upper == "record:id=AB12:PRO"
        assert upper != lower

    def test_tier_is_mandatory(self) -> None:
        with pytest.raises(ValueError):
            build_cache_key("latest", {}, "")


class TestRedisCacheProvider:
    def test_uses_setex(self) -> None:
        client = MagicMock()
        provider = RedisCacheProvider(client)
        provider.set_with_ttl("k", orjson.dumps([1]), 120)
        client.setex.assert_called_once_with("k", 120, b"[1]")

    def test_get_passthrough(self) -> None:
        client = MagicMock()
        client.get.return_value = b"[]"
        assert RedisCacheProvider(client).get("k") == b"[]"

    def test_connection_errors_surface_as_cache_failure(self) -> None:
        client = MagicMock()
        client.get.side_effect = redis.exceptions.ConnectionError("refused")
        with pytest.raises(CacheFailure):
            RedisCacheProvider(client).get("k")

    def test_cache_failure_is_absorbed_by_read(self) -> None:
        client = MagicMock()
        client.get.side_effect = redis.exceptions.TimeoutError("slow")
        client.setex.side_effect = redis.exceptions.TimeoutError("slow")
        aside = CacheAside(RedisCacheProvider(client))
        assert aside.read("k", lambda: {"ok": True}, 60) == {"ok": True}
