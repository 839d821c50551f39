from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from core.config import CacheConfig
from core.errors import DuplicateMapping, LookupUnavailable
from core.mapping_cache import ReferenceMappingCache
from core.mappings import MappingAdministration
from core.models import MappingEntry


class CountingLookup:
    def __init__(self, pairs: set[tuple[str, str]]) -> None:
        self.pairs = set(pairs)
        self.calls: list[tuple[str, Optional[str]]] = []
        self.error: Optional[Exception] = None
        self.delay = 0.0

    async def lookup(self, category: str, subcategory: Optional[str] = None) -> bool:
        self.calls.append((category, subcategory))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if subcategory is None:
            return any(cat == category for cat, _ in self.pairs)
        return (category, subcategory) in self.pairs

    def add_mapping(self, entry: MappingEntry) -> bool:
        if entry.key in self.pairs:
            return False
        self.pairs.add(entry.key)
        return True

    def remove_mapping(self, category: str, subcategory: str) -> bool:
        if (category, subcategory) not in self.pairs:
            return False
        self.pairs.discard((category, subcategory))
        return True

    def list_mappings(self) -> list[MappingEntry]:
        return [MappingEntry(cat, sub) for cat, sub in sorted(self.pairs)]


def _cache(lookup: CountingLookup, timeout: float = 1) -> ReferenceMappingCache:
    return ReferenceMappingCache(lookup, CacheConfig(lookup_timeout_seconds=timeout))


def test_second_lookup_is_served_from_cache() -> None:
    lookup = CountingLookup({("RETAIL", "APP01")})
    cache = _cache(lookup)

    assert asyncio.run(cache.exists("RETAIL", "APP01"))
    assert asyncio.run(cache.exists("RETAIL", "APP01"))

    assert lookup.calls == [("RETAIL", "APP01")]
    assert cache.hits == 1
    assert cache.misses == 1


def test_negative_results_are_cached_too() -> None:
    lookup = CountingLookup(set())
    cache = _cache(lookup)

    assert not asyncio.run(cache.exists("RETAIL", "APP01"))
    assert not asyncio.run(cache.exists("RETAIL", "APP01"))
    assert len(lookup.calls) == 1


def test_category_only_check_uses_its_own_key() -> None:
    lookup = CountingLookup({("RETAIL", "APP01")})
    cache = _cache(lookup)

    assert asyncio.run(cache.exists("RETAIL"))
    assert asyncio.run(cache.exists("RETAIL", "APP01"))
    assert lookup.calls == [("RETAIL", None), ("RETAIL", "APP01")]


def test_lookup_error_raises_and_is_not_cached() -> None:
    lookup = CountingLookup({("RETAIL", "APP01")})
    lookup.error = ConnectionError("down")
    cache = _cache(lookup)

    with pytest.raises(LookupUnavailable):
        asyncio.run(cache.exists("RETAIL", "APP01"))
    assert len(cache) == 0

    lookup.error = None
    assert asyncio.run(cache.exists("RETAIL", "APP01"))


def test_slow_lookup_times_out_as_unavailable() -> None:
    lookup = CountingLookup({("RETAIL", "APP01")})
    lookup.delay = 0.5
    cache = _cache(lookup, timeout=0.01)

    with pytest.raises(LookupUnavailable) as excinfo:
        asyncio.run(cache.exists("RETAIL", "APP01"))
    assert "timed out" in str(excinfo.value)


def test_admin_add_invalidates_pair_and_category_keys() -> None:
    lookup = CountingLookup(set())
    cache = _cache(lookup)
    admin = MappingAdministration(lookup, cache)

    assert not asyncio.run(cache.exists("RETAIL"))
    assert not asyncio.run(cache.exists("RETAIL", "APP01"))

    admin.add(MappingEntry("RETAIL", "APP01", "Payments portal"))

    assert asyncio.run(cache.exists("RETAIL"))
    assert asyncio.run(cache.exists("RETAIL", "APP01"))


def test_admin_remove_invalidates_positive_entry() -> None:
    lookup = CountingLookup({("RETAIL", "APP01")})
    cache = _cache(lookup)
    admin = MappingAdministration(lookup, cache)

    assert asyncio.run(cache.exists("RETAIL", "APP01"))
    assert admin.remove("RETAIL", "APP01")
    assert not asyncio.run(cache.exists("RETAIL", "APP01"))


def test_duplicate_add_is_rejected() -> None:
    lookup = CountingLookup({("RETAIL", "APP01")})
    admin = MappingAdministration(lookup, _cache(lookup))
    with pytest.raises(DuplicateMapping):
        admin.add(MappingEntry("RETAIL", "APP01"))


def test_concurrent_misses_settle_on_the_same_value() -> None:
    lookup = CountingLookup({("RETAIL", "APP01")})
    lookup.delay = 0.01
    cache = _cache(lookup)

    async def _many() -> list[bool]:
        return await asyncio.gather(*(cache.exists("RETAIL", "APP01") for _ in range(5)))

    assert asyncio.run(_many()) == [True] * 5
    assert len(cache) == 1
