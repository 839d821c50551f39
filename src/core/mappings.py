"""Administrative operations over reference mappings (core domain)."""

from __future__ import annotations

import logging

from core.errors import DuplicateMapping
from core.mapping_cache import ReferenceMappingCache
from core.models import MappingEntry
from core.ports import MappingStorePort

LOGGER = logging.getLogger(__name__)


class MappingAdministration:
    """Write-through mapping changes that keep the cache consistent."""

    def __init__(self, store: MappingStorePort, cache: ReferenceMappingCache) -> None:
        self._store = store
        self._cache = cache

    def add(self, entry: MappingEntry) -> None:
        if not self._store.add_mapping(entry):
            raise DuplicateMapping(entry.category, entry.subcategory)
        self._cache.invalidate(entry.category, entry.subcategory)
        LOGGER.info("Mapping added: %s/%s", entry.category, entry.subcategory)

    def remove(self, category: str, subcategory: str) -> bool:
        removed = self._store.remove_mapping(category, subcategory)
        # Invalidate even on a no-op so a stale positive entry cannot survive.
        self._cache.invalidate(category, subcategory)
        if removed:
            LOGGER.info("Mapping removed: %s/%s", category, subcategory)
        return removed

    def list(self) -> list[MappingEntry]:
        return self._store.list_mappings()
