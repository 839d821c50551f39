"""Read-through cache over the reference mapping table (core domain).

Entries have no wall-clock TTL. Administrative writes invalidate the affected
keys explicitly, so staleness is bounded by the admin path, not by time.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Optional, Tuple

from core.config import CacheConfig
from core.errors import LookupUnavailable
from core.ports import MappingLookupPort

LOGGER = logging.getLogger(__name__)

CacheKey = Tuple[str, Optional[str]]


class ReferenceMappingCache:
    """Resolve mapping existence with a cache-aside dict keyed by exact pair."""

    def __init__(self, lookup: MappingLookupPort, config: CacheConfig) -> None:
        self._lookup = lookup
        self._timeout = config.lookup_timeout_seconds
        self._entries: dict[CacheKey, bool] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    async def exists(self, category: str, subcategory: Optional[str] = None) -> bool:
        """Return whether the pair (or the category alone) exists.

        Raises LookupUnavailable when the authoritative source times out or
        errors; nothing is cached in that case.
        """

        key: CacheKey = (category, subcategory)
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                self.hits += 1
                return cached
            self.misses += 1

        try:
            found = await asyncio.wait_for(
                self._lookup.lookup(category, subcategory),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise LookupUnavailable(category, subcategory, "timed out") from exc
        except Exception as exc:
            raise LookupUnavailable(category, subcategory, str(exc) or type(exc).__name__) from exc

        found = bool(found)
        # Concurrent misses may both populate; values come from the same source.
        with self._lock:
            self._entries[key] = found
        return found

    def invalidate(self, category: str, subcategory: Optional[str] = None) -> None:
        """Drop the pair key and the category-only key."""

        with self._lock:
            self._entries.pop((category, None), None)
            if subcategory is not None:
                self._entries.pop((category, subcategory), None)
        LOGGER.debug("Mapping cache invalidated for %s/%s", category, subcategory)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
