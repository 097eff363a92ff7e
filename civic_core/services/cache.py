"""In-process TTL cache with named tiers and LRU capacity eviction."""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .. import config


log = logging.getLogger(__name__)


class CacheTier(str, enum.Enum):
    VOLATILE = "volatile"
    STANDARD = "standard"
    DURABLE = "durable"


MISS = object()


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    stored_at: float
    ttl: float
    tier: CacheTier

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CacheStore:
    """Shared key/value store used by every adapter.

    ``get`` applies lazy expiry: an expired entry reads as a miss but stays in
    storage so ``peek`` can still hand it out as last-known data. Entries only
    leave storage through ``invalidate`` or LRU eviction once ``max_entries``
    is exceeded.
    """

    def __init__(
        self,
        max_entries: Optional[int] = None,
        tier_ttls: Optional[dict[str, float]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max(int(max_entries or config.CACHE_MAX_ENTRIES), 1)
        ttls = dict(config.CACHE_TIER_TTLS)
        ttls.update(tier_ttls or {})
        self._tier_ttls = {tier: float(ttls[tier.value]) for tier in CacheTier}
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def ttl_for(self, tier: CacheTier) -> float:
        return self._tier_ttls[CacheTier(tier)]

    def get(self, key: str) -> Any:
        """Return the cached value, or ``MISS`` when absent or expired."""

        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now):
                self._misses += 1
                return MISS
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry even if expired, without touching recency."""

        with self._lock:
            return self._entries.get(key)

    def put(
        self,
        key: str,
        value: Any,
        tier: CacheTier = CacheTier.STANDARD,
        ttl: Optional[float] = None,
    ) -> bool:
        try:
            effective_ttl = float(ttl) if ttl is not None else self.ttl_for(tier)
            if effective_ttl <= 0:
                raise ValueError(f"non-positive ttl {effective_ttl}")
            entry = CacheEntry(key, value, self._clock(), effective_ttl, CacheTier(tier))
        except (TypeError, ValueError) as exc:
            log.warning("Skipping cache write for %s: %s", key, exc)
            return False

        with self._lock:
            self._entries[key] = entry
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._evictions += 1
                log.debug("Evicted least recently used cache entry %s", evicted)
        return True

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "size": len(self._entries),
                "max_entries": self._max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }
