"""
In-process advice cache keyed by request fingerprint.

Entries live exactly ``ttl_seconds`` after insertion (no sliding expiration).
The cache is bounded: once over ``max_entries`` the oldest-inserted entries
are evicted first.
"""

import asyncio
import hashlib
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


def fingerprint(user_id: int, systolic: int, diastolic: int) -> str:
    """Deterministic cache key for an advice request."""
    raw = f"{user_id}:{systolic}:{diastolic}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class AdviceCacheEntry:
    text: str
    inserted_at: float
    expires_at: float


class AdviceCache:
    """TTL + FIFO-bounded mapping of fingerprint to advice text."""

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[str, AdviceCacheEntry] = OrderedDict()
        self._lock = asyncio.Lock()
        self.logger = logger.bind(component="advice_cache")

    async def get(self, key: str) -> str | None:
        """Return cached text, or None on a miss or an expired entry."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                self.logger.debug("advice_cache_entry_expired", key=key[:12])
                return None
            return entry.text

    async def put(self, key: str, text: str) -> None:
        """Insert or replace an entry; replacing restarts its TTL."""
        async with self._lock:
            now = self._clock()
            self._entries.pop(key, None)
            self._entries[key] = AdviceCacheEntry(
                text=text, inserted_at=now, expires_at=now + self.ttl_seconds
            )
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self.logger.debug("advice_cache_entry_evicted", key=evicted[:12])

    async def sweep(self) -> int:
        """Evict all expired entries. Returns the number removed."""
        async with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if now >= e.expires_at]
            for key in expired:
                del self._entries[key]
        if expired:
            self.logger.info("advice_cache_swept", removed=len(expired))
        return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[call-overload]
        return entry is not None and self._clock() < entry.expires_at
