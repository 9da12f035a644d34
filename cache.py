#!/usr/bin/env python3
"""
In-memory parse result cache.

Bounded LRU with per-entry TTL. Recency is the iteration order of an
OrderedDict: hits are moved to the end, evictions pop from the front. Expired
entries are dropped lazily on read and by a periodic sweep task. All mutation
happens on the event loop thread, so no locking is needed.
"""

from asyncio import CancelledError, Task, create_task, sleep
from collections import OrderedDict
from dataclasses import dataclass
from time import time
from typing import Callable, Optional

from config import config, get_logger
from models import FeedParseResult

logger = get_logger("cache")


@dataclass
class CacheEntry:
    result: FeedParseResult
    timestamp: float
    access_time: float


class FeedCache:
    """Bounded LRU + TTL store of parse results keyed by URL."""

    def __init__(
        self,
        max_entries: Optional[int] = None,
        ttl: Optional[float] = None,
        failure_ttl: Optional[float] = None,
        sweep_interval: Optional[float] = None,
        clock: Callable[[], float] = time,
    ) -> None:
        self.max_entries = config.CACHE_MAX_ENTRIES if max_entries is None else max_entries
        if self.max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {self.max_entries}")
        self.ttl = config.CACHE_TTL_SECONDS if ttl is None else ttl
        if failure_ttl is None:
            # Follow an explicit success TTL unless a failure window is configured
            failure_ttl = self.ttl if ttl is not None else config.CACHE_FAILURE_TTL_SECONDS
        self.failure_ttl = failure_ttl
        self.sweep_interval = config.CACHE_SWEEP_INTERVAL_SECONDS if sweep_interval is None else sweep_interval
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._sweeper: Optional[Task] = None

    def _ttl_for(self, entry: CacheEntry) -> float:
        return self.ttl if entry.result.success else self.failure_ttl

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp > self._ttl_for(entry)

    def get(self, url: str) -> Optional[FeedParseResult]:
        """Return the cached result for `url`, or None on miss/expiry."""
        entry = self._entries.get(url)
        if entry is None:
            return None

        now = self._clock()
        if self._is_expired(entry, now):
            del self._entries[url]
            logger.debug(f"Cache entry expired for {url}")
            return None

        entry.access_time = now
        self._entries.move_to_end(url)
        return entry.result

    def set(self, url: str, result: FeedParseResult) -> None:
        """Store `result`, evicting the least recently used entry when full."""
        if url in self._entries:
            del self._entries[url]
        elif len(self._entries) >= self.max_entries:
            evicted_url, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted least recently used cache entry {evicted_url}")

        now = self._clock()
        self._entries[url] = CacheEntry(result=result, timestamp=now, access_time=now)

    def sweep(self) -> int:
        """Remove every expired entry; returns how many were removed."""
        now = self._clock()
        expired = [url for url, entry in self._entries.items() if self._is_expired(entry, now)]
        for url in expired:
            del self._entries[url]
        if expired:
            logger.debug(f"Swept {len(expired)} expired cache entries")
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def size(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: str) -> bool:
        return url in self._entries

    def start_sweeper(self) -> None:
        """Start the periodic sweep on the running event loop (idempotent)."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = create_task(self._sweep_loop())
        logger.debug(f"Cache sweeper started (interval {self.sweep_interval}s)")

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def _sweep_loop(self) -> None:
        while True:
            await sleep(self.sweep_interval)
            self.sweep()

    async def close(self) -> None:
        """Stop the sweep task and drop all entries."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except CancelledError:
                pass
            self._sweeper = None
            logger.debug("Cache sweeper stopped")
        self.clear()
