"""
Two-tier adaptive TTL cache.

Entries live in a bounded in-memory store backed by SQLite. Each key's hits
and misses feed a periodic optimization pass that recommends a new TTL for
the key's next write: popular keys live longer, unpopular keys expire sooner,
and slow connections shorten everything. Entries past their expiry stay
usable as stale data for a grace window while the caller revalidates.
"""

import asyncio
import json
import logging
import sqlite3
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from ..config import CacheConfig, StorageConfig, get_config_manager
from ..errors import CacheWriteError, ValidationError, report_error
from ..lifecycle import Lifecycle
from ..models import (
    AccessMetrics,
    CacheEntry,
    CacheLookup,
    CacheSource,
    CacheStatus,
    ConnectionInfo,
)
from ..telemetry import MetricsBeacon
from .policy import TTLPolicy, accesses_per_day
from .stores import MemoryStore, SQLiteStore

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]
UrlFetcher = Callable[[str], Awaitable[Any]]


class AdaptiveCacheManager(Lifecycle):
    """
    Key/value cache with popularity-driven TTLs.

    Features:
    - Memory tier with LRU eviction in front of a durable SQLite tier
    - Fresh/stale/miss lookups with a stale-while-revalidate grace window
    - Per-key access metrics persisted across restarts
    - Periodic TTL optimization with an aggregate metrics beacon
    - Cache warm-up for catalog pages
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        storage_config: Optional[StorageConfig] = None,
        beacon: Optional[MetricsBeacon] = None,
        clock: Callable[[], float] = time.time,
        durable: Optional[SQLiteStore] = None,
    ):
        if config is None or (storage_config is None and durable is None):
            manager = get_config_manager()
            config = config or manager.get_cache_config()
            storage_config = storage_config or manager.get_storage_config()

        self.config = config
        self.policy = TTLPolicy(config)
        self.memory = MemoryStore(config.memory_max_entries)
        self.durable = durable or SQLiteStore(
            storage_config.db_path, timeout=storage_config.connection_timeout
        )
        self.beacon = beacon
        self.clock = clock
        self.connection = ConnectionInfo()

        self._metrics: Dict[str, AccessMetrics] = {}
        self._lock = asyncio.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "stale_hits": 0,
            "writes": 0,
            "write_failures": 0,
            "invalidations": 0,
            "swept": 0,
            "background_refreshes": 0,
            "optimizations": 0,
        }

        self._initialized = False
        self._optimization_task: Optional[asyncio.Task] = None
        self._refresh_tasks: Dict[str, asyncio.Task] = {}

    async def initialize(self) -> None:
        """Open the durable tier, sweep dead entries and restore metrics."""
        if self._initialized:
            return

        logger.info("Initializing adaptive cache")

        try:
            await self.durable.initialize()
        except (sqlite3.Error, OSError) as e:
            logger.warning(f"Durable cache unavailable, running memory-only: {e}")

        if self.durable.is_open:
            await self.sweep()
            if self.config.persist_metrics:
                try:
                    self._metrics.update(await self.durable.load_metrics())
                except sqlite3.Error as e:
                    logger.warning(f"Failed to restore cache metrics: {e}")

        if self.config.metrics_interval_seconds > 0:
            self._optimization_task = asyncio.create_task(self._optimization_worker())

        self._initialized = True
        logger.info(
            f"Adaptive cache initialized: strategy={self.config.strategy}, "
            f"tracked_keys={len(self._metrics)}"
        )

    async def cleanup(self) -> None:
        """Stop background work, flush metrics and close the durable tier."""
        if not self._initialized:
            return

        logger.info("Cleaning up adaptive cache")

        if self._optimization_task:
            self._optimization_task.cancel()
            try:
                await self._optimization_task
            except asyncio.CancelledError:
                pass
            self._optimization_task = None

        for task in list(self._refresh_tasks.values()):
            task.cancel()
        if self._refresh_tasks:
            await asyncio.gather(*self._refresh_tasks.values(), return_exceptions=True)
        self._refresh_tasks.clear()

        await self._persist_metrics()
        await self.durable.close()

        self._initialized = False
        logger.info("Adaptive cache cleanup completed")

    def update_connection(self, connection: ConnectionInfo) -> None:
        self.connection = connection
        logger.debug(
            f"Connection updated: {connection.effective_type} (save_data={connection.save_data})"
        )

    def _track(self, key: str, resource_type: Optional[str] = None) -> AccessMetrics:
        metrics = self._metrics.get(key)
        if metrics is None:
            metrics = AccessMetrics(key=key, resource_type=resource_type or "generic")
            self._metrics[key] = metrics
        return metrics

    def get_metrics(self, key: str) -> Optional[AccessMetrics]:
        return self._metrics.get(key)

    async def _lookup(self, key: str) -> Optional[tuple]:
        entry = self.memory.get(key)
        if entry is not None:
            return entry, CacheSource.MEMORY

        if not self.durable.is_open:
            return None
        try:
            entry = await self.durable.get(key)
        except sqlite3.Error as e:
            logger.warning(f"Durable cache read failed for {key}: {e}")
            return None
        if entry is None:
            return None

        self.memory.put(entry)
        return entry, CacheSource.DURABLE

    async def get(self, key: str) -> CacheLookup:
        """Look a key up in the memory tier, then the durable tier.

        Returns a fresh hit before expiry, a stale hit inside the grace
        window after it, and a miss otherwise. Every lookup is counted
        against the key's access metrics.
        """
        now = self.clock()
        async with self._lock:
            found = await self._lookup(key)
            entry, source = found if found else (None, None)
            freshness = (
                entry.freshness_at(now, self.config.stale_grace_seconds) if entry else None
            )

            value = None
            if freshness is not None:
                try:
                    value = json.loads(entry.value)
                except ValueError as e:
                    logger.warning(f"Ignoring undecodable cache entry {key}: {e}")
                    freshness = None

            metrics = self._track(key, entry.resource_type if entry else None)
            if freshness is None:
                metrics.record(hit=False, now=now)
                self._stats["misses"] += 1
                logger.debug(f"Cache miss for {key}")
                return CacheLookup(key=key, status=CacheStatus.MISS)

            metrics.record(hit=True, now=now)
            self._stats["hits"] += 1
            lookup = CacheLookup(
                key=key,
                status=CacheStatus.HIT,
                freshness=freshness,
                value=value,
                expires_at=entry.expires_at,
                source=source,
            )
            if lookup.is_stale:
                self._stats["stale_hits"] += 1
            logger.debug(f"Cache hit for {key} ({freshness.value}, {source.value})")
            return lookup

    async def set(
        self,
        key: str,
        value: Any,
        resource_type: str = "generic",
        ttl: Optional[int] = None,
    ) -> bool:
        """Store a JSON-serializable value in both tiers.

        The expiry normally comes from the key's recommended TTL (or the base
        TTL for its resource type). An explicit ``ttl`` is the one exception:
        it sets this entry's expiry directly, still clamped to the configured
        bounds, and leaves the recommendation untouched.

        Returns:
            True when the entry was written to every available tier
        """
        if not key:
            report_error(ValidationError("Cache key must not be empty", field="key"))
            return False

        try:
            serialized = json.dumps(value)
        except (TypeError, ValueError) as e:
            self._stats["write_failures"] += 1
            report_error(
                CacheWriteError(key, f"Value is not JSON serializable: {e}", serialization=True, cause=e)
            )
            return False

        now = self.clock()
        async with self._lock:
            metrics = self._metrics.get(key)
            if ttl is not None:
                ttl = self.policy.clamp(ttl)
            else:
                ttl = self.policy.ttl_for_write(resource_type, metrics, self.connection)

            entry = CacheEntry(
                key=key,
                value=serialized,
                created_at=now,
                expires_at=now + ttl,
                resource_type=resource_type,
            )
            self.memory.put(entry)

            metrics = self._track(key, resource_type)
            if metrics.recommended_ttl is None or metrics.resource_type != resource_type:
                metrics.recommended_ttl = self.policy.clamp(self.policy.base_ttl_for(resource_type))
                metrics.resource_type = resource_type

            if self.durable.is_open:
                try:
                    await self.durable.put(entry)
                except sqlite3.Error as e:
                    self._stats["write_failures"] += 1
                    report_error(CacheWriteError(key, f"Durable cache write failed: {e}", cause=e))
                    return False

            self._stats["writes"] += 1
            logger.debug(f"Cached {key} ({resource_type}, ttl={ttl}s)")
            return True

    async def invalidate(self, key: str) -> bool:
        """Remove a key from both tiers. Its access metrics are kept."""
        async with self._lock:
            removed = self.memory.delete(key)
            if self.durable.is_open:
                try:
                    removed = await self.durable.delete(key) or removed
                except sqlite3.Error as e:
                    logger.warning(f"Durable cache delete failed for {key}: {e}")

            if removed:
                self._stats["invalidations"] += 1
                logger.debug(f"Invalidated {key}")
            return removed

    async def clear(self) -> int:
        """Drop every entry and every access metric."""
        async with self._lock:
            count = self.memory.clear()
            if self.durable.is_open:
                try:
                    count = max(count, await self.durable.clear(include_metrics=True))
                except sqlite3.Error as e:
                    logger.warning(f"Durable cache clear failed: {e}")
            self._metrics.clear()

        logger.info(f"Cleared cache ({count} entries)")
        return count

    async def sweep(self) -> int:
        """Delete entries past expiry plus the stale grace window."""
        cutoff = self.clock() - self.config.stale_grace_seconds
        async with self._lock:
            removed = self.memory.sweep(cutoff)
            if self.durable.is_open:
                try:
                    removed = max(removed, await self.durable.sweep(cutoff))
                except sqlite3.Error as e:
                    logger.warning(f"Cache sweep failed: {e}")

        self._stats["swept"] += removed
        if removed:
            logger.info(f"Swept {removed} expired cache entries")
        return removed

    def _is_popular(self, metrics: AccessMetrics, now: float) -> bool:
        rate = accesses_per_day(metrics, now)
        return rate is not None and rate >= self.config.popularity_threshold

    def _summary(self, now: float) -> Dict[str, Any]:
        total_hits = sum(m.hits for m in self._metrics.values())
        total_misses = sum(m.misses for m in self._metrics.values())
        total = total_hits + total_misses
        return {
            "totalHits": total_hits,
            "totalMisses": total_misses,
            "totalResources": len(self._metrics),
            "popularResources": sum(1 for m in self._metrics.values() if self._is_popular(m, now)),
            "globalHitRatio": (total_hits / total) * 100 if total else 0.0,
            "timestamp": int(now * 1000),
        }

    async def optimize(self) -> Dict[str, Any]:
        """Recompute TTL recommendations for every tracked key.

        Existing entries keep their expiry; the new TTLs apply from the next
        write of each key.
        """
        now = self.clock()
        async with self._lock:
            for metrics in self._metrics.values():
                metrics.recommended_ttl = self.policy.recommend(metrics, now)
                metrics.last_updated = now
            summary = self._summary(now)

        await self._persist_metrics()
        self._stats["optimizations"] += 1

        if self.beacon is not None:
            self.beacon.send(summary)

        logger.info(
            f"Cache optimization: {summary['totalResources']} keys, "
            f"{summary['popularResources']} popular, hit ratio {summary['globalHitRatio']:.1f}%"
        )
        return summary

    async def _persist_metrics(self) -> None:
        if not self.config.persist_metrics or not self.durable.is_open or not self._metrics:
            return
        try:
            saved = await self.durable.save_metrics(list(self._metrics.values()))
            logger.debug(f"Persisted metrics for {saved} keys")
        except sqlite3.Error as e:
            logger.warning(f"Failed to persist cache metrics: {e}")

    async def _optimization_worker(self) -> None:
        """Background worker for periodic TTL optimization."""
        while True:
            try:
                await asyncio.sleep(self.config.metrics_interval_seconds)
                await self.optimize()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Cache optimization worker error: {e}")

    async def get_or_fetch(self, key: str, fetch: Fetcher, resource_type: str = "generic") -> Any:
        """Return the cached value, fetching and storing it on a miss.

        A stale hit is returned immediately and refreshed in the background.
        Errors raised by ``fetch`` on a miss propagate to the caller.
        """
        lookup = await self.get(key)
        if lookup.is_hit:
            if lookup.is_stale:
                self._schedule_refresh(key, fetch, resource_type)
            return lookup.value

        value = await fetch()
        if not await self.set(key, value, resource_type):
            logger.debug(f"Fetched value for {key} was not cached")
        return value

    def _schedule_refresh(self, key: str, fetch: Fetcher, resource_type: str) -> None:
        if key in self._refresh_tasks:
            return
        task = asyncio.create_task(self._refresh(key, fetch, resource_type))
        self._refresh_tasks[key] = task
        task.add_done_callback(lambda _: self._refresh_tasks.pop(key, None))

    async def _refresh(self, key: str, fetch: Fetcher, resource_type: str) -> None:
        try:
            value = await fetch()
            await self.set(key, value, resource_type)
            self._stats["background_refreshes"] += 1
            logger.debug(f"Revalidated stale entry {key}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Background refresh failed for {key}: {e}")

    async def wait_for_refreshes(self) -> None:
        if self._refresh_tasks:
            await asyncio.gather(*self._refresh_tasks.values(), return_exceptions=True)

    def _warmup_candidates(self, urls: Iterable[str]) -> List[str]:
        patterns = self.config.warmup_patterns
        selected = [url for url in dict.fromkeys(urls) if any(p in url for p in patterns)]

        now = self.clock()
        window_start = now - self.config.popularity_window_seconds
        popular = sorted(
            (
                m
                for m in self._metrics.values()
                if m.key.startswith("/")
                and m.last_access is not None
                and m.last_access >= window_start
                and self._is_popular(m, now)
            ),
            key=lambda m: -m.total_accesses,
        )
        selected.extend(m.key for m in popular if m.key not in selected)
        return selected[: self.config.max_warmup_urls]

    async def warmup(self, urls: Iterable[str], fetch: UrlFetcher) -> int:
        """Pre-populate catalog pages.

        Only URLs matching the warm-up patterns are fetched, together with
        recently popular page keys, with a bounded number in flight. Failed
        fetches are skipped.

        Returns:
            Number of pages cached
        """
        if not self.config.enable_warmup:
            return 0

        candidates = self._warmup_candidates(urls)
        if not candidates:
            return 0

        semaphore = asyncio.Semaphore(self.config.warmup_concurrency)

        async def warm(url: str) -> bool:
            async with semaphore:
                try:
                    body = await fetch(url)
                except Exception as e:
                    logger.debug(f"Warm-up fetch failed for {url}: {e}")
                    return False
                return await self.set(url, body, resource_type="page")

        results = await asyncio.gather(*(warm(url) for url in candidates))
        warmed = sum(1 for ok in results if ok)
        logger.info(f"Cache warm-up: {warmed}/{len(candidates)} pages cached")
        return warmed

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        now = self.clock()
        durable_entries = None
        async with self._lock:
            if self.durable.is_open:
                try:
                    durable_entries = await self.durable.count()
                except sqlite3.Error as e:
                    logger.warning(f"Failed to count durable entries: {e}")

            lookups = self._stats["hits"] + self._stats["misses"]
            popular: Set[str] = {
                key for key, m in self._metrics.items() if self._is_popular(m, now)
            }
            return {
                **self._stats.copy(),
                "hit_ratio": (self._stats["hits"] / lookups) * 100 if lookups else 0.0,
                "tracked_keys": len(self._metrics),
                "popular_keys": len(popular),
                "memory_entries": len(self.memory),
                "memory_evictions": self.memory.evictions,
                "durable_entries": durable_entries,
                "durable_available": self.durable.is_open,
                "connection": self.connection.effective_type,
                "strategy": self.config.strategy,
            }
