"""
Speculative prefetch of likely next navigations.

Hover, viewport and touch signals on catalog links are debounced into a
priority queue that a small pool of worker tasks drains with low-priority
page fetches. Prefetched pages can be handed to the cache so the following
navigation is served locally.
"""

import asyncio
import heapq
import itertools
import logging
import re
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import urlsplit

import httpx
from asyncio_throttle import Throttler

from .config import PrefetchConfig, get_config_manager
from .errors import PrefetchDispatchError
from .lifecycle import Lifecycle
from .models import ConnectionInfo, PrefetchHint, PrefetchPriority, PrefetchQueueEntry

logger = logging.getLogger(__name__)

PageCallback = Callable[[str, str], Awaitable[None]]

_REJECTED_PREFIXES = ("#", "//", "mailto:", "tel:", "javascript:")


class PrefetchManager(Lifecycle):
    """
    Queues and dispatches prefetches for catalog links.

    Features:
    - Hover and viewport dwell timers cancelled when the signal ends
    - Priority queue: hover before visible before manual, FIFO within a tier
    - Bounded worker pool with a dispatch rate limit
    - Same-origin and URL pattern allow-list, each URL fetched at most once
    - Disabled under data-saver or slow connections
    """

    def __init__(
        self,
        config: Optional[PrefetchConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        on_page_fetched: Optional[PageCallback] = None,
    ):
        self.config = config or get_config_manager().get_prefetch_config()
        self.on_page_fetched = on_page_fetched
        self.connection = ConnectionInfo()

        self._client = client
        self._owns_client = client is None
        self._origin = urlsplit(self.config.origin)
        self._patterns = [re.compile(pattern) for pattern in self.config.url_patterns]
        self._throttler = Throttler(rate_limit=self.config.dispatch_rate_limit, period=1)

        self._queue: List[PrefetchQueueEntry] = []
        self._sequence = itertools.count()
        self._queued: Set[str] = set()
        self._in_flight: Set[str] = set()
        self._prefetched: Set[str] = set()
        self._timers: Dict[Tuple[str, str], asyncio.Task] = {}
        self._wakeup = asyncio.Event()
        self._workers: List[asyncio.Task] = []
        self.hints: List[PrefetchHint] = []

        self._stats = {
            "queued": 0,
            "dispatched": 0,
            "succeeded": 0,
            "failed": 0,
            "skipped": 0,
            "cancelled": 0,
        }
        self._initialized = False

    async def initialize(self) -> None:
        if self._initialized:
            return

        for worker_id in range(self.config.concurrent_prefetches):
            self._workers.append(asyncio.create_task(self._worker(worker_id)))

        self._initialized = True
        logger.info(
            f"Prefetch manager initialized: workers={self.config.concurrent_prefetches}, "
            f"enabled={self.config.enabled}"
        )

    async def cleanup(self) -> None:
        if not self._initialized:
            return

        for task in self._timers.values():
            task.cancel()
        self._timers.clear()

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        self._queue.clear()
        self._queued.clear()

        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

        self._initialized = False
        logger.info("Prefetch manager cleanup completed")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout)
        return self._client

    def update_connection(self, connection: ConnectionInfo) -> None:
        self.connection = connection
        if self._suppressed():
            logger.info(f"Prefetch suspended for connection {connection.effective_type}")

    def _suppressed(self) -> bool:
        if self.config.respect_data_saver and self.connection.save_data:
            return True
        if self.config.respect_connection_type and self.connection.is_slow:
            return True
        return False

    def normalize(self, url: str) -> Optional[str]:
        """Same-origin path (with query) for a link, or None for foreign links."""
        if not url or url.startswith(_REJECTED_PREFIXES):
            return None

        parts = urlsplit(url)
        if parts.scheme or parts.netloc:
            if (parts.scheme, parts.netloc) != (self._origin.scheme, self._origin.netloc):
                return None
        if not parts.path.startswith("/"):
            return None
        return f"{parts.path}?{parts.query}" if parts.query else parts.path

    def _matches_patterns(self, path: str) -> bool:
        route = urlsplit(path).path
        return any(pattern.match(route) for pattern in self._patterns)

    def _eligible_path(self, path: Optional[str]) -> bool:
        if not self.config.enabled or self._suppressed() or path is None:
            return False
        if path in self._prefetched or path in self._queued or path in self._in_flight:
            return False
        return self._matches_patterns(path)

    def is_eligible(self, url: str) -> bool:
        return self._eligible_path(self.normalize(url))

    def _schedule(self, kind: str, url: str, delay_ms: int, priority: PrefetchPriority) -> bool:
        path = self.normalize(url)
        if not self._eligible_path(path):
            return False

        key = (kind, path)
        existing = self._timers.get(key)
        if existing is not None and not existing.done():
            return True

        task = asyncio.create_task(self._fire_after(key, delay_ms / 1000, priority))
        self._timers[key] = task
        return True

    async def _fire_after(self, key: Tuple[str, str], delay: float, priority: PrefetchPriority) -> None:
        try:
            await asyncio.sleep(delay)
        finally:
            if self._timers.get(key) is asyncio.current_task():
                del self._timers[key]
        self._enqueue(key[1], priority)

    def _cancel(self, kind: str, url: str) -> bool:
        path = self.normalize(url)
        task = self._timers.pop((kind, path), None) if path else None
        if task is None or task.done():
            return False
        task.cancel()
        self._stats["cancelled"] += 1
        return True

    def hover_start(self, url: str) -> bool:
        """Pointer entered a link; prefetch after the hover delay."""
        return self._schedule("hover", url, self.config.hover_delay_ms, PrefetchPriority.HOVER)

    def hover_end(self, url: str) -> bool:
        """Pointer left a link before the delay elapsed."""
        return self._cancel("hover", url)

    def link_visible(self, url: str) -> bool:
        """Link entered the viewport; prefetch if it stays visible long enough."""
        if not self.config.prefetch_on_visible:
            return False
        return self._schedule(
            "visible", url, self.config.visible_dwell_ms, PrefetchPriority.VISIBLE
        )

    def link_hidden(self, url: str) -> bool:
        return self._cancel("visible", url)

    def touch_start(self, url: str) -> bool:
        """Touch is a strong intent signal: queue at hover priority, no delay."""
        return self._enqueue(self.normalize(url), PrefetchPriority.HOVER)

    def prefetch(self, url: str) -> bool:
        """Manually request a prefetch. Returns whether the URL was queued."""
        return self._enqueue(self.normalize(url), PrefetchPriority.MANUAL)

    def _enqueue(self, path: Optional[str], priority: PrefetchPriority) -> bool:
        if not self._eligible_path(path):
            return False

        entry = PrefetchQueueEntry(url=path, priority=priority, sequence=next(self._sequence))
        heapq.heappush(self._queue, entry)
        self._queued.add(path)
        self._stats["queued"] += 1
        self._wakeup.set()
        logger.debug(f"Queued prefetch {path} ({priority.name.lower()})")
        return True

    async def _worker(self, worker_id: int) -> None:
        """Background worker draining the prefetch queue."""
        while True:
            try:
                while not self._queue:
                    self._wakeup.clear()
                    await self._wakeup.wait()

                entry = heapq.heappop(self._queue)
                self._queued.discard(entry.url)

                if not self._eligible_path(entry.url):
                    self._stats["skipped"] += 1
                    continue

                await self._dispatch(entry.url)
                # Yield between items so page work is never starved
                await asyncio.sleep(0)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Prefetch worker {worker_id} error: {e}")

    def _absolute(self, path: str) -> str:
        return f"{self._origin.scheme}://{self._origin.netloc}{path}"

    async def _dispatch(self, path: str) -> None:
        self._in_flight.add(path)
        try:
            body = await self._fetch(path)
            if body is not None and self.on_page_fetched is not None:
                try:
                    await self.on_page_fetched(path, body)
                except Exception as e:
                    logger.warning(f"Background cache of {path} failed: {e}")
        finally:
            self._in_flight.discard(path)

    async def _fetch(self, path: str) -> Optional[str]:
        """Insert the hint and fetch the page; failures are logged and dropped."""
        self.hints.append(PrefetchHint(url=path, fetch_priority=self.config.fetch_priority))
        self._stats["dispatched"] += 1
        try:
            async with self._throttler:
                response = await self._get_client().get(
                    self._absolute(path),
                    headers={"Purpose": "prefetch", "Sec-Purpose": "prefetch"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            error = PrefetchDispatchError(path, f"Prefetch failed for {path}: {e}", cause=e)
            self._stats["failed"] += 1
            logger.debug(error.message, extra={"error_data": error.to_dict()})
            return None

        self._prefetched.add(path)
        self._stats["succeeded"] += 1
        logger.debug(f"Prefetched {path}")
        return response.text

    async def wait_idle(self) -> None:
        """Wait until pending timers, the queue and in-flight fetches are done."""
        while self._timers or self._queue or self._in_flight:
            timers = [t for t in self._timers.values() if not t.done()]
            if timers:
                await asyncio.gather(*timers, return_exceptions=True)
            await asyncio.sleep(0.01)

    @property
    def prefetched(self) -> Set[str]:
        return set(self._prefetched)

    @property
    def queued(self) -> List[str]:
        """Queued URLs in dispatch order."""
        return [entry.url for entry in sorted(self._queue)]

    @property
    def stats(self) -> Dict[str, int]:
        return {
            **self._stats,
            "pending": len(self._queue),
            "in_flight": len(self._in_flight),
            "prefetched": len(self._prefetched),
            "timers": len(self._timers),
        }
