"""
Service wiring for the storefront layer.

Every runtime component is constructed here and passed explicitly to the
components that depend on it; nothing is looked up from module globals.
"""

import logging
from typing import Optional

import httpx

from .cache.adaptive import AdaptiveCacheManager
from .catalog import CatalogClient
from .config import ApplicationConfig, get_config
from .lifecycle import Lifecycle
from .prefetch import PrefetchManager
from .search.index import SearchIndex
from .search.query import QueryExecutor
from .telemetry import MetricsBeacon

logger = logging.getLogger(__name__)


class StorefrontServices(Lifecycle):
    """Owns the catalog client, search, cache, prefetch and telemetry services."""

    def __init__(
        self,
        config: Optional[ApplicationConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        load_index: bool = True,
    ):
        self.config = config or get_config()
        self.load_index = load_index
        self._client = client
        self._owns_client = client is None
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.catalog.request_timeout)

        self.beacon = MetricsBeacon(self.config.telemetry, client=self._client)
        self.cache = AdaptiveCacheManager(
            config=self.config.cache,
            storage_config=self.config.storage,
            beacon=self.beacon,
        )
        self.catalog = CatalogClient(self.config.catalog, client=self._client)
        self.index = SearchIndex()
        self.executor = QueryExecutor(self.index, self.config.search)
        self.prefetch = PrefetchManager(
            self.config.prefetch,
            client=self._client,
            on_page_fetched=self._cache_page if self.config.prefetch.enable_background_cache else None,
        )
        self._initialized = False

    async def _cache_page(self, url: str, body: str) -> None:
        await self.cache.set(url, body, resource_type="page")

    async def initialize(self) -> None:
        if self._initialized:
            return

        logger.info("Initializing storefront services")
        await self.cache.initialize()
        await self.prefetch.initialize()
        if self.load_index:
            await self.index.load(self.catalog, cache=self.cache)
        self._initialized = True
        logger.info(f"Storefront services ready (index: {len(self.index)} products)")

    async def cleanup(self) -> None:
        if not self._initialized:
            return

        logger.info("Shutting down storefront services")
        self.executor.cancel_pending()
        await self.prefetch.cleanup()
        await self.cache.cleanup()
        await self.beacon.drain()
        if self._owns_client and self._client is not None:
            await self._client.aclose()
        self._initialized = False

    async def __aenter__(self) -> "StorefrontServices":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()
