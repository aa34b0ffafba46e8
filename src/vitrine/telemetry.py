"""Fire-and-forget egress of aggregate cache metrics."""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

import httpx

from .config import TelemetryConfig, get_config_manager
from .errors import MetricsEgressError

logger = logging.getLogger(__name__)


class MetricsBeacon:
    """Posts JSON payloads to the metrics endpoint without awaiting them.

    Each send is a detached task; a failure is logged at debug level and
    dropped, never retried. ``drain`` awaits whatever is still in flight.
    """

    def __init__(
        self,
        config: Optional[TelemetryConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or get_config_manager().get_telemetry_config()
        self._client = client
        self._owns_client = client is None
        self._pending: Set[asyncio.Task] = set()
        self.sent = 0
        self.failed = 0

    @property
    def pending(self) -> Set[asyncio.Task]:
        return set(self._pending)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.request_timeout)
        return self._client

    def send(self, payload: Dict[str, Any]) -> Optional[asyncio.Task]:
        """Schedule a POST of the payload and return immediately."""
        if not self.config.enabled or not self.config.endpoint:
            return None

        task = asyncio.create_task(self._post(payload))
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _post(self, payload: Dict[str, Any]) -> None:
        url = self.config.endpoint
        try:
            response = await self._get_client().post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise MetricsEgressError(f"Metrics beacon failed: {e}", url=url, cause=e) from e

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.failed += 1
            logger.debug(f"Discarded metrics beacon: {error}")
        else:
            self.sent += 1

    async def drain(self) -> None:
        """Wait for every in-flight send to settle."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
