"""Tests for the prefetch manager."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from vitrine.config import PrefetchConfig
from vitrine.models import ConnectionInfo, PrefetchPriority
from vitrine.prefetch import PrefetchManager

ORIGIN = "http://localhost:4321"


def make_config(**overrides) -> PrefetchConfig:
    values = dict(origin=ORIGIN, hover_delay_ms=10, visible_dwell_ms=20, dispatch_rate_limit=1000)
    values.update(overrides)
    return PrefetchConfig(**values)


class RecordingServer:
    """MockTransport handler that records requests and tracks concurrency."""

    def __init__(self, delay: float = 0.0, failing=()):
        self.delay = delay
        self.failing = set(failing)
        self.paths = []
        self.headers = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            self.paths.append(request.url.path)
            self.headers.append(request.headers)
            if request.url.path in self.failing:
                return httpx.Response(500)
            return httpx.Response(200, text=f"<html>{request.url.path}</html>")
        finally:
            self.active -= 1


@pytest.fixture
def server():
    return RecordingServer()


@pytest_asyncio.fixture
async def client(server):
    async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
        yield client


@pytest_asyncio.fixture
async def manager(client):
    """Create an initialized prefetch manager."""
    manager = PrefetchManager(make_config(), client=client)
    await manager.initialize()

    yield manager

    await manager.cleanup()


class TestEligibility:
    """Test which links may be prefetched."""

    @pytest.mark.parametrize(
        "url,expected",
        [
            ("/produto/berco-azul", True),
            ("/produtos/moveis", True),
            ("/categoria/bercos?page=2", True),
            (f"{ORIGIN}/produto/berco-azul", True),
            ("/produto/", False),
            ("/carrinho", False),
            ("https://outra-loja.com/produto/x", False),
            ("//outra-loja.com/produto/x", False),
            ("#avaliacoes", False),
            ("mailto:contato@loja.com", False),
            ("produto/relativo", False),
            ("", False),
        ],
    )
    def test_is_eligible(self, url, expected):
        """Test same-origin and pattern checks."""
        assert PrefetchManager(make_config()).is_eligible(url) is expected

    def test_disabled(self):
        """Test that a disabled manager queues nothing."""
        assert PrefetchManager(make_config(enabled=False)).prefetch("/produto/a") is False

    @pytest.mark.parametrize(
        "connection",
        [ConnectionInfo(save_data=True), ConnectionInfo(effective_type="2g")],
    )
    def test_suppressed_by_connection(self, connection):
        """Test data-saver and slow connections turn prefetching off."""
        manager = PrefetchManager(make_config())
        manager.update_connection(connection)

        assert manager.prefetch("/produto/a") is False
        assert manager.hover_start("/produto/a") is False

    def test_connection_checks_can_be_ignored(self):
        """Test opting out of connection-based suppression."""
        manager = PrefetchManager(make_config(respect_data_saver=False, respect_connection_type=False))
        manager.update_connection(ConnectionInfo(effective_type="slow-2g", save_data=True))

        assert manager.prefetch("/produto/a") is True


class TestQueue:
    """Test queue ordering and de-duplication without workers running."""

    @pytest.mark.asyncio
    async def test_priority_order(self):
        """Test hover before visible before manual."""
        manager = PrefetchManager(make_config())

        manager.prefetch("/produto/manual")
        manager.touch_start("/produto/touch")
        manager.link_visible("/produto/visible")
        await asyncio.sleep(0.05)

        assert manager.queued == ["/produto/touch", "/produto/visible", "/produto/manual"]

    @pytest.mark.asyncio
    async def test_no_duplicates(self):
        """Test that a URL is never queued twice."""
        manager = PrefetchManager(make_config())

        assert manager.prefetch("/produto/a") is True
        assert manager.prefetch("/produto/a") is False
        assert manager.prefetch(f"{ORIGIN}/produto/a") is False
        assert manager.queued == ["/produto/a"]

    @pytest.mark.asyncio
    async def test_hidden_link_cancels_dwell(self):
        """Test that leaving the viewport before the dwell cancels the prefetch."""
        manager = PrefetchManager(make_config())

        assert manager.link_visible("/produto/a") is True
        assert manager.link_hidden("/produto/a") is True
        await asyncio.sleep(0.05)

        assert manager.queued == []
        assert manager.stats["cancelled"] == 1


class TestDispatch:
    """Test worker dispatch."""

    @pytest.mark.asyncio
    async def test_hover_prefetches_after_delay(self, manager, server):
        """Test the hover path end to end."""
        assert manager.hover_start("/produto/berco-azul") is True
        await manager.wait_idle()

        assert server.paths == ["/produto/berco-azul"]
        assert server.headers[0]["Sec-Purpose"] == "prefetch"
        assert manager.prefetched == {"/produto/berco-azul"}
        assert manager.hints[0].url == "/produto/berco-azul"
        assert manager.hints[0].fetch_priority == "low"

    @pytest.mark.asyncio
    async def test_hover_end_cancels(self, manager, server):
        """Test that leaving the link before the hover delay fetches nothing."""
        manager.hover_start("/produto/berco-azul")
        assert manager.hover_end("/produto/berco-azul") is True
        await asyncio.sleep(0.05)

        assert server.paths == []
        assert manager.hover_end("/produto/berco-azul") is False

    @pytest.mark.asyncio
    async def test_prefetched_url_not_fetched_again(self, manager, server):
        """Test that a URL is fetched at most once."""
        manager.prefetch("/produto/a")
        await manager.wait_idle()

        assert manager.prefetch("/produto/a") is False
        assert manager.hover_start("/produto/a") is False
        assert server.paths == ["/produto/a"]

    @pytest.mark.asyncio
    async def test_concurrency_limit(self):
        """Test that at most two prefetches are in flight."""
        server = RecordingServer(delay=0.02)
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            manager = PrefetchManager(make_config(), client=client)
            await manager.initialize()
            try:
                for i in range(5):
                    manager.prefetch(f"/produto/{i}")
                await manager.wait_idle()
            finally:
                await manager.cleanup()

        assert sorted(server.paths) == [f"/produto/{i}" for i in range(5)]
        assert server.max_active == 2

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self):
        """Test that a failing prefetch releases its slot and others proceed."""
        server = RecordingServer(failing={"/produto/quebrado"})
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            manager = PrefetchManager(make_config(), client=client)
            await manager.initialize()
            try:
                manager.prefetch("/produto/quebrado")
                manager.prefetch("/produto/ok")
                await manager.wait_idle()

                stats = manager.stats
                assert stats["failed"] == 1
                assert stats["succeeded"] == 1
                assert stats["in_flight"] == 0
                assert manager.prefetched == {"/produto/ok"}
            finally:
                await manager.cleanup()

    @pytest.mark.asyncio
    async def test_eligibility_rechecked_on_dequeue(self, client, server):
        """Test that entries queued before data-saver turned on are skipped."""
        manager = PrefetchManager(make_config(), client=client)
        manager.prefetch("/produto/a")
        manager.update_connection(ConnectionInfo(save_data=True))

        await manager.initialize()
        try:
            await manager.wait_idle()
        finally:
            await manager.cleanup()

        assert server.paths == []
        assert manager.stats["skipped"] == 1

    @pytest.mark.asyncio
    async def test_background_cache_callback(self, client):
        """Test that fetched pages are handed to the cache callback."""
        on_page_fetched = AsyncMock()
        manager = PrefetchManager(make_config(), client=client, on_page_fetched=on_page_fetched)
        await manager.initialize()
        try:
            manager.touch_start("/categoria/bercos")
            await manager.wait_idle()
        finally:
            await manager.cleanup()

        on_page_fetched.assert_awaited_once_with("/categoria/bercos", "<html>/categoria/bercos</html>")

    @pytest.mark.asyncio
    async def test_failing_callback_is_swallowed(self, client):
        """Test that a cache callback error does not stop the worker."""
        on_page_fetched = AsyncMock(side_effect=RuntimeError("cache down"))
        manager = PrefetchManager(make_config(), client=client, on_page_fetched=on_page_fetched)
        await manager.initialize()
        try:
            manager.prefetch("/produto/a")
            manager.prefetch("/produto/b")
            await manager.wait_idle()
        finally:
            await manager.cleanup()

        assert manager.prefetched == {"/produto/a", "/produto/b"}


class TestPriorityEnum:
    """Test priority tiers."""

    def test_tiers(self):
        assert PrefetchPriority.HOVER > PrefetchPriority.VISIBLE > PrefetchPriority.MANUAL
