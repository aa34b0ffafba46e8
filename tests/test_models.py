"""Tests for data models."""

import heapq

import pytest
from pydantic import ValidationError as PydanticValidationError

from vitrine.models import (
    AccessMetrics,
    CacheEntry,
    ConnectionInfo,
    Freshness,
    IndexedDocument,
    PrefetchHint,
    PrefetchPriority,
    PrefetchQueueEntry,
    ProductSummary,
)


class TestProductSummary:
    """Test product summary parsing."""

    def test_camel_case_payload(self, catalog_records):
        """Test parsing the storefront's camelCase fields."""
        product = ProductSummary.model_validate(catalog_records[0])

        assert product.id == "1"
        assert product.vendor_name == "Casa do Bebê"
        assert product.compare_at_price == 999.9
        assert product.primary_category == "Berços"
        assert product.url == "/produto/berco-azul"
        assert product.discount_percent == 10

    def test_legacy_single_category_and_vendor(self):
        """Test older payloads with a single category and vendor field."""
        product = ProductSummary.model_validate(
            {"id": "p9", "name": "Mordedor", "category": "Brinquedos", "vendor": "Loja Sol", "description": None}
        )

        assert product.categories == ["Brinquedos"]
        assert product.vendor_name == "Loja Sol"
        assert product.description == ""
        assert product.url == "/produto/p9"
        assert product.discount_percent is None

    @pytest.mark.parametrize("bad_id", [None, "", "   "])
    def test_missing_id_rejected(self, bad_id):
        """Test that a product without an id is invalid."""
        with pytest.raises(PydanticValidationError):
            ProductSummary.model_validate({"id": bad_id, "name": "Sem id"})

    def test_indexed_document_from_product(self, catalog_records):
        """Test projection of a product into an index document."""
        product = ProductSummary.model_validate(catalog_records[1])
        document = IndexedDocument.from_product(4, product)

        assert document.position == 4
        assert document.product_id == "2"
        assert document.category == "Cadeiras"
        assert "Loja Sol" in document.searchable_text


class TestCacheModels:
    """Test cache entry and metrics models."""

    def test_freshness_boundaries(self):
        """Test fresh, stale and expired states around the expiry instant."""
        entry = CacheEntry(key="k", value="1", created_at=0.0, expires_at=100.0)

        assert entry.freshness_at(99.999, stale_grace=50) == Freshness.FRESH
        assert entry.freshness_at(100.0, stale_grace=50) == Freshness.STALE
        assert entry.freshness_at(149.999, stale_grace=50) == Freshness.STALE
        assert entry.freshness_at(150.0, stale_grace=50) is None

    def test_access_metrics_record(self):
        """Test hit/miss accounting."""
        metrics = AccessMetrics(key="product:42")
        metrics.record(hit=False, now=10.0)
        metrics.record(hit=True, now=20.0)
        metrics.record(hit=True, now=30.0)

        assert metrics.first_access == 10.0
        assert metrics.last_access == 30.0
        assert metrics.total_accesses == 3
        assert metrics.hit_ratio == pytest.approx(200 / 3)

    def test_connection_info(self):
        """Test slow connection detection."""
        assert ConnectionInfo(effective_type="2g").is_slow
        assert ConnectionInfo(effective_type="slow-2g").is_slow
        assert not ConnectionInfo(effective_type="4g").is_slow
        assert not ConnectionInfo().is_slow


class TestPrefetchModels:
    """Test prefetch queue ordering."""

    def test_queue_orders_by_priority_then_fifo(self):
        """Test hover before visible before manual, FIFO within a tier."""
        queue = []
        entries = [
            PrefetchQueueEntry(url="/produto/a", priority=PrefetchPriority.MANUAL, sequence=0),
            PrefetchQueueEntry(url="/produto/b", priority=PrefetchPriority.VISIBLE, sequence=1),
            PrefetchQueueEntry(url="/produto/c", priority=PrefetchPriority.HOVER, sequence=2),
            PrefetchQueueEntry(url="/produto/d", priority=PrefetchPriority.HOVER, sequence=3),
        ]
        for entry in entries:
            heapq.heappush(queue, entry)

        order = [heapq.heappop(queue).url for _ in range(len(entries))]
        assert order == ["/produto/c", "/produto/d", "/produto/b", "/produto/a"]

    def test_prefetch_hint_alias(self):
        """Test the hint serializes its 'as' attribute."""
        hint = PrefetchHint(url="/produto/a")

        assert hint.model_dump(by_alias=True) == {
            "url": "/produto/a",
            "as": "document",
            "fetch_priority": "low",
        }
