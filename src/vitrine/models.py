"""Data models for the storefront search, cache and prefetch layer."""

import time
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ProductSummary(BaseModel):
    """A product record as returned by the bulk summary endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    name: str
    description: str = ""
    price: float = 0.0
    compare_at_price: Optional[float] = Field(default=None, alias="compareAtPrice")
    image: str = ""
    vendor_name: str = Field(default="", alias="vendorName")
    categories: List[str] = Field(default_factory=list)
    slug: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_fields(cls, data: Any) -> Any:
        # Older index payloads carry a single "category" and snake_case vendor fields
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("categories") and data.get("category"):
                data["categories"] = [data["category"]]
            if "vendorName" not in data and "vendor_name" not in data and data.get("vendor"):
                data["vendorName"] = data["vendor"]
            for key in ("description", "image", "vendorName", "vendor_name"):
                if key in data and data[key] is None:
                    data[key] = ""
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValueError("product id is required")
        return str(value)

    @property
    def primary_category(self) -> str:
        return self.categories[0] if self.categories else ""

    @property
    def url(self) -> str:
        return f"/produto/{self.slug or self.id}"

    @property
    def discount_percent(self) -> Optional[int]:
        """Percentage off the compare-at price, or None when there is no discount."""
        if not self.compare_at_price or self.compare_at_price <= self.price:
            return None
        return round((self.compare_at_price - self.price) / self.compare_at_price * 100)


class IndexedDocument(BaseModel):
    """One catalog product as held by the search index."""

    model_config = ConfigDict(frozen=True)

    position: int
    product_id: str
    name: str
    description: str = ""
    price: float = 0.0
    compare_at_price: Optional[float] = None
    vendor_name: str = ""
    category: str = ""
    image: str = ""

    @classmethod
    def from_product(cls, position: int, product: ProductSummary) -> "IndexedDocument":
        return cls(
            position=position,
            product_id=product.id,
            name=product.name,
            description=product.description,
            price=product.price,
            compare_at_price=product.compare_at_price,
            vendor_name=product.vendor_name,
            category=product.primary_category,
            image=product.image,
        )

    @property
    def searchable_text(self) -> str:
        """Concatenated name, description, vendor and category."""
        return " ".join(
            part for part in (self.name, self.description, self.vendor_name, self.category) if part
        )


class HighlightSpan(BaseModel):
    """Matched character range inside one field of the original product text."""

    field: str
    start: int
    end: int


class QueryResultEntry(BaseModel):
    """A ranked search hit mapped back to its product."""

    product_id: str
    position: int
    score: float
    product: ProductSummary
    highlights: List[HighlightSpan] = Field(default_factory=list)


class CategoryFacet(BaseModel):
    name: str
    count: int


class SearchResponse(BaseModel):
    """Result of one query against the index."""

    term: str
    results: List[QueryResultEntry] = Field(default_factory=list)
    categories: List[CategoryFacet] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    did_you_mean: Optional[str] = None
    total: int = 0

    @classmethod
    def empty(cls, term: str = "") -> "SearchResponse":
        return cls(term=term)


class Pagination(BaseModel):
    total: int = 0
    page: int = 1
    per_page: int = 24
    total_pages: int = 0
    has_next_page: bool = False
    has_prev_page: bool = False


class SearchSort(str, Enum):
    """Orderings offered on the full results listing."""

    RELEVANCE = "relevance"
    PRICE_ASC = "price_asc"
    PRICE_DESC = "price_desc"
    NAME_ASC = "name_asc"
    NAME_DESC = "name_desc"


class PriceRange(BaseModel):
    min: float
    max: float


class SearchFilters(BaseModel):
    """Filter values available for the current result set."""

    categories: List[str] = Field(default_factory=list)
    price_range: Optional[PriceRange] = None
    vendors: List[str] = Field(default_factory=list)


class SearchPage(BaseModel):
    """A page of the full search results listing."""

    term: str
    products: List[ProductSummary] = Field(default_factory=list)
    pagination: Pagination = Field(default_factory=Pagination)
    filters: SearchFilters = Field(default_factory=SearchFilters)


class CacheStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"


class CacheSource(str, Enum):
    MEMORY = "memory"
    DURABLE = "durable"


class CacheEntry(BaseModel):
    """A stored cache payload with its expiry."""

    key: str
    value: str  # serialized JSON payload
    created_at: float
    expires_at: float
    resource_type: str = "generic"
    version: str = "latest"

    def freshness_at(self, now: float, stale_grace: float) -> Optional[Freshness]:
        """Fresh before expiry, stale inside the grace window, None once past it."""
        if now < self.expires_at:
            return Freshness.FRESH
        if now < self.expires_at + stale_grace:
            return Freshness.STALE
        return None


class CacheLookup(BaseModel):
    """Outcome of a cache read."""

    key: str
    status: CacheStatus
    freshness: Optional[Freshness] = None
    value: Any = None
    expires_at: Optional[float] = None
    source: Optional[CacheSource] = None

    @property
    def is_hit(self) -> bool:
        return self.status == CacheStatus.HIT

    @property
    def is_stale(self) -> bool:
        return self.freshness == Freshness.STALE


class AccessMetrics(BaseModel):
    """Per-key hit/miss counters driving TTL recommendations."""

    key: str
    hits: int = 0
    misses: int = 0
    first_access: Optional[float] = None
    last_access: Optional[float] = None
    recommended_ttl: Optional[int] = None
    resource_type: str = "generic"
    last_updated: Optional[float] = None

    @property
    def total_accesses(self) -> int:
        return self.hits + self.misses

    @property
    def hit_ratio(self) -> float:
        """Hit ratio as a percentage."""
        total = self.total_accesses
        return (self.hits / total) * 100 if total else 0.0

    def record(self, hit: bool, now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        if self.first_access is None:
            self.first_access = now
        if hit:
            self.hits += 1
        else:
            self.misses += 1
        self.last_access = now


class ConnectionInfo(BaseModel):
    """Network quality hints reported by the client."""

    effective_type: str = "unknown"  # slow-2g | 2g | 3g | 4g | unknown
    save_data: bool = False

    @property
    def is_slow(self) -> bool:
        return self.effective_type in ("slow-2g", "2g")


class PrefetchPriority(IntEnum):
    MANUAL = 0
    VISIBLE = 1
    HOVER = 2


@dataclass(order=True)
class PrefetchQueueEntry:
    """Queued prefetch; orders by highest priority first, then FIFO."""

    sort_index: tuple = field(init=False, repr=False)
    url: str = field(compare=False)
    priority: PrefetchPriority = field(compare=False)
    sequence: int = field(compare=False)
    enqueued_at: float = field(default_factory=time.time, compare=False)

    def __post_init__(self):
        self.sort_index = (-int(self.priority), self.sequence)


class PrefetchHint(BaseModel):
    """Equivalent of a <link rel="prefetch"> inserted for a URL."""

    url: str
    as_: str = Field(default="document", alias="as")
    fetch_priority: str = "low"

    model_config = ConfigDict(populate_by_name=True)
