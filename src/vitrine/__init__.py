"""Client-side catalog search, adaptive TTL cache and navigation prefetch for a storefront."""

from .cache import AdaptiveCacheManager
from .catalog import CatalogClient
from .config import ApplicationConfig, get_config
from .container import StorefrontServices
from .prefetch import PrefetchManager
from .search import QueryExecutor, SearchIndex
from .telemetry import MetricsBeacon

__version__ = "0.1.0"

__all__ = [
    "AdaptiveCacheManager",
    "ApplicationConfig",
    "CatalogClient",
    "MetricsBeacon",
    "PrefetchManager",
    "QueryExecutor",
    "SearchIndex",
    "StorefrontServices",
    "get_config",
]
