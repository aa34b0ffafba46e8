"""
Configuration management with validation, environment variable support
and documented defaults for the search, cache and prefetch layer.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import ConfigurationError, ErrorSeverity

logger = logging.getLogger(__name__)

# Base TTLs in seconds per resource type
DEFAULT_BASE_TTL: Dict[str, int] = {
    "product": 3600,
    "product-card": 3600,
    "category": 43200,
    "category-menu": 43200,
    "featured-products": 1800,
    "search": 900,
    "search-index": 3600,
    "page": 1800,
    "review": 86400,
    "header": 86400,
    "footer": 604800,
    "banner": 3600,
    "generic": 7200,
}


@dataclass
class CatalogConfig:
    """Bulk product summary endpoint settings."""

    base_url: str = "http://localhost:4321"
    index_path: str = "/api/searchindex"
    request_timeout: float = 10.0


@dataclass
class SearchConfig:
    """Search index and query settings."""

    min_query_length: int = 1
    inline_limit: int = 5
    debounce_ms: int = 250
    facet_limit: int = 3
    suggestion_limit: int = 3
    spelling_threshold: float = 0.7
    spelling_max_results: int = 3
    spelling_min_length: int = 3
    recent_search_limit: int = 5
    page_size: int = 24
    page_min_query_length: int = 2


@dataclass
class CacheConfig:
    """Adaptive cache settings."""

    strategy: str = "adaptive"  # adaptive | fixed
    base_ttl: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_BASE_TTL))
    popularity_multiplier: float = 2.0
    unpopularity_multiplier: float = 0.5
    popularity_threshold: float = 10.0  # accesses per day
    min_ttl: int = 60
    max_ttl: int = 86400 * 7
    stale_grace_seconds: int = 3600
    adapt_to_connection: bool = True
    slow_connection_factor: float = 0.5
    popularity_window_seconds: int = 86400
    metrics_interval_seconds: int = 3600
    persist_metrics: bool = True
    memory_max_entries: int = 500
    enable_warmup: bool = True
    warmup_patterns: List[str] = field(default_factory=lambda: ["/produtos", "/produto/"])
    max_warmup_urls: int = 20
    warmup_concurrency: int = 2


@dataclass
class StorageConfig:
    """Durable store settings."""

    db_path: Optional[str] = None
    connection_timeout: float = 30.0

    def __post_init__(self):
        if self.db_path is None:
            cache_dir = Path.home() / ".cache" / "vitrine"
            self.db_path = str(cache_dir / "adaptive-cache.db")


@dataclass
class PrefetchConfig:
    """Speculative navigation prefetch settings."""

    enabled: bool = True
    origin: str = "http://localhost:4321"
    hover_delay_ms: int = 65
    visible_dwell_ms: int = 150
    prefetch_on_visible: bool = True
    respect_data_saver: bool = True
    respect_connection_type: bool = True
    concurrent_prefetches: int = 2
    dispatch_rate_limit: int = 10  # dispatches per second
    request_timeout: float = 10.0
    fetch_priority: str = "low"
    url_patterns: List[str] = field(
        default_factory=lambda: [
            r"^/produtos/.+$",
            r"^/produto/.+$",
            r"^/categoria/.+$",
        ]
    )
    enable_background_cache: bool = True


@dataclass
class TelemetryConfig:
    """Aggregate metrics egress settings."""

    enabled: bool = True
    endpoint: str = "http://localhost:4321/api/metrics/cache-performance"
    request_timeout: float = 5.0


@dataclass
class MonitoringConfig:
    """Logging configuration."""

    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class ApplicationConfig:
    """Main application configuration."""

    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    prefetch: PrefetchConfig = field(default_factory=PrefetchConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)

    @classmethod
    def from_environment(cls) -> "ApplicationConfig":
        """Create configuration from environment variables."""
        config = cls()

        # Catalog configuration
        config.catalog.base_url = os.getenv("VITRINE_CATALOG_URL", config.catalog.base_url)
        config.catalog.index_path = os.getenv("VITRINE_CATALOG_INDEX_PATH", config.catalog.index_path)
        config.catalog.request_timeout = float(
            os.getenv("VITRINE_CATALOG_TIMEOUT", config.catalog.request_timeout)
        )

        # Search configuration
        config.search.min_query_length = int(
            os.getenv("VITRINE_SEARCH_MIN_LENGTH", config.search.min_query_length)
        )
        config.search.inline_limit = int(
            os.getenv("VITRINE_SEARCH_INLINE_LIMIT", config.search.inline_limit)
        )
        config.search.debounce_ms = int(
            os.getenv("VITRINE_SEARCH_DEBOUNCE_MS", config.search.debounce_ms)
        )
        config.search.page_size = int(os.getenv("VITRINE_SEARCH_PAGE_SIZE", config.search.page_size))

        # Cache configuration
        config.cache.strategy = os.getenv("VITRINE_CACHE_STRATEGY", config.cache.strategy)
        config.cache.min_ttl = int(os.getenv("VITRINE_CACHE_MIN_TTL", config.cache.min_ttl))
        config.cache.max_ttl = int(os.getenv("VITRINE_CACHE_MAX_TTL", config.cache.max_ttl))
        config.cache.stale_grace_seconds = int(
            os.getenv("VITRINE_CACHE_STALE_GRACE", config.cache.stale_grace_seconds)
        )
        config.cache.popularity_threshold = float(
            os.getenv("VITRINE_CACHE_POPULARITY_THRESHOLD", config.cache.popularity_threshold)
        )
        config.cache.metrics_interval_seconds = int(
            os.getenv("VITRINE_CACHE_METRICS_INTERVAL", config.cache.metrics_interval_seconds)
        )
        config.cache.adapt_to_connection = _parse_bool(
            os.getenv("VITRINE_CACHE_ADAPT_TO_CONNECTION", str(config.cache.adapt_to_connection))
        )
        config.cache.enable_warmup = _parse_bool(
            os.getenv("VITRINE_CACHE_WARMUP", str(config.cache.enable_warmup))
        )

        # Storage configuration
        config.storage.db_path = os.getenv("VITRINE_DB_PATH", config.storage.db_path)

        # Prefetch configuration
        config.prefetch.enabled = _parse_bool(
            os.getenv("VITRINE_PREFETCH_ENABLED", str(config.prefetch.enabled))
        )
        config.prefetch.origin = os.getenv("VITRINE_PREFETCH_ORIGIN", config.prefetch.origin)
        config.prefetch.hover_delay_ms = int(
            os.getenv("VITRINE_PREFETCH_HOVER_DELAY_MS", config.prefetch.hover_delay_ms)
        )
        config.prefetch.concurrent_prefetches = int(
            os.getenv("VITRINE_PREFETCH_CONCURRENCY", config.prefetch.concurrent_prefetches)
        )

        # Telemetry configuration
        config.telemetry.enabled = _parse_bool(
            os.getenv("VITRINE_TELEMETRY_ENABLED", str(config.telemetry.enabled))
        )
        config.telemetry.endpoint = os.getenv("VITRINE_TELEMETRY_ENDPOINT", config.telemetry.endpoint)

        # Monitoring configuration
        config.monitoring.log_level = os.getenv(
            "VITRINE_LOG_LEVEL", config.monitoring.log_level
        ).upper()

        # Validate configuration
        config.validate()

        return config

    def validate(self) -> None:
        """Validate configuration settings."""
        errors = []

        # Validate catalog configuration
        if self.catalog.request_timeout <= 0:
            errors.append("Catalog request timeout must be positive")

        if not self.catalog.index_path.startswith("/"):
            errors.append("Catalog index path must start with '/'")

        # Validate search configuration
        if self.search.min_query_length < 1:
            errors.append("Minimum query length must be at least 1")

        if self.search.inline_limit <= 0:
            errors.append("Inline result limit must be positive")

        if self.search.debounce_ms < 0:
            errors.append("Debounce delay cannot be negative")

        if not (0.0 <= self.search.spelling_threshold <= 1.0):
            errors.append("Spelling threshold must be between 0.0 and 1.0")

        if self.search.page_size <= 0:
            errors.append("Search page size must be positive")

        # Validate cache configuration
        if self.cache.strategy not in ("adaptive", "fixed"):
            errors.append("Cache strategy must be one of: adaptive, fixed")

        if self.cache.min_ttl <= 0:
            errors.append("Cache minimum TTL must be positive")

        if self.cache.min_ttl > self.cache.max_ttl:
            errors.append("Cache minimum TTL cannot exceed maximum TTL")

        if self.cache.stale_grace_seconds < 0:
            errors.append("Stale grace window cannot be negative")

        if self.cache.popularity_multiplier < 1.0:
            errors.append("Popularity multiplier must be at least 1.0")

        if not (0.0 < self.cache.unpopularity_multiplier <= 1.0):
            errors.append("Unpopularity multiplier must be between 0.0 and 1.0")

        if not (0.0 < self.cache.slow_connection_factor <= 1.0):
            errors.append("Slow connection factor must be between 0.0 and 1.0")

        if any(ttl <= 0 for ttl in self.cache.base_ttl.values()):
            errors.append("Base TTLs must be positive")

        if "generic" not in self.cache.base_ttl:
            errors.append("Base TTLs must define a 'generic' resource type")

        if self.cache.memory_max_entries <= 0:
            errors.append("Memory store max entries must be positive")

        # Validate storage configuration
        if self.storage.connection_timeout <= 0:
            errors.append("Storage connection timeout must be positive")

        # Validate prefetch configuration
        if self.prefetch.concurrent_prefetches <= 0:
            errors.append("Concurrent prefetches must be positive")

        if self.prefetch.hover_delay_ms < 0 or self.prefetch.visible_dwell_ms < 0:
            errors.append("Prefetch delays cannot be negative")

        if self.prefetch.dispatch_rate_limit <= 0:
            errors.append("Prefetch dispatch rate limit must be positive")

        # Validate monitoring configuration
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.monitoring.log_level not in valid_log_levels:
            errors.append(f"Log level must be one of: {', '.join(valid_log_levels)}")

        if errors:
            error_message = "Configuration validation failed:\n" + "\n".join(
                f"- {error}" for error in errors
            )
            raise ConfigurationError(error_message, severity=ErrorSeverity.CRITICAL)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""

        def _dataclass_to_dict(obj):
            if hasattr(obj, "__dataclass_fields__"):
                return {k: _dataclass_to_dict(v) for k, v in obj.__dict__.items()}
            elif isinstance(obj, list):
                return [_dataclass_to_dict(item) for item in obj]
            elif isinstance(obj, dict):
                return dict(obj)
            else:
                return obj

        return _dataclass_to_dict(self)

    def get_sensitive_fields(self) -> set:
        """Get set of field names that contain sensitive information."""
        return {
            "storage.db_path",
            "telemetry.endpoint",
        }

    def to_safe_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary with sensitive fields masked."""
        config_dict = self.to_dict()
        sensitive_fields = self.get_sensitive_fields()

        def _mask_sensitive(obj, path=""):
            if path in sensitive_fields:
                return "***MASKED***"
            elif isinstance(obj, dict):
                return {k: _mask_sensitive(v, f"{path}.{k}" if path else k) for k, v in obj.items()}
            else:
                return obj

        return _mask_sensitive(config_dict)


def _parse_bool(value: str) -> bool:
    """Parse boolean value from string."""
    return value.lower() in ("true", "1", "yes", "on", "enabled")


class ConfigManager:
    """Configuration manager with caching and validation."""

    def __init__(self):
        self._config: Optional[ApplicationConfig] = None

    def get_config(self) -> ApplicationConfig:
        """Get the current configuration."""
        if self._config is None:
            self._config = ApplicationConfig.from_environment()
            logger.info("Configuration loaded from environment variables")

        return self._config

    def reload_config(self) -> ApplicationConfig:
        """Reload configuration from environment."""
        self._config = None
        return self.get_config()

    def set_config(self, config: ApplicationConfig) -> None:
        """Set configuration (for testing)."""
        config.validate()
        self._config = config

    def get_catalog_config(self) -> CatalogConfig:
        return self.get_config().catalog

    def get_search_config(self) -> SearchConfig:
        return self.get_config().search

    def get_cache_config(self) -> CacheConfig:
        return self.get_config().cache

    def get_storage_config(self) -> StorageConfig:
        return self.get_config().storage

    def get_prefetch_config(self) -> PrefetchConfig:
        return self.get_config().prefetch

    def get_telemetry_config(self) -> TelemetryConfig:
        return self.get_config().telemetry

    def get_monitoring_config(self) -> MonitoringConfig:
        return self.get_config().monitoring


# Process-wide default; services accept an explicit config instead where wired
_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Get the global configuration manager."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def get_config() -> ApplicationConfig:
    """Get the current application configuration."""
    return get_config_manager().get_config()


def reset_config() -> None:
    """Reset configuration (for testing)."""
    global _config_manager
    _config_manager = None
