"""Tests for configuration management."""

import os
from unittest.mock import patch

import pytest

from vitrine.config import (
    DEFAULT_BASE_TTL,
    ApplicationConfig,
    CacheConfig,
    CatalogConfig,
    ConfigManager,
    MonitoringConfig,
    PrefetchConfig,
    SearchConfig,
    StorageConfig,
    TelemetryConfig,
    _parse_bool,
    get_config_manager,
    reset_config,
)
from vitrine.errors import ConfigurationError, ErrorSeverity


class TestConfigurationDataclasses:
    """Test configuration dataclasses."""

    def test_cache_config_defaults(self):
        """Test adaptive cache defaults."""
        config = CacheConfig()

        assert config.strategy == "adaptive"
        assert config.popularity_multiplier == 2.0
        assert config.unpopularity_multiplier == 0.5
        assert config.popularity_threshold == 10.0
        assert config.min_ttl == 60
        assert config.max_ttl == 7 * 86400
        assert config.stale_grace_seconds == 3600
        assert config.base_ttl["generic"] == 7200

    def test_base_ttl_is_copied_per_instance(self):
        """Test that mutating one config's TTL table leaves the defaults alone."""
        config = CacheConfig()
        config.base_ttl["product"] = 60

        assert DEFAULT_BASE_TTL["product"] != 60
        assert CacheConfig().base_ttl["product"] == DEFAULT_BASE_TTL["product"]

    def test_storage_config_defaults(self):
        """Test storage configuration defaults."""
        config = StorageConfig()

        assert config.connection_timeout == 30.0
        assert config.db_path is not None  # Should be set in __post_init__
        assert config.db_path.endswith("adaptive-cache.db")

    def test_search_and_prefetch_defaults(self):
        """Test search and prefetch timing defaults."""
        assert SearchConfig().debounce_ms == 250
        assert SearchConfig().inline_limit == 5
        assert PrefetchConfig().hover_delay_ms == 65
        assert PrefetchConfig().concurrent_prefetches == 2

    def test_application_config_composition(self):
        """Test application configuration composition."""
        config = ApplicationConfig()

        assert isinstance(config.catalog, CatalogConfig)
        assert isinstance(config.search, SearchConfig)
        assert isinstance(config.cache, CacheConfig)
        assert isinstance(config.storage, StorageConfig)
        assert isinstance(config.prefetch, PrefetchConfig)
        assert isinstance(config.telemetry, TelemetryConfig)
        assert isinstance(config.monitoring, MonitoringConfig)


class TestConfigurationValidation:
    """Test configuration validation."""

    def test_valid_configuration(self):
        """Test that default configuration is valid."""
        config = ApplicationConfig()
        config.validate()  # Should not raise

    @pytest.mark.parametrize(
        "field_path,invalid_value,expected_error",
        [
            ("catalog.request_timeout", 0, "request timeout must be positive"),
            ("search.inline_limit", 0, "Inline result limit must be positive"),
            ("cache.strategy", "random", "Cache strategy must be one of"),
            ("cache.min_ttl", 0, "minimum TTL must be positive"),
            ("cache.slow_connection_factor", 1.5, "Slow connection factor"),
            ("prefetch.concurrent_prefetches", 0, "Concurrent prefetches must be positive"),
            ("monitoring.log_level", "INVALID", "Log level must be one of"),
        ],
    )
    def test_invalid_configuration_values(self, field_path, invalid_value, expected_error):
        """Test validation of invalid configuration values."""
        config = ApplicationConfig()

        # Set the field using dot notation
        obj = config
        field_parts = field_path.split(".")
        for part in field_parts[:-1]:
            obj = getattr(obj, part)
        setattr(obj, field_parts[-1], invalid_value)

        with pytest.raises(ConfigurationError, match=expected_error):
            config.validate()

    def test_invalid_ttl_bounds(self):
        """Test validation of TTL bounds (special case with multiple fields)."""
        config = ApplicationConfig()
        config.cache.min_ttl = 600
        config.cache.max_ttl = 60

        with pytest.raises(ConfigurationError, match="minimum TTL cannot exceed maximum TTL"):
            config.validate()

    def test_all_problems_reported_together(self):
        """Test that validation collects every problem before raising."""
        config = ApplicationConfig()
        config.search.inline_limit = 0
        config.cache.base_ttl = {"product": 3600}

        with pytest.raises(ConfigurationError) as exc_info:
            config.validate()

        message = str(exc_info.value)
        assert "Inline result limit" in message
        assert "'generic'" in message
        assert exc_info.value.severity == ErrorSeverity.CRITICAL


class TestEnvironmentVariableLoading:
    """Test loading configuration from environment variables."""

    @patch.dict(
        os.environ,
        {
            "VITRINE_DB_PATH": "/custom/path/cache.db",
            "VITRINE_CATALOG_URL": "https://loja.example.com",
            "VITRINE_CACHE_STRATEGY": "fixed",
            "VITRINE_CACHE_MIN_TTL": "120",
            "VITRINE_PREFETCH_ENABLED": "false",
            "VITRINE_LOG_LEVEL": "debug",
        },
    )
    def test_environment_variable_loading(self):
        """Test loading configuration from environment variables."""
        config = ApplicationConfig.from_environment()

        assert config.storage.db_path == "/custom/path/cache.db"
        assert config.catalog.base_url == "https://loja.example.com"
        assert config.cache.strategy == "fixed"
        assert config.cache.min_ttl == 120
        assert config.prefetch.enabled is False
        assert config.monitoring.log_level == "DEBUG"

    @patch.dict(os.environ, {"VITRINE_CATALOG_TIMEOUT": "invalid_float"})
    def test_invalid_environment_variable(self):
        """Test handling of invalid environment variable values."""
        with pytest.raises(ValueError):
            ApplicationConfig.from_environment()

    @patch.dict(os.environ, {"VITRINE_CACHE_STRATEGY": "lru"})
    def test_environment_values_are_validated(self):
        """Test that environment-derived configuration is validated."""
        with pytest.raises(ConfigurationError):
            ApplicationConfig.from_environment()


class TestBooleanParsing:
    """Test boolean parsing functionality."""

    def test_parse_bool_true_values(self):
        """Test parsing of true boolean values."""
        for value in ["true", "True", "TRUE", "1", "yes", "on", "enabled"]:
            assert _parse_bool(value) is True

    def test_parse_bool_false_values(self):
        """Test parsing of false boolean values."""
        for value in ["false", "False", "0", "no", "off", "disabled", "random"]:
            assert _parse_bool(value) is False


class TestConfigurationSerialization:
    """Test configuration serialization."""

    def test_to_dict(self):
        """Test configuration serialization to dictionary."""
        config_dict = ApplicationConfig().to_dict()

        assert isinstance(config_dict["cache"], dict)
        assert config_dict["cache"]["base_ttl"]["generic"] == 7200
        assert config_dict["prefetch"]["url_patterns"][0] == r"^/produtos/.+$"

    def test_to_safe_dict_masks_sensitive_fields(self):
        """Test that sensitive fields are masked in safe dictionary."""
        safe_dict = ApplicationConfig().to_safe_dict()

        assert safe_dict["storage"]["db_path"] == "***MASKED***"
        assert safe_dict["telemetry"]["endpoint"] == "***MASKED***"
        assert safe_dict["catalog"]["index_path"] == "/api/searchindex"


class TestConfigManager:
    """Test configuration manager."""

    def setup_method(self):
        reset_config()

    def teardown_method(self):
        reset_config()

    def test_config_manager_singleton(self):
        """Test that the default config manager is shared."""
        assert get_config_manager() is get_config_manager()

    def test_reset_config_replaces_manager(self):
        """Test that reset_config drops the shared manager."""
        manager = get_config_manager()
        reset_config()

        assert get_config_manager() is not manager

    def test_config_caching_and_reload(self):
        """Test that configuration is cached until reloaded."""
        manager = ConfigManager()

        config1 = manager.get_config()
        assert manager.get_config() is config1
        assert manager.reload_config() is not config1

    def test_set_config_for_testing(self):
        """Test setting configuration for testing."""
        manager = ConfigManager()
        test_config = ApplicationConfig()
        test_config.search.inline_limit = 8

        manager.set_config(test_config)

        assert manager.get_search_config().inline_limit == 8
        assert manager.get_cache_config() is test_config.cache
        assert isinstance(manager.get_prefetch_config(), PrefetchConfig)

    def test_invalid_config_set(self):
        """Test setting invalid configuration raises error."""
        manager = ConfigManager()
        invalid_config = ApplicationConfig()
        invalid_config.storage.connection_timeout = -1

        with pytest.raises(ConfigurationError):
            manager.set_config(invalid_config)
