"""TTL policy: per-type base lifetimes adjusted by popularity and connection quality."""

import logging
from typing import Optional

from ..config import CacheConfig
from ..models import AccessMetrics, ConnectionInfo

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400
# Records younger than this many days are extrapolated instead of divided
MIN_METRICS_AGE_DAYS = 0.001


def accesses_per_day(metrics: AccessMetrics, now: float) -> Optional[float]:
    """Average accesses per day since the key was first seen.

    Returns None when the key has never been accessed.
    """
    if metrics.first_access is None or metrics.total_accesses == 0:
        return None
    age_days = max(now - metrics.first_access, 0.0) / SECONDS_PER_DAY
    if age_days < MIN_METRICS_AGE_DAYS:
        return float(metrics.total_accesses * 100)
    return metrics.total_accesses / age_days


class TTLPolicy:
    """Computes the lifetime of a cache entry.

    The adaptive strategy doubles the base TTL for keys at or above the
    popularity threshold and halves it for keys below; the fixed strategy
    always uses the base. Slow connections scale the result down, and the
    final value is clamped to the configured bounds.
    """

    def __init__(self, config: CacheConfig):
        self.config = config

    def base_ttl_for(self, resource_type: str) -> int:
        base_ttl = self.config.base_ttl
        return base_ttl.get(resource_type, base_ttl.get("generic", 7200))

    def clamp(self, ttl: float) -> int:
        return int(max(self.config.min_ttl, min(self.config.max_ttl, ttl)))

    def connection_factor(self, connection: Optional[ConnectionInfo]) -> float:
        if connection is None or not self.config.adapt_to_connection:
            return 1.0
        return self.config.slow_connection_factor if connection.is_slow else 1.0

    def popularity_factor(self, accesses: Optional[float]) -> float:
        if accesses is None or self.config.strategy != "adaptive":
            return 1.0
        if accesses >= self.config.popularity_threshold:
            return self.config.popularity_multiplier
        return self.config.unpopularity_multiplier

    def compute_ttl(
        self,
        resource_type: str,
        accesses: Optional[float] = None,
        connection: Optional[ConnectionInfo] = None,
    ) -> int:
        """TTL in seconds for a resource type given its access rate per day."""
        ttl = self.base_ttl_for(resource_type)
        ttl *= self.popularity_factor(accesses)
        ttl *= self.connection_factor(connection)
        return self.clamp(ttl)

    def recommend(self, metrics: AccessMetrics, now: float) -> int:
        """Connection-independent TTL recommendation for a tracked key."""
        return self.compute_ttl(metrics.resource_type, accesses_per_day(metrics, now))

    def ttl_for_write(
        self,
        resource_type: str,
        metrics: Optional[AccessMetrics] = None,
        connection: Optional[ConnectionInfo] = None,
    ) -> int:
        """TTL applied by a cache write.

        Uses the key's stored recommendation when it was made for the same
        resource type, otherwise the unadjusted base for the type.
        """
        if (
            metrics is not None
            and metrics.recommended_ttl is not None
            and metrics.resource_type == resource_type
        ):
            ttl = float(metrics.recommended_ttl)
        else:
            ttl = float(self.base_ttl_for(resource_type))
        return self.clamp(ttl * self.connection_factor(connection))
