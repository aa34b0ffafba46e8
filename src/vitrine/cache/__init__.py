"""
Adaptive TTL cache.

- adaptive: two-tier cache manager with popularity-driven TTLs
- policy: TTL computation from base lifetimes, popularity and connection
- stores: in-memory LRU tier and SQLite durable tier
"""

from .adaptive import AdaptiveCacheManager
from .policy import TTLPolicy, accesses_per_day
from .stores import MemoryStore, SQLiteStore

__all__ = [
    "AdaptiveCacheManager",
    "TTLPolicy",
    "accesses_per_day",
    "MemoryStore",
    "SQLiteStore",
]
