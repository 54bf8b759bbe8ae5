"""
Admission caching package.

Read-through cache for hot marketplace aggregates. Every entity kind has
a fixed key template and one TTL class; write paths must invalidate the
affected group explicitly.
"""

from .keys import CacheKind, KeyScheme, TTLClass
from .cache_store import CacheStore
from .cache_manager import CacheManager

__all__ = ["CacheKind", "KeyScheme", "TTLClass", "CacheStore", "CacheManager"]
