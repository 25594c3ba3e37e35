"""Two-tier TTL cache store."""

from shopcache.core.cache.store import CacheStore

__all__ = ["CacheStore"]
