"""shopcache - client-side resource cache with optimistic mutations.

The package is organised in layers:

- ``shopcache.domain``: protocols, value types, errors and events
- ``shopcache.core``: pure building blocks (keys, TTL policy, cache store,
  collection effects, merge)
- ``shopcache.infrastructure``: durable storage backends and transports
- ``shopcache.application``: deduplicator, mutation engine, reconciler and
  the :class:`ResourceCache` facade
"""

from shopcache.application.client import ResourceCache
from shopcache.config import CacheConfig, CollectionPolicy, TtlRule

__all__ = [
    "ResourceCache",
    "CacheConfig",
    "CollectionPolicy",
    "TtlRule",
]

__version__ = "0.1.0"
