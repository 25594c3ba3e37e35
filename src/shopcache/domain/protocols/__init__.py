"""Domain protocols - interfaces the cache layer depends on.

Using protocols keeps the storage backends and the transport swappable and
lets tests substitute simple fakes.
"""

from shopcache.domain.protocols.cache import Cache
from shopcache.domain.protocols.storage import DurableStorage
from shopcache.domain.protocols.transport import Transport

__all__ = [
    "Cache",
    "DurableStorage",
    "Transport",
]
