"""Durable storage backends for the persistent cache tier.

This package provides concrete implementations of the DurableStorage
protocol.
"""

from shopcache.infrastructure.storage.file import FileStorage
from shopcache.infrastructure.storage.memory import InMemoryStorage

__all__ = [
    "InMemoryStorage",
    "FileStorage",
]
