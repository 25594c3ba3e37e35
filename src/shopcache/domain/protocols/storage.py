"""Durable storage protocol for the persistent cache tier.

The durable tier only improves cold-start latency. Its operations are
synchronous because every cache operation completes within a single
scheduling turn.
"""

from typing import Any, Protocol

__all__ = ["DurableStorage"]


class DurableStorage(Protocol):
    """Protocol for key/record storage backends (in-memory, file system, ...).

    Records are JSON-serializable dictionaries. Any method may raise
    ``OSError``, ``TypeError`` or ``ValueError``; the cache store catches
    these and continues with its volatile tier only.

    Example:
        >>> storage = FileStorage("~/.shopcache")
        >>> storage.write("cache:/products", {"value": [...], "expires_at": 1700000000.0})
        >>> storage.read("cache:/products")["expires_at"]
        1700000000.0
    """

    def read(self, key: str) -> dict[str, Any] | None:
        """Load a record, or None if the key doesn't exist."""
        ...

    def write(self, key: str, record: dict[str, Any]) -> None:
        """Save a record under a key, replacing any existing one."""
        ...

    def delete(self, key: str) -> None:
        """Delete a record. Silently succeeds if the key doesn't exist."""
        ...

    def keys(self, prefix: str | None = None) -> list[str]:
        """List stored keys, optionally filtered by prefix."""
        ...
