"""Cache protocol."""

from typing import Any, Optional, Protocol

__all__ = ["Cache"]


class Cache(Protocol):
    """Protocol for the TTL cache consumed by the mutation engine and facade.

    Implementations must treat an expired entry exactly like a missing one.
    """

    def get(self, key: str) -> Any | None:
        """Get a value, or None on miss or expiry."""
        ...

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Insert or overwrite a value with a TTL in seconds."""
        ...

    def has(self, key: str) -> bool:
        """Check for a readable entry without side effects."""
        ...

    def delete(self, key: str) -> None:
        """Remove a single key (idempotent)."""
        ...

    def clear(self) -> None:
        """Remove every entry."""
        ...

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key containing ``pattern`` and return how many were removed."""
        ...
