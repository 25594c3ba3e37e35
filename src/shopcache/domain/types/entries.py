"""Cache entry types."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class CacheEntry:
    """A cached value with its expiry.

    Attributes:
        key: Key produced by the key builder
        value: Cached payload (JSON-serializable)
        stored_at: Unix timestamp of insertion
        expires_at: ``stored_at + ttl``
    """

    key: str
    value: Any
    stored_at: float
    expires_at: float

    def is_readable(self, now: float) -> bool:
        """An entry is readable strictly before its expiry."""
        return now < self.expires_at

    def to_record(self) -> dict[str, Any]:
        """Serialize for the durable tier."""
        return {"value": self.value, "stored_at": self.stored_at, "expires_at": self.expires_at}

    @classmethod
    def from_record(cls, key: str, record: dict[str, Any]) -> "CacheEntry":
        """Rebuild an entry from a durable record.

        Raises:
            KeyError: If ``value`` or ``expires_at`` is missing
            TypeError, ValueError: If ``expires_at`` is not a number
        """
        expires_at = float(record["expires_at"])
        return cls(
            key=key,
            value=record["value"],
            stored_at=float(record.get("stored_at", expires_at)),
            expires_at=expires_at,
        )


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of cache store counters."""

    volatile_size: int
    durable_size: int
    capacity: int
    hits: int
    misses: int
    evictions: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0
