"""Two-tier TTL cache store.

The volatile tier is an insertion-ordered dictionary bounded by ``capacity``.
The durable tier mirrors every entry into a :class:`DurableStorage` backend
on a best-effort basis so that a fresh process can start warm.

Expiry is evaluated lazily on access; no background timers are involved.
"""

from collections import OrderedDict
from typing import Any, Awaitable, Callable, Optional

from shopcache.domain.errors import CacheMiss, PersistenceSoftFailure
from shopcache.domain.protocols import DurableStorage
from shopcache.domain.types import CacheEntry, CacheStats
from shopcache.core.ttl_policy import TtlPolicy
from shopcache.logger import get_logger
from shopcache.utils import Clock, system_clock

logger = get_logger(__name__)

# Errors a durable backend may raise: I/O, quota, unserializable values,
# corrupted records.
_SOFT_ERRORS = (OSError, TypeError, ValueError, KeyError)


class CacheStore:
    """Key/value store with per-entry TTL and volatile + durable tiers.

    Invariants:
        - an entry is readable iff ``now < expires_at``; reading an expired
          entry evicts it from both tiers and reports a miss
        - a durable record is re-validated against its expiry before it is
          promoted back into the volatile tier
        - when the volatile tier is full, the oldest-inserted entry is evicted
        - durable-tier failures are logged and never surfaced

    Example:
        >>> store = CacheStore(capacity=2, default_ttl=60)
        >>> store.set("/products?page=1", [{"id": 1}])
        >>> store.get("/products?page=1")
        [{'id': 1}]
        >>> store.invalidate_pattern("/products")
        1
    """

    def __init__(
        self,
        capacity: int = 100,
        default_ttl: float = 300.0,
        storage: Optional[DurableStorage] = None,
        namespace: str = "cache:",
        ttl_policy: Optional[TtlPolicy] = None,
        clock: Clock = system_clock,
    ) -> None:
        """Initialize the cache store.

        Args:
            capacity: Maximum number of entries in the volatile tier
            default_ttl: TTL in seconds when neither the caller nor the policy provides one
            storage: Durable tier backend; None disables persistence
            namespace: Prefix separating cache records from other durable data
            ttl_policy: Resolves a TTL from the key when ``set`` gets none
            clock: Source of the current Unix time in seconds
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be > 0")
        self.capacity = capacity
        self.default_ttl = default_ttl
        self.namespace = namespace
        self._storage = storage
        self._ttl_policy = ttl_policy
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Insert or overwrite an entry.

        Overwriting counts as a fresh insertion: the entry moves to the young
        end of the eviction order.

        Args:
            key: Cache key
            value: JSON-serializable payload
            ttl: TTL in seconds; resolved from the policy or default when None

        Raises:
            ValueError: If ``ttl`` is not positive
        """
        ttl = self._resolve_ttl(key, ttl)
        now = self._clock()
        entry = CacheEntry(key=key, value=value, stored_at=now, expires_at=now + ttl)
        self._insert(entry)
        self._persist(entry)
        logger.debug(f"Cached '{key}' for {ttl}s")

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None on miss or expiry.

        Expired entries are evicted as a side effect. A key found only in the
        durable tier is promoted back into the volatile tier if still readable.
        """
        try:
            entry = self._lookup(key)
        except CacheMiss:
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def has(self, key: str) -> bool:
        """Check for a readable entry. Neither tier is ever modified."""
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None:
            entry = self._read_durable(key, drop_unreadable=False)
        return entry is not None and entry.is_readable(now)

    def delete(self, key: str) -> None:
        """Remove a key from both tiers. Silently succeeds if absent."""
        self._entries.pop(key, None)
        self._delete_durable(key)

    def clear(self) -> None:
        """Remove every entry from both tiers."""
        count = len(self._entries)
        self._entries.clear()
        for key in self._durable_keys():
            self._delete_durable(key)
        logger.debug(f"Cache cleared: {count} volatile entries removed")

    def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key containing ``pattern`` from both tiers.

        Returns:
            Number of distinct keys removed
        """
        matched = {key for key in self._entries if pattern in key}
        matched.update(key for key in self._durable_keys() if pattern in key)
        for key in matched:
            self.delete(key)
        if matched:
            logger.debug(f"Invalidated {len(matched)} entries matching '{pattern}'")
        return len(matched)

    def purge_expired(self) -> int:
        """Sweep expired entries from both tiers.

        Returns:
            Number of keys removed
        """
        now = self._clock()
        expired = {key for key, entry in self._entries.items() if not entry.is_readable(now)}
        for key in self._durable_keys():
            if key in self._entries:
                continue
            entry = self._read_durable(key)
            if entry is None or not entry.is_readable(now):
                expired.add(key)
        for key in expired:
            self.delete(key)
        if expired:
            logger.debug(f"Purged {len(expired)} expired entries")
        return len(expired)

    def keys(self) -> list[str]:
        """List readable volatile keys, oldest first."""
        now = self._clock()
        return [key for key, entry in self._entries.items() if entry.is_readable(now)]

    def stats(self) -> CacheStats:
        return CacheStats(
            volatile_size=len(self._entries),
            durable_size=len(self._durable_keys()),
            capacity=self.capacity,
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
        )

    async def remember(
        self,
        key: str,
        fetch: Callable[[], Awaitable[Any]],
        ttl: Optional[float] = None,
    ) -> Any:
        """Return the cached value or fetch, cache and return it.

        Fetch errors propagate and nothing is cached.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = await fetch()
        self.set(key, value, ttl)
        return value

    def __len__(self) -> int:
        """Return the number of entries in the volatile tier."""
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.has(key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_ttl(self, key: str, ttl: Optional[float]) -> float:
        if ttl is None:
            ttl = self._ttl_policy.ttl_for(key) if self._ttl_policy else self.default_ttl
        if ttl <= 0:
            raise ValueError(f"ttl must be > 0, got {ttl}")
        return ttl

    def _lookup(self, key: str) -> CacheEntry:
        """Find a readable entry, evicting expired ones and promoting durable ones.

        Raises:
            CacheMiss: If no readable entry exists in either tier
        """
        now = self._clock()
        entry = self._entries.get(key)
        if entry is not None:
            if entry.is_readable(now):
                return entry
            logger.debug(f"Entry expired: '{key}'")
            self.delete(key)
            raise CacheMiss(key)

        entry = self._read_durable(key)
        if entry is None:
            raise CacheMiss(key)
        if not entry.is_readable(now):
            logger.debug(f"Durable entry expired: '{key}'")
            self._delete_durable(key)
            raise CacheMiss(key)

        self._insert(entry)
        logger.debug(f"Promoted durable entry: '{key}'")
        return entry

    def _insert(self, entry: CacheEntry) -> None:
        if entry.key in self._entries:
            del self._entries[entry.key]
        elif len(self._entries) >= self.capacity:
            oldest, _ = self._entries.popitem(last=False)
            self._delete_durable(oldest)
            self._evictions += 1
            logger.debug(f"Evicted oldest entry: '{oldest}'")
        self._entries[entry.key] = entry

    def _storage_key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def _persist(self, entry: CacheEntry) -> None:
        if self._storage is None:
            return
        try:
            self._storage.write(self._storage_key(entry.key), entry.to_record())
        except _SOFT_ERRORS as e:
            self._soft_fail(entry.key, e, "keeping volatile copy only")

    def _read_durable(self, key: str, drop_unreadable: bool = True) -> CacheEntry | None:
        if self._storage is None:
            return None
        try:
            record = self._storage.read(self._storage_key(key))
            if record is None:
                return None
            return CacheEntry.from_record(key, record)
        except _SOFT_ERRORS as e:
            self._soft_fail(key, e, "treating as miss")
            if drop_unreadable:
                self._delete_durable(key)
            return None

    def _delete_durable(self, key: str) -> None:
        if self._storage is None:
            return
        try:
            self._storage.delete(self._storage_key(key))
        except _SOFT_ERRORS as e:
            self._soft_fail(key, e, "record left in place")

    def _durable_keys(self) -> list[str]:
        if self._storage is None:
            return []
        try:
            stored = self._storage.keys(prefix=self.namespace)
        except _SOFT_ERRORS as e:
            self._soft_fail(self.namespace, e, "listing skipped")
            return []
        return [key[len(self.namespace):] for key in stored]

    @staticmethod
    def _soft_fail(key: str, cause: BaseException, consequence: str) -> None:
        logger.warning(f"{PersistenceSoftFailure(key, cause)}; {consequence}")
