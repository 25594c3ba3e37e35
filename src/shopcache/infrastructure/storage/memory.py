"""In-memory durable storage.

Records live in a dictionary and are lost when the process exits. Useful
for tests and for simulating a warm start within one process.
"""

import copy
from typing import Any

from shopcache.logger import get_logger

logger = get_logger(__name__)


class InMemoryStorage:
    """Dictionary-backed DurableStorage.

    Records are deep-copied on write and read so callers can never mutate
    stored data.

    Example:
        >>> storage = InMemoryStorage()
        >>> storage.write("cache:/cart", {"value": [], "expires_at": 10.0})
        >>> storage.read("cache:/cart")
        {'value': [], 'expires_at': 10.0}
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        logger.debug("InMemoryStorage initialized (records will not persist)")

    def read(self, key: str) -> dict[str, Any] | None:
        record = self._data.get(key)
        return copy.deepcopy(record) if record is not None else None

    def write(self, key: str, record: dict[str, Any]) -> None:
        self._data[key] = copy.deepcopy(record)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str | None = None) -> list[str]:
        if prefix is None:
            return list(self._data)
        return [k for k in self._data if k.startswith(prefix)]

    def __len__(self) -> int:
        """Return the number of stored keys."""
        return len(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data
