"""Transport protocol consumed by the cache layer."""

from typing import Any, Mapping, Optional, Protocol

__all__ = ["Transport"]


class Transport(Protocol):
    """Fetch/mutate capability injected into the cache layer.

    Both methods raise on any failure. The cache layer does not interpret
    status codes: a call either succeeds with a value or fails.
    Payloads may be wrapped in the backend envelope; the cache layer unwraps
    them with :func:`shopcache.infrastructure.transport.normalize_response`.
    """

    async def fetch_resource(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Read a resource."""
        ...

    async def write_resource(self, path: str, method: str, body: Any = None) -> Any:
        """Write a resource with the given method (POST, PUT, PATCH, DELETE)."""
        ...
