"""Transport implementation on top of httpx.

This adapter only performs HTTP calls and checks status codes; envelope
normalization happens in the cache layer. Errors are raised, never
swallowed. Retry and backoff belong to the HTTP client configuration.
"""

from typing import Any, Mapping, Optional

import httpx

from shopcache.logger import get_logger

logger = get_logger(__name__)


class TransportHTTPError(RuntimeError):
    """The backend answered with an error status."""

    def __init__(self, method: str, url: str, status_code: int, body: str):
        super().__init__(f"{method} {url} returned {status_code}: {body}")
        self.status_code = status_code


class HttpxTransport:
    """Transport over an ``httpx.AsyncClient``.

    Example:
        >>> client = httpx.AsyncClient(base_url="https://shop.example.com/api")
        >>> transport = HttpxTransport(client)
        >>> products = await transport.fetch_resource("/products", {"page": 2})
    """

    def __init__(self, http_client: httpx.AsyncClient, headers: Optional[Mapping[str, str]] = None) -> None:
        self._http_client = http_client
        self._headers = dict(headers or {})

    async def fetch_resource(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        query = {k: v for k, v in (params or {}).items() if v is not None}
        response = await self._http_client.get(path, params=query, headers=self._headers)
        return self._handle(response)

    async def write_resource(self, path: str, method: str, body: Any = None) -> Any:
        response = await self._http_client.request(
            method.upper(),
            path,
            json=body,
            headers=self._headers,
        )
        return self._handle(response)

    @staticmethod
    def _handle(response: httpx.Response) -> Any:
        if response.status_code >= 400:
            logger.warning(f"{response.request.method} {response.request.url} -> {response.status_code}")
            raise TransportHTTPError(
                response.request.method,
                str(response.request.url),
                response.status_code,
                response.text,
            )
        if not response.content:
            return None
        return response.json()
