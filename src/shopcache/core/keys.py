"""Deterministic cache and request keys.

Cache keys look like URLs (``/products?page=2&sort=price``) so that pattern
invalidation can match every key sharing a resource path prefix.
"""

from typing import Any, Mapping, Optional
from urllib.parse import urlencode

from shopcache.utils import canonical_json


def _param_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return canonical_json(value)


def build_key(resource_path: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """
    Map a resource path and its parameters to a cache key.

    Parameters are sorted by name so that their order never matters. ``None``
    values are dropped, mirroring how query strings omit unset parameters.
    Non-string values are rendered as canonical JSON, so values are compared
    the way a query string carries them: ``{"page": 1}`` and ``{"page": "1"}``
    (or ``True`` and ``"true"``) build the same key, as they would fetch the
    same URL.

    Args:
        resource_path: Resource path, e.g. ``/products``
        params: Optional query parameters

    Returns:
        Key such as ``/products?page=2&sort=price`` or just the path

    Example:
        >>> build_key("/products", {"sort": "price", "page": 2})
        '/products?page=2&sort=price'
        >>> build_key("/products", {"page": 2, "sort": "price"})
        '/products?page=2&sort=price'
    """
    if not params:
        return resource_path
    pairs = sorted((str(name), _param_value(value)) for name, value in params.items() if value is not None)
    if not pairs:
        return resource_path
    return f"{resource_path}?{urlencode(pairs)}"


def build_request_key(method: str, url: str, body: Any = None) -> str:
    """
    Identify an in-flight request by method, URL and serialized body.

    Example:
        >>> build_request_key("post", "/cart", {"product_id": 1})
        'POST:/cart:{"product_id":1}'
    """
    serialized = canonical_json(body) if body is not None else ""
    return f"{method.upper()}:{url}:{serialized}"
