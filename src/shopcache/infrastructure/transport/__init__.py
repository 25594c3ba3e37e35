"""Transport adapters and response normalization."""

from shopcache.infrastructure.transport.http import HttpxTransport
from shopcache.infrastructure.transport.normalize import normalize_response

__all__ = [
    "HttpxTransport",
    "normalize_response",
]
