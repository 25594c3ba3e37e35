"""Error taxonomy of the cache layer."""

from typing import Any, Optional

from shopcache.logger import get_logger

logger = get_logger("errors")


class ShopCacheError(Exception):
    """Base class for all cache layer errors."""


class CacheMiss(ShopCacheError):
    """Internal signal that a key is absent or expired.

    Never surfaced to application code: reads fall through to a fetch.
    """

    def __init__(self, key: str):
        super().__init__(f"Cache miss: {key}")
        self.key = key


class TransportFailure(ShopCacheError):
    """The injected fetch or write capability failed.

    Attributes:
        path: Resource path of the failed call
        method: HTTP-like method name ("GET" for reads)
        cause: The original exception raised by the transport
    """

    def __init__(self, path: str, method: str, cause: BaseException):
        super().__init__(f"{method} {path} failed: {cause}")
        self.path = path
        self.method = method
        self.cause = cause


class PersistenceSoftFailure(ShopCacheError):
    """A durable-tier read or write failed.

    Always caught where it happens and logged. The volatile tier keeps working.
    """

    def __init__(self, key: str, cause: BaseException):
        super().__init__(f"Durable storage failed for '{key}': {cause}")
        self.key = key
        self.cause = cause


class InvariantViolation(ShopCacheError):
    """A defect: an operation settled twice, a composite key collided, etc."""


def check_invariant(condition: bool, message: str, strict: bool, **context: Any) -> bool:
    """
    Enforce an invariant according to the strictness setting.

    Args:
        condition: Value of the invariant
        message: Description of the violation
        strict: Raise instead of logging
        **context: Extra fields included in the log message

    Returns:
        True when the invariant holds, False when it was violated in
        non-strict mode (the caller must then skip the offending change)

    Raises:
        InvariantViolation: If the invariant is violated and ``strict`` is set
    """
    if condition:
        return True
    detail: Optional[str] = ", ".join(f"{k}={v!r}" for k, v in context.items()) or None
    full_message = f"{message} ({detail})" if detail else message
    if strict:
        raise InvariantViolation(full_message)
    logger.warning(f"Invariant violated, change ignored: {full_message}")
    return False
