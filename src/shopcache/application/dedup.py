"""Single-flight request deduplication.

Concurrent callers asking for the same request key share one underlying call.
The registration lives exactly as long as the call is in flight: it is
removed when the call settles, before any waiter observes the outcome, so a
request arriving afterwards always starts a fresh call.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from shopcache.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RequestDeduplicator:
    """Collapse concurrent identical requests into one shared task.

    Example:
        >>> dedup = RequestDeduplicator()
        >>> results = await asyncio.gather(
        ...     dedup.request("GET:/products:", fetch_products),
        ...     dedup.request("GET:/products:", fetch_products),
        ... )
        >>> # fetch_products ran once; both callers got the same object
    """

    def __init__(self) -> None:
        self._pending: dict[str, asyncio.Task[Any]] = {}

    async def request(self, request_key: str, work: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``work`` unless an identical request is already in flight.

        Args:
            request_key: Identity of the request (see ``build_request_key``)
            work: Zero-argument coroutine function performing the call

        Returns:
            The shared result

        Raises:
            Exception: Whatever ``work`` raised, re-raised to every waiter
        """
        task = self._pending.get(request_key)
        if task is None:
            task = asyncio.ensure_future(self._run(request_key, work))
            self._pending[request_key] = task
            logger.debug(f"Started request '{request_key}'")
        else:
            logger.debug(f"Joined in-flight request '{request_key}'")
        # Shield so that one cancelled waiter doesn't cancel the shared call
        return await asyncio.shield(task)

    async def _run(self, request_key: str, work: Callable[[], Awaitable[T]]) -> T:
        try:
            return await work()
        finally:
            # Only drop our own registration; cancel() may have replaced it
            if self._pending.get(request_key) is asyncio.current_task():
                del self._pending[request_key]

    def cancel(self, request_key: str) -> None:
        """Forget a registration so the next request starts a new call.

        The underlying call keeps running and its current waiters still
        receive its outcome.
        """
        self._pending.pop(request_key, None)

    def clear(self) -> None:
        """Forget every registration (e.g. at session end)."""
        self._pending.clear()

    def is_pending(self, request_key: str) -> bool:
        return request_key in self._pending

    @property
    def pending_count(self) -> int:
        return len(self._pending)
