"""Reconciliation of locally held collections with server state.

Run once per session boundary (guest login, reconnect): the server's copy of
a collection is fetched, local-only items are optionally pushed to the
server, and the merged result becomes the engine's new base state.

The merged collection is never written to the cache: cached reads only ever
hold server responses.
"""

import asyncio
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

from shopcache.application.engine import OptimisticMutationEngine
from shopcache.config import CollectionPolicy
from shopcache.core.collections import has_unique_keys, merge_collections
from shopcache.domain.errors import check_invariant
from shopcache.domain.events import CollectionReconciled, EventBus
from shopcache.domain.protocols import Cache
from shopcache.domain.types import Item
from shopcache.logger import get_logger

logger = get_logger(__name__)

FetchItems = Callable[[], Awaitable[Optional[Iterable[Item]]]]
PushItem = Callable[[Item], Awaitable[Any]]


class Reconciler:
    """Merge local and server versions of a collection.

    Example:
        >>> reconciler = Reconciler(engine, cache=store)
        >>> merged = await reconciler.reconcile("cart", guest_items, fetch_user_cart)
    """

    def __init__(
        self,
        engine: OptimisticMutationEngine,
        cache: Optional[Cache] = None,
        event_bus: Optional[EventBus] = None,
        strict_invariants: bool = False,
    ) -> None:
        self._engine = engine
        self._cache = cache
        self._event_bus = event_bus
        self._strict = strict_invariants

    @staticmethod
    def merge(local_items: Sequence[Item], server_items: Sequence[Item], policy: CollectionPolicy) -> list[Item]:
        """Server items first (server wins on shared keys), then local-only items."""
        return merge_collections(local_items, server_items, key=policy.composite_key)

    async def reconcile(
        self,
        collection_key: str,
        local_items: Iterable[Item],
        fetch_server_items: FetchItems,
        push_item: Optional[PushItem] = None,
    ) -> list[dict[str, Any]]:
        """
        Merge ``local_items`` into the server's collection and load the result.

        Args:
            collection_key: Registered collection
            local_items: Items held locally (e.g. the guest cart)
            fetch_server_items: Coroutine function returning the server items
            push_item: Optional coroutine function sending one local-only item
                to the server. Failures are logged and the item is kept locally.
                A mapping returned by the server is merged into the local item.

        Returns:
            The reconciled collection

        Raises:
            Exception: Whatever ``fetch_server_items`` raised; the collection
                is left untouched in that case
        """
        policy = self._engine.policy(collection_key)
        local = [dict(item) for item in local_items]
        server = [dict(item) for item in (await fetch_server_items() or [])]

        server_keys = {policy.composite_key(item) for item in server}
        local_only = [item for item in local if policy.composite_key(item) not in server_keys]

        if push_item is not None and local_only:
            local = await self._push(collection_key, local, local_only, push_item)
            # Cached reads predate the push and no longer match the server
            if self._cache is not None:
                self._cache.invalidate_pattern(policy.read_path)

        merged = self.merge(local, server, policy)
        check_invariant(
            has_unique_keys(merged, policy),
            "composite key collision after merge",
            self._strict,
            collection=collection_key,
        )
        self._engine.load(collection_key, merged)

        logger.info(
            f"Reconciled '{collection_key}': {len(server)} server items, {len(local_only)} local-only"
        )
        if self._event_bus is not None:
            self._event_bus.publish(
                CollectionReconciled(
                    collection_key=collection_key,
                    server_count=len(server),
                    local_only_count=len(local_only),
                )
            )
        return self._engine.items(collection_key)

    async def _push(
        self,
        collection_key: str,
        local: list[dict[str, Any]],
        local_only: list[dict[str, Any]],
        push_item: PushItem,
    ) -> list[dict[str, Any]]:
        results = await asyncio.gather(*(push_item(item) for item in local_only), return_exceptions=True)
        updated: dict[int, dict[str, Any]] = {}
        failed = 0
        for item, result in zip(local_only, results):
            if isinstance(result, BaseException):
                failed += 1
                logger.warning(f"Failed to push local item to '{collection_key}': {result}")
            elif isinstance(result, Mapping):
                updated[id(item)] = {**item, **result}
        if failed:
            logger.warning(f"{failed}/{len(local_only)} local items of '{collection_key}' were not pushed")
        return [updated.get(id(item), item) for item in local]
