"""Resource cache facade.

``ResourceCache`` is the surface application stores talk to. It wires the
cache store, the request deduplicator, the optimistic mutation engine and the
reconciler around one injected transport:

- ``read`` serves from the cache or performs one shared fetch per key
- ``mutate`` / ``apply`` change a collection optimistically and write it
- ``invalidate`` drops cached reads under a path prefix
- ``reconcile`` merges local state into the server's after login/reconnect

Create one instance at application bootstrap and call :meth:`end_session`
on logout.
"""

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from shopcache.application.dedup import RequestDeduplicator
from shopcache.application.engine import OperationHandle, OptimisticMutationEngine, Writer
from shopcache.application.reconciler import FetchItems, PushItem, Reconciler
from shopcache.config import CacheConfig, CollectionPolicy
from shopcache.core.cache import CacheStore
from shopcache.core.keys import build_key, build_request_key
from shopcache.core.ttl_policy import TtlPolicy
from shopcache.domain.errors import TransportFailure
from shopcache.domain.events import CacheInvalidated, EventBus
from shopcache.domain.protocols import DurableStorage, Transport
from shopcache.domain.types import CacheStats, Item, OperationKind, OperationOutcome, OptimisticOperation
from shopcache.infrastructure.storage import FileStorage
from shopcache.infrastructure.transport import normalize_response
from shopcache.logger import get_logger
from shopcache.utils import Clock, is_temp_id, system_clock

logger = get_logger(__name__)

# (resource path, params) pairs for prefetching
PrefetchEntry = tuple[str, Optional[Mapping[str, Any]]]


class ResourceCache:
    """Typed read/write surface over a transport with caching and optimism.

    Example:
        >>> cache = ResourceCache(
        ...     transport,
        ...     CacheConfig(collections={"cart": CollectionPolicy(read_path="/cart", max_quantity=10)}),
        ... )
        >>> products = await cache.read("/products", {"page": 1})
        >>> outcome = await cache.mutate("cart", OptimisticOperation.add({"product_id": 7, "quantity": 1}))
        >>> if not outcome.ok:
        ...     notify(outcome.rolled_back)
    """

    def __init__(
        self,
        transport: Transport,
        config: Optional[CacheConfig] = None,
        storage: Optional[DurableStorage] = None,
        event_bus: Optional[EventBus] = None,
        clock: Clock = system_clock,
    ) -> None:
        """Build the cache layer.

        Args:
            transport: Fetch/write capability
            config: Cache settings; defaults to ``CacheConfig()``
            storage: Durable tier backend. When None, a ``FileStorage`` is
                created if ``config.storage_dir`` is set, otherwise the cache
                is volatile only.
            event_bus: Bus receiving lifecycle events; a private one is created if None
            clock: Source of the current Unix time in seconds
        """
        self.config = config or CacheConfig()
        self.event_bus = event_bus or EventBus()
        self._transport = transport

        if storage is None and self.config.storage_dir:
            storage = FileStorage(self.config.storage_dir)

        self.store = CacheStore(
            capacity=self.config.capacity,
            default_ttl=self.config.default_ttl,
            storage=storage,
            namespace=self.config.namespace,
            ttl_policy=TtlPolicy.from_config(self.config),
            clock=clock,
        )
        self.deduplicator = RequestDeduplicator()
        self.engine = OptimisticMutationEngine(
            cache=self.store,
            event_bus=self.event_bus,
            strict_invariants=self.config.strict_invariants,
        )
        self.reconciler = Reconciler(
            self.engine,
            cache=self.store,
            event_bus=self.event_bus,
            strict_invariants=self.config.strict_invariants,
        )

        for collection_key, policy in self.config.collections.items():
            self.register_collection(collection_key, policy)

        logger.info(
            f"ResourceCache ready: capacity={self.config.capacity}, "
            f"durable={'yes' if storage is not None else 'no'}, "
            f"collections={len(self.config.collections)}"
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read(
        self,
        resource_path: str,
        params: Optional[Mapping[str, Any]] = None,
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Return a resource from the cache, fetching it on a miss.

        Concurrent misses for the same key share one fetch. Failures are not
        cached.

        Args:
            resource_path: Resource path, e.g. ``/products``
            params: Query parameters
            ttl: Override of the policy TTL in seconds

        Raises:
            TransportFailure: If the fetch failed
        """
        key = build_key(resource_path, params)
        cached = self.store.get(key)
        if cached is not None:
            logger.debug(f"Cache hit: '{key}'")
            return cached

        async def work() -> Any:
            value = await self._fetch(resource_path, params)
            # None means "miss" to the store, so it is never cached
            if value is not None:
                self.store.set(key, value, ttl)
            return value

        return await self.deduplicator.request(build_request_key("GET", key), work)

    async def remember(self, key: str, fetch: Callable[[], Awaitable[Any]], ttl: Optional[float] = None) -> Any:
        """Read-through helper for values that don't come from the transport."""
        return await self.store.remember(key, fetch, ttl)

    async def prefetch(self, entries: Iterable[PrefetchEntry]) -> int:
        """
        Warm the cache for resources likely to be needed soon.

        Already cached entries are skipped; failures are logged and skipped.

        Returns:
            Number of resources fetched successfully
        """
        pending = [(path, params) for path, params in entries if not self.store.has(build_key(path, params))]
        results = await asyncio.gather(*(self.read(path, params) for path, params in pending), return_exceptions=True)
        fetched = 0
        for (path, params), result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to prefetch {build_key(path, params)}: {result}")
            else:
                fetched += 1
        return fetched

    def invalidate(self, resource_path_prefix: str) -> int:
        """Drop every cached read whose key contains the prefix."""
        removed = self.store.invalidate_pattern(resource_path_prefix)
        self.event_bus.publish(CacheInvalidated(pattern=resource_path_prefix, removed=removed))
        return removed

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def register_collection(self, collection_key: str, policy: CollectionPolicy) -> None:
        self.engine.register(collection_key, policy)

    def collection(self, collection_key: str) -> list[dict[str, Any]]:
        """Current (optimistic) items of a collection."""
        return self.engine.items(collection_key)

    async def load_collection(self, collection_key: str, params: Optional[Mapping[str, Any]] = None) -> list[dict[str, Any]]:
        """Read a collection through the cache and make it the engine's base state."""
        policy = self.engine.policy(collection_key)
        items = await self.read(policy.read_path, params)
        self.engine.load(collection_key, items or [])
        return self.engine.items(collection_key)

    def apply(
        self,
        collection_key: str,
        operation: OptimisticOperation,
        write: Optional[Writer] = None,
    ) -> OperationHandle:
        """Apply an operation now and return a handle on its write.

        Args:
            collection_key: Registered collection
            operation: Operation to apply
            write: Custom writer; defaults to the REST route of the collection
        """
        return self.engine.apply(collection_key, operation, write or self._writer(collection_key))

    async def mutate(
        self,
        collection_key: str,
        operation: OptimisticOperation,
        write: Optional[Writer] = None,
    ) -> OperationOutcome:
        """Apply an operation and wait until it is committed or rolled back."""
        return await self.apply(collection_key, operation, write).outcome()

    async def reconcile(
        self,
        collection_key: str,
        local_items: Iterable[Item],
        fetch_server_items: Optional[FetchItems] = None,
        push_item: Optional[PushItem] = None,
        push_local: bool = False,
    ) -> list[dict[str, Any]]:
        """
        Merge local items into the server's collection.

        Args:
            collection_key: Registered collection
            local_items: Items held locally before the session boundary
            fetch_server_items: Fetches the server items; defaults to a fresh
                (uncached) read of the collection's read path
            push_item: Sends a local-only item to the server before merging
            push_local: Without ``push_item``, POST local-only items to the
                collection's write path
        """
        policy = self.engine.policy(collection_key)

        async def fetch_fresh() -> Any:
            self.store.invalidate_pattern(policy.read_path)
            return await self.read(policy.read_path)

        return await self.reconciler.reconcile(
            collection_key,
            local_items,
            fetch_server_items or fetch_fresh,
            push_item or (self._pusher(collection_key) if push_local else None),
        )

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def end_session(self) -> None:
        """Drop all cached data and collection state, e.g. on logout."""
        self.store.clear()
        self.deduplicator.clear()
        self.engine.reset()
        logger.info("Session ended: cache and collections cleared")

    def stats(self) -> CacheStats:
        return self.store.stats()

    # ------------------------------------------------------------------
    # Transport boundary
    # ------------------------------------------------------------------

    async def _fetch(self, resource_path: str, params: Optional[Mapping[str, Any]]) -> Any:
        try:
            raw = await self._transport.fetch_resource(resource_path, params)
        except Exception as e:
            logger.error(f"Fetch failed for {resource_path}: {e}")
            raise TransportFailure(resource_path, "GET", e) from e
        return normalize_response(raw)

    def _pusher(self, collection_key: str) -> PushItem:
        write = self._writer(collection_key)

        async def push(item: Item) -> Any:
            return await write(OptimisticOperation.add(item))

        return push

    def _writer(self, collection_key: str) -> Writer:
        policy = self.engine.policy(collection_key)

        async def write(operation: OptimisticOperation) -> Any:
            path, method, body = route_operation(operation, policy)
            try:
                raw = await self._transport.write_resource(path, method, body)
            except Exception as e:
                raise TransportFailure(path, method, e) from e
            return normalize_response(raw)

        return write


def route_operation(operation: OptimisticOperation, policy: CollectionPolicy) -> tuple[str, str, Any]:
    """
    Map an operation onto the collection's REST routes.

    ===========  ========  ===========================
    kind         method    path
    ===========  ========  ===========================
    ADD          POST      ``write_path``
    UPDATE       PUT       ``write_path/<target_id>``
    REMOVE       DELETE    ``write_path/<target_id>``
    CLEAR        DELETE    ``write_path``
    ===========  ========  ===========================

    Temporary ids of added items are never sent to the server.
    """
    base = policy.resolved_write_path.rstrip("/")
    if operation.kind is OperationKind.ADD:
        body = dict(operation.payload or {})
        item_id = body.get(policy.id_field)
        if item_id == operation.id or is_temp_id(item_id):
            del body[policy.id_field]
        return base, "POST", body
    if operation.kind is OperationKind.UPDATE:
        return f"{base}/{operation.target_id}", "PUT", dict(operation.payload or {})
    if operation.kind is OperationKind.REMOVE:
        return f"{base}/{operation.target_id}", "DELETE", None
    return base, "DELETE", None
