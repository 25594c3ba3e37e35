"""Tests for the ResourceCache facade."""

import asyncio

import pytest

from shopcache import CacheConfig, CollectionPolicy, ResourceCache
from shopcache.application.client import route_operation
from shopcache.domain.errors import TransportFailure
from shopcache.domain.events import CacheInvalidated
from shopcache.domain.types import OptimisticOperation
from shopcache.infrastructure.storage import InMemoryStorage
from tests.conftest import settle

CART = CollectionPolicy(read_path="/cart", write_path="/cart/items", key_fields=("product_id",), quantity_field="qty")


@pytest.fixture
def cache(transport, clock, event_bus):
    config = CacheConfig(collections={"cart": CART})
    return ResourceCache(transport, config, storage=InMemoryStorage(), event_bus=event_bus, clock=clock)


class TestRead:
    @pytest.mark.asyncio
    async def test_miss_then_hit(self, cache, transport):
        transport.resources["/products"] = [{"id": 1}]

        assert await cache.read("/products", {"page": 1}) == [{"id": 1}]
        assert await cache.read("/products", {"page": 1}) == [{"id": 1}]
        assert len(transport.fetch_calls) == 1

    @pytest.mark.asyncio
    async def test_envelope_is_unwrapped(self, cache, transport):
        transport.resources["/categories"] = {"success": True, "data": {"data": ["shoes"]}}
        assert await cache.read("/categories") == ["shoes"]

    @pytest.mark.asyncio
    async def test_ttl_from_resource_rules(self, cache, transport, clock):
        transport.resources["/cart"] = []
        transport.resources["/categories"] = ["shoes"]
        await cache.read("/cart")
        await cache.read("/categories")

        clock.advance(61)
        await cache.read("/cart")
        await cache.read("/categories")

        assert [path for path, _ in transport.fetch_calls] == ["/cart", "/categories", "/cart"]

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_fetch(self, cache, transport):
        transport.resources["/products"] = [{"id": 1}]
        transport.gate = asyncio.Event()

        readers = [asyncio.ensure_future(cache.read("/products")) for _ in range(3)]
        await settle()
        transport.gate.set()
        results = await asyncio.gather(*readers)

        assert len(transport.fetch_calls) == 1
        assert all(r == [{"id": 1}] for r in results)

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, cache, transport):
        transport.fetch_error = ConnectionError("offline")
        with pytest.raises(TransportFailure) as exc_info:
            await cache.read("/products")
        assert exc_info.value.method == "GET"

        transport.fetch_error = None
        transport.resources["/products"] = [1]
        assert await cache.read("/products") == [1]
        assert len(transport.fetch_calls) == 2

    @pytest.mark.asyncio
    async def test_none_is_not_cached(self, cache, transport):
        transport.resources["/user"] = None
        assert await cache.read("/user") is None
        assert await cache.read("/user") is None
        assert len(transport.fetch_calls) == 2

    @pytest.mark.asyncio
    async def test_prefetch(self, cache, transport):
        transport.resources["/featured"] = [1]
        transport.resources["/categories"] = [2]
        await cache.read("/featured")

        fetched = await cache.prefetch([("/featured", None), ("/categories", None), ("/missing", None)])

        assert fetched == 1
        assert [path for path, _ in transport.fetch_calls] == ["/featured", "/categories", "/missing"]

    @pytest.mark.asyncio
    async def test_invalidate(self, cache, transport, event_bus):
        events = []
        event_bus.subscribe(CacheInvalidated, events.append)
        transport.resources["/products"] = [1]
        await cache.read("/products", {"page": 1})
        await cache.read("/products", {"page": 2})

        assert cache.invalidate("/products") == 2
        assert events[-1].removed == 2

        await cache.read("/products", {"page": 1})
        assert len(transport.fetch_calls) == 3

    @pytest.mark.asyncio
    async def test_remember(self, cache):
        async def compute():
            return {"total": 3}

        assert await cache.remember("cart:summary", compute) == {"total": 3}
        assert cache.stats().volatile_size == 1


class TestMutations:
    @pytest.mark.asyncio
    async def test_add_is_posted_without_temp_id(self, cache, transport):
        transport.write_responses.append({"data": {"id": 41, "product_id": 7, "qty": 1}})

        outcome = await cache.mutate("cart", OptimisticOperation.add({"product_id": 7, "qty": 1}))

        assert outcome.ok
        assert transport.write_calls == [("/cart/items", "POST", {"product_id": 7, "qty": 1})]
        assert cache.collection("cart") == [{"product_id": 7, "qty": 1, "id": 41}]

    @pytest.mark.asyncio
    async def test_failed_write_rolls_back(self, cache, transport):
        transport.resources["/cart"] = [{"id": 1, "product_id": 7, "qty": 1}]
        await cache.load_collection("cart")
        transport.write_responses.append(ConnectionError("offline"))

        outcome = await cache.mutate("cart", OptimisticOperation.update(1, {"qty": 4}))

        assert not outcome.ok
        assert outcome.rolled_back.path == "/cart/items/1"
        assert outcome.rolled_back.method == "PUT"
        assert cache.collection("cart") == [{"id": 1, "product_id": 7, "qty": 1}]

    @pytest.mark.asyncio
    async def test_confirmed_write_invalidates_collection_reads(self, cache, transport):
        transport.resources["/cart"] = [{"id": 1, "product_id": 7, "qty": 1}]
        await cache.load_collection("cart")

        await cache.mutate("cart", OptimisticOperation.remove(1))
        await cache.read("/cart")

        assert transport.write_calls == [("/cart/items/1", "DELETE", None)]
        assert len(transport.fetch_calls) == 2

    @pytest.mark.asyncio
    async def test_custom_writer(self, cache, transport):
        sent = []

        async def write(operation):
            sent.append(operation.kind)
            return None

        handle = cache.apply("cart", OptimisticOperation.clear(), write)
        await handle
        assert len(sent) == 1
        assert transport.write_calls == []


class TestReconcile:
    @pytest.mark.asyncio
    async def test_default_fetch_bypasses_cache(self, cache, transport):
        transport.resources["/cart"] = [{"id": 1, "product_id": 7, "qty": 1}]
        await cache.read("/cart")
        transport.resources["/cart"] = [{"id": 2, "product_id": 8, "qty": 1}]

        result = await cache.reconcile("cart", [{"id": "tmp-a", "product_id": 9, "qty": 2}])

        assert [item["product_id"] for item in result] == [8, 9]
        assert len(transport.fetch_calls) == 2

    @pytest.mark.asyncio
    async def test_push_local(self, cache, transport):
        transport.resources["/cart"] = []
        transport.write_responses.append({"id": 50})

        result = await cache.reconcile("cart", [{"id": "tmp-a", "product_id": 9, "qty": 2}], push_local=True)

        assert transport.write_calls == [("/cart/items", "POST", {"product_id": 9, "qty": 2})]
        assert result == [{"id": 50, "product_id": 9, "qty": 2}]

    @pytest.mark.asyncio
    async def test_read_after_reconcile_returns_server_state(self, cache, transport):
        transport.resources["/cart"] = [{"id": 10, "product_id": 1, "qty": 1}]

        await cache.reconcile("cart", [{"id": 99, "product_id": 2, "qty": 1}])

        assert [item["id"] for item in cache.collection("cart")] == [10, 99]
        assert await cache.read("/cart") == [{"id": 10, "product_id": 1, "qty": 1}]


class TestSession:
    @pytest.mark.asyncio
    async def test_end_session(self, cache, transport):
        transport.resources["/products"] = [1]
        await cache.read("/products")
        cache.engine.load("cart", [{"id": 1, "product_id": 7, "qty": 1}])

        cache.end_session()

        assert cache.stats().volatile_size == 0
        assert cache.stats().durable_size == 0
        assert cache.collection("cart") == []

    def test_storage_dir_enables_file_storage(self, tmp_path, transport):
        cache = ResourceCache(transport, CacheConfig(storage_dir=str(tmp_path)))
        assert cache.stats().durable_size == 0
        cache.store.set("/products", [1])
        assert cache.stats().durable_size == 1


class TestRouteOperation:
    def test_routes(self):
        policy = CollectionPolicy(read_path="/wishlist", quantity_field=None)

        assert route_operation(OptimisticOperation.add({"product_id": 1}), policy) == (
            "/wishlist", "POST", {"product_id": 1},
        )
        assert route_operation(OptimisticOperation.update(3, {"note": "x"}), policy) == (
            "/wishlist/3", "PUT", {"note": "x"},
        )
        assert route_operation(OptimisticOperation.remove(3), policy) == ("/wishlist/3", "DELETE", None)
        assert route_operation(OptimisticOperation.clear(), policy) == ("/wishlist", "DELETE", None)

    def test_server_id_is_kept_in_body(self):
        policy = CollectionPolicy(read_path="/cart")
        assert route_operation(OptimisticOperation.add({"id": 12, "product_id": 1}), policy)[2] == {
            "id": 12,
            "product_id": 1,
        }
