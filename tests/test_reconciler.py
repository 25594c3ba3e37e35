"""Tests for reconciling local collections with the server."""

import pytest

from shopcache.application.engine import OptimisticMutationEngine
from shopcache.application.reconciler import Reconciler
from shopcache.config import CollectionPolicy
from shopcache.core.cache import CacheStore
from shopcache.domain.events import CollectionReconciled

CART = CollectionPolicy(read_path="/cart", key_fields=("id",), quantity_field="qty")


@pytest.fixture
def store(clock):
    return CacheStore(clock=clock)


@pytest.fixture
def engine():
    engine = OptimisticMutationEngine()
    engine.register("cart", CART)
    return engine


@pytest.fixture
def reconciler(engine, store, event_bus):
    return Reconciler(engine, cache=store, event_bus=event_bus)


def server_returning(items):
    async def fetch():
        return items

    return fetch


class TestMerge:
    def test_server_first_then_local_only(self):
        merged = Reconciler.merge([{"id": 1}, {"id": 2}], [{"id": 2}, {"id": 3}], CART)
        assert merged == [{"id": 2}, {"id": 3}, {"id": 1}]


class TestReconcile:
    @pytest.mark.asyncio
    async def test_merges_and_loads(self, reconciler, engine, store, event_bus):
        events = []
        event_bus.subscribe(CollectionReconciled, events.append)

        result = await reconciler.reconcile(
            "cart",
            [{"id": 1, "qty": 1}, {"id": 2, "qty": 5}],
            server_returning([{"id": 2, "qty": 1}, {"id": 3, "qty": 1}]),
        )

        assert result == [{"id": 2, "qty": 1}, {"id": 3, "qty": 1}, {"id": 1, "qty": 1}]
        assert engine.items("cart") == result
        assert store.get("/cart") is None
        assert events[0].server_count == 2
        assert events[0].local_only_count == 1

    @pytest.mark.asyncio
    async def test_idempotent(self, reconciler):
        server = [{"id": 2}, {"id": 3}]
        once = await reconciler.reconcile("cart", [{"id": 1}, {"id": 2}], server_returning(server))
        twice = await reconciler.reconcile("cart", once, server_returning(server))

        assert once == [{"id": 2}, {"id": 3}, {"id": 1}]
        assert twice == once

    @pytest.mark.asyncio
    async def test_empty_server(self, reconciler):
        assert await reconciler.reconcile("cart", [{"id": 1}], server_returning(None)) == [{"id": 1}]

    @pytest.mark.asyncio
    async def test_fetch_failure_leaves_collection_untouched(self, reconciler, engine):
        engine.load("cart", [{"id": 9}])

        async def fetch():
            raise ConnectionError("offline")

        with pytest.raises(ConnectionError):
            await reconciler.reconcile("cart", [{"id": 1}], fetch)
        assert engine.items("cart") == [{"id": 9}]

    @pytest.mark.asyncio
    async def test_pushes_local_only_items(self, reconciler):
        pushed = []

        async def push(item):
            pushed.append(item)
            return {"synced": True}

        result = await reconciler.reconcile(
            "cart", [{"id": 1}, {"id": 2}], server_returning([{"id": 2}]), push_item=push
        )

        assert pushed == [{"id": 1}]
        assert result == [{"id": 2}, {"id": 1, "synced": True}]

    @pytest.mark.asyncio
    async def test_push_failure_keeps_item_locally(self, reconciler):
        async def push(item):
            if item["id"] == 1:
                raise ConnectionError("offline")
            return None

        result = await reconciler.reconcile(
            "cart", [{"id": 1}, {"id": 4}], server_returning([]), push_item=push
        )
        assert result == [{"id": 1}, {"id": 4}]

    @pytest.mark.asyncio
    async def test_duplicate_server_items_keep_first(self, reconciler):
        result = await reconciler.reconcile(
            "cart", [], server_returning([{"id": 1, "qty": 2}, {"id": 1, "qty": 7}])
        )
        assert result == [{"id": 1, "qty": 2}]

    @pytest.mark.asyncio
    async def test_cached_server_read_is_left_alone_without_push(self, reconciler, store):
        store.set("/cart", [{"id": 10}])

        await reconciler.reconcile("cart", [{"id": 99}], server_returning([{"id": 10}]))

        assert store.get("/cart") == [{"id": 10}]

    @pytest.mark.asyncio
    async def test_push_invalidates_cached_reads(self, reconciler, store):
        store.set("/cart", [{"id": 10}])
        store.set("/cart?page=1", [{"id": 10}])

        async def push(item):
            return {"id": 11}

        await reconciler.reconcile("cart", [{"id": 99}], server_returning([{"id": 10}]), push_item=push)

        assert store.get("/cart") is None
        assert store.get("/cart?page=1") is None
