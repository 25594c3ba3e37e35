"""Tests for the event bus."""

import pytest

from shopcache.domain.events import CacheInvalidated, EventBus, OperationRolledBack


class TestEventBus:
    def test_publish_to_subscribers_in_order(self):
        bus = EventBus()
        calls = []
        bus.subscribe(CacheInvalidated, lambda e: calls.append(("first", e.pattern)))
        bus.subscribe(CacheInvalidated, lambda e: calls.append(("second", e.removed)))

        bus.publish(CacheInvalidated(pattern="/cart", removed=2))

        assert calls == [("first", "/cart"), ("second", 2)]

    def test_only_matching_type_is_delivered(self):
        bus = EventBus()
        calls = []
        bus.subscribe(OperationRolledBack, calls.append)

        bus.publish(CacheInvalidated(pattern="/cart", removed=0))

        assert calls == []
        assert bus.has_subscribers(OperationRolledBack)
        assert not bus.has_subscribers(CacheInvalidated)

    def test_async_handler_rejected(self):
        bus = EventBus()

        async def handler(event):
            pass

        with pytest.raises(TypeError):
            bus.subscribe(CacheInvalidated, handler)

    def test_duplicate_subscription_ignored(self):
        bus = EventBus()
        calls = []

        def handler(event):
            calls.append(event)

        bus.subscribe(CacheInvalidated, handler)
        bus.subscribe(CacheInvalidated, handler)
        bus.publish(CacheInvalidated(pattern="/x", removed=0))

        assert len(calls) == 1

    def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        calls = []

        def broken(event):
            raise RuntimeError("handler bug")

        bus.subscribe(CacheInvalidated, broken)
        bus.subscribe(CacheInvalidated, calls.append)
        bus.publish(CacheInvalidated(pattern="/x", removed=0))

        assert len(calls) == 1

    def test_unsubscribe_and_clear(self):
        bus = EventBus()
        calls = []
        bus.subscribe(CacheInvalidated, calls.append)
        bus.unsubscribe(CacheInvalidated, calls.append)
        bus.unsubscribe(OperationRolledBack, calls.append)
        bus.publish(CacheInvalidated(pattern="/x", removed=0))
        assert calls == []

        bus.subscribe(CacheInvalidated, calls.append)
        bus.clear()
        assert not bus.has_subscribers(CacheInvalidated)

    def test_events_are_timestamped(self):
        event = OperationRolledBack(collection_key="cart", operation_id="tmp-1", reason="offline")
        assert event.timestamp > 0
