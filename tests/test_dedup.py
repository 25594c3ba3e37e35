"""Tests for single-flight request deduplication."""

import asyncio

import pytest

from shopcache.application.dedup import RequestDeduplicator
from tests.conftest import settle


class TestRequestDeduplicator:
    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_call(self):
        dedup = RequestDeduplicator()
        calls = 0
        release = asyncio.Event()

        async def work():
            nonlocal calls
            calls += 1
            await release.wait()
            return {"items": [1, 2]}

        first = asyncio.ensure_future(dedup.request("GET:/products:", work))
        second = asyncio.ensure_future(dedup.request("GET:/products:", work))
        await settle()
        assert dedup.is_pending("GET:/products:")
        assert dedup.pending_count == 1

        release.set()
        a, b = await asyncio.gather(first, second)

        assert calls == 1
        assert a is b
        assert dedup.pending_count == 0

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        dedup = RequestDeduplicator()
        seen = []

        async def work_for(key):
            async def work():
                seen.append(key)
                return key
            return work

        results = await asyncio.gather(
            dedup.request("a", await work_for("a")),
            dedup.request("b", await work_for("b")),
        )
        assert results == ["a", "b"]
        assert sorted(seen) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_error_is_shared_and_not_retained(self):
        dedup = RequestDeduplicator()
        calls = 0
        release = asyncio.Event()

        async def failing():
            nonlocal calls
            calls += 1
            await release.wait()
            raise ConnectionError("offline")

        waiters = [asyncio.ensure_future(dedup.request("k", failing)) for _ in range(3)]
        await settle()
        release.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert calls == 1
        assert all(isinstance(r, ConnectionError) for r in results)
        assert not dedup.is_pending("k")

    @pytest.mark.asyncio
    async def test_request_after_settle_starts_fresh_call(self):
        dedup = RequestDeduplicator()
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            return calls

        assert await dedup.request("k", work) == 1
        assert await dedup.request("k", work) == 2

    @pytest.mark.asyncio
    async def test_registration_removed_before_waiters_resume(self):
        dedup = RequestDeduplicator()
        observed = []

        async def work():
            return "done"

        async def caller():
            await dedup.request("k", work)
            observed.append(dedup.is_pending("k"))

        await caller()
        assert observed == [False]

    @pytest.mark.asyncio
    async def test_cancel_lets_next_request_start_new_call(self):
        dedup = RequestDeduplicator()
        release = asyncio.Event()
        calls = 0

        async def work():
            nonlocal calls
            calls += 1
            call_number = calls
            await release.wait()
            return call_number

        first = asyncio.ensure_future(dedup.request("k", work))
        await settle()
        dedup.cancel("k")
        second = asyncio.ensure_future(dedup.request("k", work))
        await settle()
        release.set()

        assert sorted(await asyncio.gather(first, second)) == [1, 2]
        assert calls == 2
        assert dedup.pending_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_shared_call(self):
        dedup = RequestDeduplicator()
        release = asyncio.Event()

        async def work():
            await release.wait()
            return "shared"

        impatient = asyncio.ensure_future(dedup.request("k", work))
        patient = asyncio.ensure_future(dedup.request("k", work))
        await settle()
        impatient.cancel()
        await settle()
        release.set()

        assert await patient == "shared"
        with pytest.raises(asyncio.CancelledError):
            await impatient

    @pytest.mark.asyncio
    async def test_clear(self):
        dedup = RequestDeduplicator()
        release = asyncio.Event()

        async def work():
            await release.wait()

        task = asyncio.ensure_future(dedup.request("k", work))
        await settle()
        dedup.clear()
        assert dedup.pending_count == 0
        release.set()
        await task
