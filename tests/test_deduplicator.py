"""Tests for the single-flight slot."""

import asyncio

import pytest

from glucolink.services.deduplicator import SingleFlight


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_attempt(self):
        flight = SingleFlight()
        calls = 0
        release = asyncio.Event()

        async def request():
            nonlocal calls
            calls += 1
            await release.wait()
            return ["result"]

        waiters = [asyncio.create_task(flight.run(request)) for _ in range(5)]
        await asyncio.sleep(0)
        assert flight.in_flight

        release.set()
        results = await asyncio.gather(*waiters)

        assert calls == 1
        assert all(r is results[0] for r in results)
        assert not flight.in_flight
        stats = flight.get_stats().to_dict()
        assert stats["started"] == 1
        assert stats["joined"] == 4

    @pytest.mark.asyncio
    async def test_error_reaches_every_caller_and_clears_slot(self):
        flight = SingleFlight()
        release = asyncio.Event()

        async def failing():
            await release.wait()
            raise RuntimeError("upstream down")

        waiters = [asyncio.create_task(flight.run(failing)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*waiters, return_exceptions=True)

        assert all(isinstance(r, RuntimeError) for r in results)
        assert not flight.in_flight

    @pytest.mark.asyncio
    async def test_sequential_calls_start_new_attempts(self):
        flight = SingleFlight()
        calls = 0

        async def request():
            nonlocal calls
            calls += 1
            return calls

        assert await flight.run(request) == 1
        assert await flight.run(request) == 2

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_attempt(self):
        flight = SingleFlight()
        release = asyncio.Event()

        async def request():
            await release.wait()
            return "done"

        impatient = asyncio.create_task(flight.run(request))
        patient = asyncio.create_task(flight.run(request))
        await asyncio.sleep(0)

        impatient.cancel()
        await asyncio.sleep(0)
        release.set()

        assert await patient == "done"
        assert impatient.cancelled()

    @pytest.mark.asyncio
    async def test_cancel_clears_slot(self):
        flight = SingleFlight()

        async def request():
            await asyncio.Event().wait()

        waiter = asyncio.create_task(flight.run(request))
        await asyncio.sleep(0)

        assert await flight.cancel() is True
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert not flight.in_flight
        assert await flight.cancel() is False
