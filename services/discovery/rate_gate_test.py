"""Tests for the rate gate and circuit breaker."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from services.discovery.errors import BlockedError, TransportError
from services.discovery.rate_gate import RateGate, SourceSkipped


def make_gate(**kwargs) -> tuple[RateGate, AsyncMock]:
    sleep = AsyncMock()
    defaults = dict(delay_ms=100, variance_ms=0, failure_threshold=5,
                    blocked_cooldown_ms=1000, blocked_variance_ms=0)
    defaults.update(kwargs)
    return RateGate(sleep=sleep, **defaults), sleep


class TestJitter:

    @pytest.mark.no_db
    def test_base_delay(self):
        gate, _ = make_gate()
        assert gate.jitter_ms("yellowpages") == 100

    @pytest.mark.no_db
    def test_high_defense_sources_wait_longer(self):
        gate, _ = make_gate()
        assert gate.jitter_ms("yelp") == 2100
        assert gate.jitter_ms("google_maps") == 1100

    @pytest.mark.no_db
    def test_variance_bounds(self):
        gate, _ = make_gate(variance_ms=50)
        for _ in range(20):
            assert 100 <= gate.jitter_ms("bbb") <= 150


class TestCall:

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_success_returns_and_pauses(self):
        gate, sleep = make_gate()
        result = await gate.call("bbb", AsyncMock(return_value=["a"]))
        assert result == ["a"]
        sleep.assert_awaited_once_with(0.1)
        assert gate.failures("bbb") == 0

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_transport_error_counted_and_raised(self):
        gate, _ = make_gate()
        fn = AsyncMock(side_effect=TransportError("bbb", "no response"))
        with pytest.raises(TransportError):
            await gate.call("bbb", fn)
        assert gate.failures("bbb") == 1

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self):
        gate, _ = make_gate()
        with pytest.raises(asyncio.TimeoutError):
            await gate.call("bbb", AsyncMock(side_effect=asyncio.TimeoutError()))
        assert gate.failures("bbb") == 1

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_blocked_triggers_cooldown(self):
        gate, sleep = make_gate()
        with pytest.raises(BlockedError):
            await gate.call("yelp", AsyncMock(side_effect=BlockedError("yelp", "captcha")))
        sleep.assert_awaited_once_with(1.0)
        assert gate.blocked["yelp"] == 1
        assert gate.failures("yelp") == 1

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_success_resets_counter(self):
        gate, _ = make_gate()
        for _ in range(4):
            with pytest.raises(TransportError):
                await gate.call("bbb", AsyncMock(side_effect=TransportError("bbb", "x")))
        await gate.call("bbb", AsyncMock(return_value=[]))
        assert gate.failures("bbb") == 0
        assert not gate.is_open("bbb")


class TestCircuitBreaker:

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_trips_after_threshold_and_skips_without_calling(self):
        gate, _ = make_gate()
        failing = AsyncMock(side_effect=BlockedError("yelp", "captcha"))
        for _ in range(5):
            with pytest.raises(BlockedError):
                await gate.call("yelp", failing)
        assert gate.is_open("yelp")

        fn = AsyncMock(return_value=["x"])
        with pytest.raises(SourceSkipped):
            await gate.call("yelp", fn)
        fn.assert_not_awaited()
        assert gate.skipped["yelp"] == 1

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_parse_errors_trip_breaker_and_pace(self):
        gate, sleep = make_gate()
        broken = AsyncMock(side_effect=ValueError("unexpected markup"))
        for _ in range(5):
            with pytest.raises(ValueError):
                await gate.call("bbb", broken)

        assert gate.is_open("bbb")
        assert sleep.await_count == 5
        sleep.assert_awaited_with(0.1)
        with pytest.raises(SourceSkipped):
            await gate.call("bbb", broken)
        assert broken.await_count == 5

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_other_sources_unaffected(self):
        gate, _ = make_gate(failure_threshold=2)
        for _ in range(2):
            with pytest.raises(TransportError):
                await gate.call("yelp", AsyncMock(side_effect=TransportError("yelp", "x")))
        assert gate.is_open("yelp")
        assert await gate.call("bbb", AsyncMock(return_value=[1])) == [1]

    @pytest.mark.no_db
    @pytest.mark.asyncio
    async def test_reset_closes_breaker(self):
        gate, _ = make_gate(failure_threshold=1)
        with pytest.raises(TransportError):
            await gate.call("bbb", AsyncMock(side_effect=TransportError("bbb", "x")))
        assert gate.is_open("bbb")
        gate.reset("bbb")
        assert not gate.is_open("bbb")
