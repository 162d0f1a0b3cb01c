"""Tests for InstrumentStream -- end-to-end sampling into a mocked sink."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import structlog

from candlebot.aggregation.stream import InstrumentStream
from candlebot.config import AggregationSettings

# One window spans decades, so no boundary is crossed while a test runs
HUGE_WINDOW_SECONDS = 1_000_000_000


async def _wait_until(predicate, timeout: float = 1.0) -> None:  # type: ignore[no-untyped-def]
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def settings() -> AggregationSettings:
    return AggregationSettings(
        window_seconds=HUGE_WINDOW_SECONDS,
        sample_interval=0.01,
        max_consecutive_failures=3,
        shutdown_timeout=0.5,
    )


@pytest.fixture
def source() -> AsyncMock:
    mock = AsyncMock()
    prices = iter(Decimal(p) for p in ["10", "12", "9", "11"] + ["10"] * 1000)
    mock.quote = AsyncMock(side_effect=lambda instrument: next(prices))
    return mock


@pytest.fixture
def sink() -> AsyncMock:
    mock = AsyncMock()
    mock.store = AsyncMock(return_value=None)
    return mock


class TestInstrumentStream:
    @pytest.mark.asyncio
    async def test_flush_on_stop_emits_partial_candle(
        self, source: AsyncMock, sink: AsyncMock, settings: AggregationSettings
    ) -> None:
        stream = InstrumentStream("WBTC/ETH", source, sink, settings)
        await stream.start()
        await _wait_until(lambda: stream.aggregator.stats()["samples_folded"] >= 4)

        flushed = await stream.stop(flush=True)

        assert flushed is not None
        assert flushed.open == Decimal("10")
        assert flushed.high == Decimal("12")
        assert flushed.low == Decimal("9")
        sink.store.assert_awaited_once_with("WBTC/ETH", flushed)

    @pytest.mark.asyncio
    async def test_stop_without_flush_discards_partial_candle(
        self, source: AsyncMock, sink: AsyncMock, settings: AggregationSettings
    ) -> None:
        stream = InstrumentStream("WBTC/ETH", source, sink, settings)
        await stream.start()
        await _wait_until(lambda: stream.aggregator.stats()["samples_folded"] >= 2)

        flushed = await stream.stop()

        assert flushed is None
        sink.store.assert_not_awaited()
        assert stream.aggregator.open_candle is None

    @pytest.mark.asyncio
    async def test_flush_on_shutdown_setting(
        self, source: AsyncMock, sink: AsyncMock, settings: AggregationSettings
    ) -> None:
        settings.flush_on_shutdown = True
        stream = InstrumentStream("WBTC/ETH", source, sink, settings)
        await stream.start()
        await _wait_until(lambda: stream.aggregator.stats()["samples_folded"] >= 1)

        assert await stream.stop() is not None
        assert await stream.stop() is None
        assert sink.store.await_count == 1

    @pytest.mark.asyncio
    async def test_failure_between_samples_does_not_touch_candle(
        self, sink: AsyncMock, settings: AggregationSettings
    ) -> None:
        outcomes = iter([Decimal("10"), ConnectionError("node down"), Decimal("12")])

        async def quote(instrument):  # type: ignore[no-untyped-def]
            outcome = next(outcomes, None)
            if outcome is None:
                await asyncio.Event().wait()
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        source = AsyncMock()
        source.quote = AsyncMock(side_effect=quote)
        stream = InstrumentStream("WBTC/ETH", source, sink, settings)
        await stream.start()
        await _wait_until(lambda: stream.aggregator.stats()["samples_folded"] >= 2)

        flushed = await stream.stop(flush=True)

        assert flushed is not None
        assert flushed.open == Decimal("10")
        assert flushed.high == Decimal("12")
        assert flushed.low == Decimal("10")
        assert flushed.close == Decimal("12")
        assert flushed.sample_count == 2
        assert stream.status()["sampler"]["failures"] == 1

    @pytest.mark.asyncio
    async def test_background_tasks_log_with_instrument_bound(
        self, sink: AsyncMock, settings: AggregationSettings
    ) -> None:
        structlog.contextvars.clear_contextvars()
        seen: list[dict] = []

        async def quote(instrument):  # type: ignore[no-untyped-def]
            seen.append(structlog.contextvars.get_contextvars())
            return Decimal("10")

        source = AsyncMock()
        source.quote = AsyncMock(side_effect=quote)
        stream = InstrumentStream("WBTC/ETH", source, sink, settings)
        await stream.start()

        assert "instrument" not in structlog.contextvars.get_contextvars()
        await _wait_until(lambda: len(seen) >= 1)
        await stream.stop()

        assert seen[0]["instrument"] == "WBTC/ETH"

    @pytest.mark.asyncio
    async def test_failures_surface_in_status(
        self, sink: AsyncMock, settings: AggregationSettings
    ) -> None:
        source = AsyncMock()
        source.quote = AsyncMock(side_effect=ConnectionError("node down"))
        stream = InstrumentStream("WBTC/ETH", source, sink, settings)
        await stream.start()
        await _wait_until(lambda: stream.status()["stalled"])
        await stream.stop(flush=True)

        status = stream.status()
        assert status["instrument"] == "WBTC/ETH"
        assert status["running"] is False
        assert status["stalled"] is True
        assert status["last_error"] is not None
        assert status["sampler"]["failures"] >= 3
        assert status["sampler"]["samples"] == 0
        assert status["aggregator"]["open_candle"] is None
        sink.store.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_sink_failure_does_not_stop_sampling(
        self, source: AsyncMock, settings: AggregationSettings
    ) -> None:
        settings.window_seconds = 1
        sink = AsyncMock()
        sink.store = AsyncMock(side_effect=RuntimeError("disk full"))
        stream = InstrumentStream("WBTC/ETH", source, sink, settings)
        await stream.start()
        await _wait_until(lambda: sink.store.await_count >= 1, timeout=3.0)
        folded = stream.aggregator.stats()["samples_folded"]
        await _wait_until(
            lambda: stream.aggregator.stats()["samples_folded"] > folded
        )
        await stream.stop()

        assert stream.status()["emitter"]["failed"] >= 1
        assert "disk full" in stream.status()["last_error"]
