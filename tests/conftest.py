"""Shared test fixtures for the candle recorder."""

import pytest

from candlebot.config import AggregationSettings, AppSettings, InstrumentSettings, SourceSettings


@pytest.fixture
def aggregation_settings() -> AggregationSettings:
    """Fast cadence settings for stream tests."""
    return AggregationSettings(
        window_seconds=60,
        sample_interval=0.01,
        max_consecutive_failures=3,
        emit_queue_size=10,
        shutdown_timeout=0.5,
    )


@pytest.fixture
def mock_settings(aggregation_settings: AggregationSettings) -> AppSettings:
    """Return AppSettings with test defaults (two instruments, one inverted)."""
    return AppSettings(
        log_level="DEBUG",
        instruments=[
            InstrumentSettings(symbol="WBTC/ETH"),
            InstrumentSettings(symbol="USDC/ETH", invert=True),
        ],
        source=SourceSettings(exchange_id="binance", timeout_seconds=0.5),
        aggregation=aggregation_settings,
    )
