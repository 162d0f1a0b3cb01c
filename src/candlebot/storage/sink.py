"""Candle sinks -- durable (or visible) destinations for sealed candles.

The emitter calls store() exactly once per sealed candle and does not
retry. Any retry policy lives in the sink adapter itself.
"""

import asyncio
from abc import ABC, abstractmethod

from candlebot.exceptions import SinkError
from candlebot.logging import get_logger
from candlebot.models import Candle, InstrumentId
from candlebot.storage.store import CandleStore

logger = get_logger(__name__)


class CandleSink(ABC):
    """Stores a finished candle keyed by instrument.

    Implementations must accept concurrent calls for different instruments.
    """

    @abstractmethod
    async def store(self, instrument: InstrumentId, candle: Candle) -> None:
        """Persist a candle. Raises SinkError (or any exception) on failure."""
        ...


class SqliteCandleSink(CandleSink):
    """Writes candles through a CandleStore with bounded exponential-backoff retry.

    Delays between attempts: base, 2*base, 4*base, ...
    Raises SinkError once ``max_retries`` attempts have failed.
    """

    def __init__(
        self,
        store: CandleStore,
        max_retries: int = 3,
        retry_base_delay: float = 0.5,
    ) -> None:
        self._store = store
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay

    async def store(self, instrument: InstrumentId, candle: Candle) -> None:
        for attempt in range(self._max_retries):
            try:
                await self._store.insert_candle(instrument, candle)
                return
            except Exception as e:
                if attempt == self._max_retries - 1:
                    logger.error(
                        "candle_insert_failed_permanently",
                        instrument=instrument,
                        window_start_ms=candle.window_start_ms,
                        error=str(e),
                        attempts=self._max_retries,
                    )
                    raise SinkError(
                        f"Could not store {instrument} candle at {candle.window_start_ms}: {e}"
                    ) from e

                delay = self._retry_base_delay * (2**attempt)
                logger.warning(
                    "candle_insert_retry",
                    instrument=instrument,
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                    delay=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)


class LoggingCandleSink(CandleSink):
    """Writes each candle to the log, priced in the pair's quote currency."""

    async def store(self, instrument: InstrumentId, candle: Candle) -> None:
        logger.info(
            "price_candlestick",
            instrument=instrument,
            window_start_ms=candle.window_start_ms,
            open=str(candle.open),
            high=str(candle.high),
            low=str(candle.low),
            close=str(candle.close),
            quote=instrument.split("/")[-1],
            samples=candle.sample_count,
        )


class FanoutCandleSink(CandleSink):
    """Stores into every wrapped sink concurrently; fails if any of them fails."""

    def __init__(self, sinks: list[CandleSink]) -> None:
        self._sinks = sinks

    async def store(self, instrument: InstrumentId, candle: Candle) -> None:
        results = await asyncio.gather(
            *(sink.store(instrument, candle) for sink in self._sinks),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise SinkError(
                f"{len(errors)}/{len(self._sinks)} sinks failed for {instrument}: {errors[0]}"
            ) from errors[0]
