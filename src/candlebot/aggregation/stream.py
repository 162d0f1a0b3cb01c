"""One instrument's pipeline: Sampler -> CandleAggregator -> CandleEmitter -> sink."""

import time

from candlebot.aggregation.aggregator import CandleAggregator
from candlebot.aggregation.emitter import CandleEmitter
from candlebot.aggregation.sampler import Sampler
from candlebot.config import AggregationSettings
from candlebot.logging import bind_instrument, get_logger
from candlebot.models import Candle, InstrumentId
from candlebot.sources.base import PriceSource
from candlebot.storage.sink import CandleSink

logger = get_logger(__name__)


class InstrumentStream:
    """Composes the sampling, aggregation and emission of one instrument.

    Streams for different instruments share nothing but the price source
    connection and the sink.

    Args:
        instrument: Identifier candles are recorded under.
        source: Price source already normalized to "quote per one base".
        sink: Candle destination (shared).
        settings: Window, cadence and shutdown parameters.
        source_timeout: Seconds before a single quote counts as failed.
    """

    def __init__(
        self,
        instrument: InstrumentId,
        source: PriceSource,
        sink: CandleSink,
        settings: AggregationSettings,
        source_timeout: float = 10.0,
    ) -> None:
        self._instrument = instrument
        self._source = source
        self._settings = settings
        self._last_error: str | None = None
        self._last_error_at: float | None = None

        self._emitter = CandleEmitter(
            sink,
            instrument,
            on_error=self._on_error,
            max_pending=settings.emit_queue_size,
        )
        self._aggregator = CandleAggregator(
            instrument,
            window_ms=settings.window_seconds * 1000,
            emit=self._emitter.emit,
        )
        self._sampler = Sampler(
            instrument,
            timeout=source_timeout,
            max_consecutive_failures=settings.max_consecutive_failures,
        )

    @property
    def instrument(self) -> InstrumentId:
        return self._instrument

    @property
    def aggregator(self) -> CandleAggregator:
        return self._aggregator

    @property
    def running(self) -> bool:
        return self._sampler.running

    async def start(self) -> None:
        """Start the emitter worker, then begin sampling immediately.

        Both background tasks are created with ``instrument`` bound in their
        logging context.
        """
        with bind_instrument(self._instrument):
            await self._emitter.start()
            await self._sampler.start(
                self._source,
                self._settings.sample_interval,
                on_sample=self._aggregator.fold,
                on_error=self._on_error,
            )
        logger.info(
            "stream_started",
            instrument=self._instrument,
            window_seconds=self._settings.window_seconds,
        )

    async def stop(self, flush: bool | None = None) -> Candle | None:
        """Stop sampling, optionally flush the partial window, then drain the emitter.

        Args:
            flush: Emit the open partial candle before stopping. Defaults to
                the configured ``flush_on_shutdown``.

        Returns:
            The flushed candle, if any.
        """
        if flush is None:
            flush = self._settings.flush_on_shutdown

        await self._sampler.stop()
        flushed = None
        if flush:
            flushed = self._aggregator.flush()
        else:
            self._aggregator.close()
        await self._emitter.stop(timeout=self._settings.shutdown_timeout)
        logger.info("stream_stopped", instrument=self._instrument, flushed=flushed is not None)
        return flushed

    def _on_error(self, error: BaseException) -> None:
        self._last_error = str(error)
        self._last_error_at = time.time()

    def status(self) -> dict:
        """Snapshot of this stream's counters and candles."""
        return {
            "instrument": self._instrument,
            "running": self.running,
            "stalled": (
                self._sampler.consecutive_failures
                >= self._settings.max_consecutive_failures
            ),
            "last_error": self._last_error,
            "last_error_at": self._last_error_at,
            "sampler": self._sampler.stats(),
            "aggregator": self._aggregator.stats(),
            "emitter": self._emitter.stats(),
        }
