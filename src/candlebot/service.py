"""Candle service -- runs one InstrumentStream per configured instrument.

All streams share a single asyncio event loop, one price source connection
and one sink. Instrument resolution happens before any stream starts, so a
misconfigured instrument fails the process before the first poll.
"""

import asyncio

from candlebot.aggregation.stream import InstrumentStream
from candlebot.config import AppSettings
from candlebot.exceptions import ConfigurationError
from candlebot.logging import get_logger
from candlebot.models import InstrumentId, InstrumentInfo
from candlebot.sources.base import InvertedPriceSource, PriceSource
from candlebot.storage.sink import CandleSink

logger = get_logger(__name__)


class CandleService:
    """Owns the per-instrument streams and their lifecycle.

    Args:
        settings: Application-wide settings.
        source: Connected price source shared by every stream.
        sink: Candle destination shared by every stream.
    """

    def __init__(
        self,
        settings: AppSettings,
        source: PriceSource,
        sink: CandleSink,
    ) -> None:
        self._settings = settings
        self._source = source
        self._sink = sink
        self._streams: dict[InstrumentId, InstrumentStream] = {}
        self._instruments: dict[InstrumentId, InstrumentInfo] = {}
        self._stop_event = asyncio.Event()
        self._started = False

    @property
    def instruments(self) -> dict[InstrumentId, InstrumentInfo]:
        """Resolved metadata for every tracked instrument."""
        return dict(self._instruments)

    async def resolve_instruments(self) -> dict[InstrumentId, InstrumentInfo]:
        """Resolve every configured instrument and build its stream.

        Raises:
            ConfigurationError: If any instrument cannot be resolved.
        """
        for instrument in self._settings.instruments:
            instrument_id = instrument.instrument_id
            source: PriceSource = self._source
            if instrument.invert:
                source = InvertedPriceSource(self._source, instrument.symbol)

            try:
                info = await source.resolve(instrument_id)
            except ConfigurationError:
                raise
            except Exception as exc:
                raise ConfigurationError(
                    f"Could not resolve {instrument.symbol}: {exc}"
                ) from exc

            self._instruments[instrument_id] = info
            self._streams[instrument_id] = InstrumentStream(
                instrument_id,
                source,
                self._sink,
                self._settings.aggregation,
                source_timeout=self._settings.source.timeout_seconds,
            )
            logger.info(
                "instrument_resolved",
                instrument=instrument_id,
                label=info.label,
                inverted=instrument.invert,
            )
        return self.instruments

    async def start(self) -> None:
        """Resolve instruments (if not done yet) and start every stream."""
        if self._started:
            logger.warning("candle_service_already_started")
            return
        if not self._streams:
            await self.resolve_instruments()

        self._stop_event.clear()
        for stream in self._streams.values():
            await stream.start()
        self._started = True
        logger.info("candle_service_started", instruments=list(self._streams))

    async def run(self) -> None:
        """Start all streams and block until stop() is called, then shut down."""
        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    async def stop(self) -> None:
        """Signal run() to return. Safe to call from a signal handler task."""
        self._stop_event.set()

    async def shutdown(self, flush: bool | None = None) -> None:
        """Stop every stream concurrently. Idempotent."""
        if not self._started:
            return
        self._started = False
        results = await asyncio.gather(
            *(stream.stop(flush=flush) for stream in self._streams.values()),
            return_exceptions=True,
        )
        for instrument, result in zip(self._streams, results):
            if isinstance(result, Exception):
                logger.error(
                    "stream_stop_failed",
                    instrument=instrument,
                    error=str(result),
                )
        logger.info("candle_service_stopped")

    def get_stream(self, instrument: InstrumentId) -> InstrumentStream | None:
        return self._streams.get(instrument)

    def get_status(self) -> dict:
        """Status of every stream, keyed by instrument."""
        return {
            "running": self._started,
            "window_seconds": self._settings.aggregation.window_seconds,
            "sample_interval": self._settings.aggregation.sample_interval,
            "streams": {
                instrument: stream.status()
                for instrument, stream in self._streams.items()
            },
        }
