"""Sealed-candle handoff to a CandleSink, decoupled from the fold.

emit() only enqueues. A single worker task per stream drains the queue and
stores candles one at a time, which keeps stores for one instrument in
order while different instruments' emitters write concurrently.

Storage never back-pressures sampling: a failed store is reported and the
candle dropped, and when the queue is full new candles are dropped.
"""

import asyncio
from collections.abc import Callable

from candlebot.exceptions import SinkError
from candlebot.logging import get_logger
from candlebot.models import Candle, InstrumentId
from candlebot.storage.sink import CandleSink

logger = get_logger(__name__)


class CandleEmitter:
    """Per-instrument ordered, non-blocking sink handoff.

    Args:
        sink: Destination for sealed candles (may be shared across streams).
        instrument: Instrument this emitter serves (for logging).
        on_error: Called with a SinkError for every candle that failed to store.
        max_pending: Queue bound; candles beyond it are dropped.
    """

    def __init__(
        self,
        sink: CandleSink,
        instrument: InstrumentId,
        on_error: Callable[[BaseException], object] | None = None,
        max_pending: int = 100,
    ) -> None:
        self._sink = sink
        self._instrument = instrument
        self._on_error = on_error
        self._queue: asyncio.Queue[Candle] = asyncio.Queue(maxsize=max_pending)
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._accepting = True

        self._stored = 0
        self._failed = 0
        self._dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        """Start the background worker that stores queued candles."""
        if self._task is not None:
            logger.warning("emitter_already_running", instrument=self._instrument)
            return
        self._accepting = True
        self._task = asyncio.create_task(self._drain_loop())

    def emit(self, candle: Candle) -> bool:
        """Queue a sealed candle for storage. Never blocks.

        Returns:
            True if the candle was queued, False if it was dropped.
        """
        if not self._accepting:
            self._dropped += 1
            logger.warning(
                "candle_dropped_emitter_stopped",
                instrument=candle.instrument,
                window_start_ms=candle.window_start_ms,
            )
            return False
        try:
            self._queue.put_nowait(candle)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.error(
                "candle_dropped_queue_full",
                instrument=candle.instrument,
                window_start_ms=candle.window_start_ms,
                pending=self._queue.qsize(),
            )
            return False
        return True

    async def stop(self, timeout: float = 5.0) -> None:
        """Drain pending candles for up to ``timeout`` seconds, then stop the worker.

        Never waits longer than ``timeout`` on a stuck sink. Safe to call twice,
        including concurrently: only the first call owns the worker.
        """
        self._accepting = False
        task, self._task = self._task, None
        if task is None:
            return

        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "emitter_drain_timeout",
                instrument=self._instrument,
                pending=self._queue.qsize(),
                timeout=timeout,
            )

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

        abandoned = self._queue.qsize()
        if abandoned:
            self._dropped += abandoned
            logger.error(
                "candles_abandoned_on_shutdown",
                instrument=self._instrument,
                count=abandoned,
            )
        logger.info(
            "emitter_stopped",
            instrument=self._instrument,
            stored=self._stored,
            failed=self._failed,
            dropped=self._dropped,
        )

    async def _drain_loop(self) -> None:
        while True:
            candle = await self._queue.get()
            try:
                await self._store(candle)
            finally:
                self._queue.task_done()

    async def _store(self, candle: Candle) -> None:
        try:
            await self._sink.store(candle.instrument, candle)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._failed += 1
            error = exc if isinstance(exc, SinkError) else SinkError(f"{type(exc).__name__}: {exc}")
            if error is not exc:
                error.__cause__ = exc
            logger.error(
                "candle_store_failed",
                instrument=candle.instrument,
                window_start_ms=candle.window_start_ms,
                error=str(error),
            )
            if self._on_error is not None:
                try:
                    self._on_error(error)
                except Exception:
                    logger.error("emitter_callback_error", exc_info=True)
            return

        self._stored += 1
        logger.debug(
            "candle_stored",
            instrument=candle.instrument,
            window_start_ms=candle.window_start_ms,
        )

    def stats(self) -> dict:
        return {
            "stored": self._stored,
            "failed": self._failed,
            "dropped": self._dropped,
            "pending": self._queue.qsize(),
        }
