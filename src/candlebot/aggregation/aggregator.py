"""Candle aggregator -- folds price samples into wall-clock-aligned OHLC windows.

One aggregator owns the open candle of exactly one instrument. fold() is
synchronous and never awaits, so on a single event loop no two samples for
the same instrument are ever folded concurrently.

Window policy:
- A sample for a later window seals the open candle and starts a new one.
  Skipped windows (no samples) produce no candle at all.
- A sample for an older window than the open one is dropped. Sealed or
  superseded windows are never reopened.
"""

from collections.abc import Callable

from candlebot.exceptions import ConfigurationError
from candlebot.logging import get_logger
from candlebot.models import Candle, InstrumentId, PriceSample

logger = get_logger(__name__)


def align_window_start(timestamp_ms: int, window_ms: int) -> int:
    """Start of the window containing ``timestamp_ms`` (floor to a multiple of ``window_ms``)."""
    return (timestamp_ms // window_ms) * window_ms


class CandleAggregator:
    """Maintains the open candle for one instrument and emits sealed ones.

    Args:
        instrument: The instrument whose samples this aggregator accepts.
        window_ms: Candle duration in milliseconds.
        emit: Called exactly once with every sealed candle. Must not block;
            an exception from it is logged and does not undo the fold.
    """

    def __init__(
        self,
        instrument: InstrumentId,
        window_ms: int,
        emit: Callable[[Candle], object],
    ) -> None:
        if window_ms <= 0:
            raise ConfigurationError(f"Window duration must be positive, got {window_ms}ms")
        self._instrument = instrument
        self._window_ms = window_ms
        self._emit = emit
        self._open: Candle | None = None

        self._samples_folded = 0
        self._late_samples = 0
        self._candles_sealed = 0
        self._last_sealed: Candle | None = None

    @property
    def instrument(self) -> InstrumentId:
        return self._instrument

    @property
    def window_ms(self) -> int:
        return self._window_ms

    @property
    def open_candle(self) -> Candle | None:
        """The candle currently accumulating, or None."""
        return self._open

    @property
    def last_sealed(self) -> Candle | None:
        return self._last_sealed

    def fold(self, sample: PriceSample) -> Candle | None:
        """Fold one sample into the open candle.

        Returns:
            The candle sealed by this sample crossing a window boundary,
            otherwise None.
        """
        if sample.instrument != self._instrument:
            raise ValueError(
                f"Aggregator for {self._instrument} got sample for {sample.instrument}"
            )

        window_start = align_window_start(sample.observed_at_ms, self._window_ms)
        current = self._open

        if current is None or current.window_start_ms < window_start:
            self._open = Candle.first(sample, window_start, self._window_ms)
            self._samples_folded += 1
            if current is not None:
                self._seal(current)
            return current

        if current.window_start_ms == window_start:
            self._open = current.with_price(sample.price)
            self._samples_folded += 1
            return None

        self._late_samples += 1
        logger.info(
            "late_sample_dropped",
            instrument=self._instrument,
            sample_window_ms=window_start,
            open_window_ms=current.window_start_ms,
            observed_at_ms=sample.observed_at_ms,
        )
        return None

    def flush(self) -> Candle | None:
        """Seal and emit the open candle now, regardless of window boundary.

        Returns the sealed candle, or None if nothing was open.
        """
        current = self._open
        if current is None:
            return None
        self._open = None
        self._seal(current)
        return current

    def close(self) -> None:
        """Tear down state, discarding any partial window without emitting it."""
        if self._open is not None:
            logger.info(
                "partial_candle_discarded",
                instrument=self._instrument,
                window_start_ms=self._open.window_start_ms,
                sample_count=self._open.sample_count,
            )
        self._open = None

    def _seal(self, candle: Candle) -> None:
        self._candles_sealed += 1
        self._last_sealed = candle
        logger.info(
            "candle_sealed",
            instrument=candle.instrument,
            window_start_ms=candle.window_start_ms,
            open=str(candle.open),
            high=str(candle.high),
            low=str(candle.low),
            close=str(candle.close),
            sample_count=candle.sample_count,
        )
        try:
            self._emit(candle)
        except Exception:
            logger.error(
                "candle_emit_failed",
                instrument=candle.instrument,
                window_start_ms=candle.window_start_ms,
                exc_info=True,
            )

    def stats(self) -> dict:
        """Counters and candles for status reporting."""
        return {
            "window_ms": self._window_ms,
            "samples_folded": self._samples_folded,
            "late_samples_dropped": self._late_samples,
            "candles_sealed": self._candles_sealed,
            "open_candle": self._open.to_dict() if self._open else None,
            "last_sealed": self._last_sealed.to_dict() if self._last_sealed else None,
        }
