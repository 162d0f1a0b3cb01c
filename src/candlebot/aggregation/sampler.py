"""Fixed-cadence price sampler.

Polls a PriceSource on a wall-clock schedule. Every tick starts its own poll
task, so a slow or failing quote never delays the next tick and a stalled
source cannot pile up a chain of late polls.

Each sample is stamped with the time its poll was *issued*. A poll that
completes after the window it was issued in has closed therefore arrives as
a late sample, which the aggregator discards.

Shutdown policy: stop() cancels the ticker and all in-flight polls and waits
for them. Once stop() returns, no further on_sample / on_error call is made.
"""

import asyncio
import time
from collections.abc import Callable
from decimal import Decimal, InvalidOperation

from candlebot.exceptions import (
    ConfigurationError,
    InvalidPriceError,
    SampleError,
    SampleTimeoutError,
    SamplerStalledError,
)
from candlebot.logging import get_logger
from candlebot.models import InstrumentId, PriceSample
from candlebot.sources.base import PriceSource

logger = get_logger(__name__)


def validate_price(raw: object) -> Decimal:
    """Coerce a raw quote to a positive, finite Decimal.

    Raises:
        InvalidPriceError: For unparsable, non-finite, zero or negative values.
    """
    try:
        price = raw if isinstance(raw, Decimal) else Decimal(str(raw))
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise InvalidPriceError(f"Unparsable price: {raw!r}") from exc

    if not price.is_finite() or price <= 0:
        raise InvalidPriceError(f"Price must be positive and finite, got {price}")
    return price


class Sampler:
    """Drives one instrument's price source at a fixed interval.

    Args:
        instrument: Instrument to quote.
        timeout: Seconds before a single poll counts as failed.
        max_consecutive_failures: Failure streak length that escalates a
            SamplerStalledError to on_error (repeated at every multiple).
        clock: Wall-clock source in seconds, used for sample timestamps.
    """

    def __init__(
        self,
        instrument: InstrumentId,
        timeout: float = 10.0,
        max_consecutive_failures: int = 10,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_consecutive_failures <= 0:
            raise ConfigurationError(
                f"max_consecutive_failures must be positive, got {max_consecutive_failures}"
            )
        self._instrument = instrument
        self._timeout = timeout
        self._max_consecutive_failures = max_consecutive_failures
        self._clock = clock

        self._source: PriceSource | None = None
        self._interval: float = 0.0
        self._on_sample: Callable[[PriceSample], object] | None = None
        self._on_error: Callable[[BaseException], object] | None = None

        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]
        self._inflight: set[asyncio.Task] = set()  # type: ignore[type-arg]

        self._polls = 0
        self._samples = 0
        self._failures = 0
        self._skipped_ticks = 0
        self._consecutive_failures = 0
        self._last_sample: PriceSample | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def start(
        self,
        source: PriceSource,
        interval: float,
        on_sample: Callable[[PriceSample], object],
        on_error: Callable[[BaseException], object],
    ) -> None:
        """Begin polling ``source`` every ``interval`` seconds in the background."""
        if self._running:
            logger.warning("sampler_already_running", instrument=self._instrument)
            return
        if interval <= 0:
            raise ValueError(f"Sample interval must be positive, got {interval}")

        self._source = source
        self._interval = interval
        self._on_sample = on_sample
        self._on_error = on_error
        self._running = True
        self._task = asyncio.create_task(self._tick_loop())
        logger.info(
            "sampler_started",
            instrument=self._instrument,
            interval=interval,
            timeout=self._timeout,
        )

    async def stop(self) -> None:
        """Cancel future and in-flight polls. Safe to call more than once."""
        if not self._running and self._task is None:
            return
        self._running = False

        tasks = [t for t in (self._task, *self._inflight) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._task = None
        self._inflight.clear()
        logger.info(
            "sampler_stopped",
            instrument=self._instrument,
            polls=self._polls,
            samples=self._samples,
            failures=self._failures,
        )

    async def _tick_loop(self) -> None:
        """Fire one poll per tick, scheduled from a fixed monotonic origin."""
        loop = asyncio.get_running_loop()
        origin = loop.time()
        tick = 0

        while self._running:
            self._spawn_poll()

            tick += 1
            next_at = origin + tick * self._interval
            now = loop.time()
            if now >= next_at + self._interval:
                # Event loop was blocked; skip the missed ticks instead of bursting
                missed = int((now - next_at) // self._interval)
                tick += missed
                self._skipped_ticks += missed
                next_at = origin + tick * self._interval
                logger.warning(
                    "sampler_ticks_skipped",
                    instrument=self._instrument,
                    missed=missed,
                )
            await asyncio.sleep(max(0.0, next_at - now))

    def _spawn_poll(self) -> None:
        observed_at_ms = int(self._clock() * 1000)
        task = asyncio.create_task(self._poll(observed_at_ms))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        self._polls += 1

    async def _poll(self, observed_at_ms: int) -> None:
        """Execute a single poll and report the outcome."""
        try:
            price = await self._fetch()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._record_failure(_as_sample_error(exc))
            return

        if not self._running:
            return

        sample = PriceSample(
            instrument=self._instrument,
            observed_at_ms=observed_at_ms,
            price=price,
        )
        self._consecutive_failures = 0
        self._samples += 1
        self._last_sample = sample
        logger.debug(
            "price_sampled",
            instrument=self._instrument,
            price=str(price),
            observed_at_ms=observed_at_ms,
        )
        self._deliver(self._on_sample, sample)

    async def _fetch(self) -> Decimal:
        assert self._source is not None
        try:
            raw = await asyncio.wait_for(
                self._source.quote(self._instrument), timeout=self._timeout
            )
        except asyncio.TimeoutError as exc:
            raise SampleTimeoutError(
                f"Quote for {self._instrument} exceeded {self._timeout}s"
            ) from exc
        return validate_price(raw)

    def _record_failure(self, error: SampleError) -> None:
        if not self._running:
            return

        self._failures += 1
        self._consecutive_failures += 1
        logger.warning(
            "sample_failed",
            instrument=self._instrument,
            error=str(error),
            error_type=type(error).__name__,
            consecutive=self._consecutive_failures,
        )
        self._deliver(self._on_error, error)

        if self._consecutive_failures % self._max_consecutive_failures == 0:
            logger.error(
                "sampler_failure_streak",
                instrument=self._instrument,
                consecutive=self._consecutive_failures,
            )
            self._deliver(
                self._on_error,
                SamplerStalledError(
                    self._instrument, self._consecutive_failures, last_error=error
                ),
            )

    def _deliver(self, callback: Callable | None, arg: object) -> None:
        """Invoke a callback; a raising callback never breaks polling."""
        if callback is None:
            return
        try:
            callback(arg)
        except Exception:
            logger.error(
                "sampler_callback_error",
                instrument=self._instrument,
                exc_info=True,
            )

    def stats(self) -> dict:
        """Counters for status reporting."""
        return {
            "running": self._running,
            "polls": self._polls,
            "samples": self._samples,
            "failures": self._failures,
            "consecutive_failures": self._consecutive_failures,
            "skipped_ticks": self._skipped_ticks,
            "inflight": len(self._inflight),
            "last_price": str(self._last_sample.price) if self._last_sample else None,
            "last_sample_ms": self._last_sample.observed_at_ms if self._last_sample else None,
        }


def _as_sample_error(exc: Exception) -> SampleError:
    if isinstance(exc, SampleError):
        return exc
    error = SampleError(f"{type(exc).__name__}: {exc}")
    error.__cause__ = exc
    return error
