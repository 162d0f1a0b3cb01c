"""Shared data models for the candle recorder.

CRITICAL: All prices use Decimal and all timestamps are Unix milliseconds.
Never use float for prices.
"""

from dataclasses import dataclass
from decimal import Decimal

InstrumentId = str


@dataclass(frozen=True)
class InstrumentInfo:
    """Resolved instrument metadata produced once at startup by a price source."""

    symbol: str
    base: str
    quote: str

    @property
    def label(self) -> str:
        """Human-readable pair label, e.g. "WBTC/ETH"."""
        return f"{self.base}/{self.quote}"


@dataclass(frozen=True)
class PriceSample:
    """One observed price for one instrument at one point in time."""

    instrument: InstrumentId
    observed_at_ms: int
    price: Decimal


@dataclass(frozen=True)
class Candle:
    """OHLC summary of one aligned window.

    The aggregator replaces the open candle on every fold rather than
    mutating it, so a candle handed to a sink can never change afterwards.
    """

    instrument: InstrumentId
    window_start_ms: int
    window_end_ms: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    sample_count: int

    @classmethod
    def first(cls, sample: PriceSample, window_start_ms: int, window_ms: int) -> "Candle":
        """Open a new candle from the first sample of a window."""
        return cls(
            instrument=sample.instrument,
            window_start_ms=window_start_ms,
            window_end_ms=window_start_ms + window_ms,
            open=sample.price,
            high=sample.price,
            low=sample.price,
            close=sample.price,
            sample_count=1,
        )

    def with_price(self, price: Decimal) -> "Candle":
        """Return this candle with one more sample folded in."""
        return Candle(
            instrument=self.instrument,
            window_start_ms=self.window_start_ms,
            window_end_ms=self.window_end_ms,
            open=self.open,
            high=max(self.high, price),
            low=min(self.low, price),
            close=price,
            sample_count=self.sample_count + 1,
        )

    def to_dict(self) -> dict:
        """JSON-friendly representation (Decimals as strings)."""
        return {
            "instrument": self.instrument,
            "window_start_ms": self.window_start_ms,
            "window_end_ms": self.window_end_ms,
            "open": str(self.open),
            "high": str(self.high),
            "low": str(self.low),
            "close": str(self.close),
            "sample_count": self.sample_count,
        }
