"""Custom exceptions for the candle recorder.

Sample and sink errors are recovered where they occur and only reported;
configuration errors are fatal at startup.
"""


class CandleBotError(Exception):
    """Base exception for all candle recorder errors."""


class SampleError(CandleBotError):
    """Raised when a single price poll fails."""


class InvalidPriceError(SampleError):
    """Raised when a price source returns a non-positive or non-finite price."""


class SampleTimeoutError(SampleError):
    """Raised when a price poll does not complete within its timeout."""


class SamplerStalledError(CandleBotError):
    """Reported when a sampler hits its consecutive-failure threshold."""

    def __init__(self, instrument: str, failures: int, last_error: BaseException | None = None) -> None:
        super().__init__(
            f"{failures} consecutive sample failures for {instrument}"
        )
        self.instrument = instrument
        self.failures = failures
        self.last_error = last_error


class SinkError(CandleBotError):
    """Raised when a sealed candle could not be stored."""


class ConfigurationError(CandleBotError):
    """Raised at startup for invalid or unresolvable configuration."""


class InstrumentNotFoundError(ConfigurationError):
    """Raised when a configured instrument cannot be resolved by the price source."""
