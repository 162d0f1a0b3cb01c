"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class InstrumentSettings(BaseModel):
    """A tracked pair.

    ``invert`` normalizes a pair the source quotes the other way round
    (e.g. a USDC/ETH pool) into "quote per one base" before sampling.
    """

    symbol: str
    invert: bool = False

    @field_validator("symbol")
    @classmethod
    def _require_pair(cls, value: str) -> str:
        if "/" not in value:
            raise ValueError(f"instrument symbol must look like BASE/QUOTE, got {value!r}")
        return value.strip().upper()

    @property
    def instrument_id(self) -> str:
        """Identifier candles are recorded under (BASE/QUOTE after inversion)."""
        if not self.invert:
            return self.symbol
        base, quote = self.symbol.split("/", 1)
        return f"{quote}/{base}"


class SourceSettings(BaseSettings):
    """Price source connection settings."""

    model_config = SettingsConfigDict(env_prefix="SOURCE_")

    exchange_id: str = "binance"
    amount_in: Decimal | None = Decimal("1")  # base units sold per quote; None = last trade price
    timeout_seconds: float = Field(default=10.0, gt=0)

    @field_validator("amount_in")
    @classmethod
    def _positive_amount(cls, value: Decimal | None) -> Decimal | None:
        if value is not None and value <= 0:
            raise ValueError("amount_in must be positive")
        return value


class AggregationSettings(BaseSettings):
    """Candle window and sampling cadence."""

    model_config = SettingsConfigDict(env_prefix="AGGREGATION_")

    window_seconds: int = Field(default=60, gt=0)
    sample_interval: float = Field(default=3.0, gt=0)  # seconds between polls
    max_consecutive_failures: int = Field(default=10, gt=0)
    emit_queue_size: int = Field(default=100, gt=0)
    shutdown_timeout: float = 5.0  # seconds to drain pending candles on stop
    flush_on_shutdown: bool = False


class StorageSettings(BaseSettings):
    """Candle persistence settings."""

    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    db_path: str = "data/candles.db"
    max_retries: int = Field(default=3, gt=0)
    retry_base_delay: float = 0.5
    log_candles: bool = True


class ApiSettings(BaseSettings):
    """Read-only status API."""

    model_config = SettingsConfigDict(env_prefix="API_")

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080


def _default_instruments() -> list[InstrumentSettings]:
    return [
        InstrumentSettings(symbol="WBTC/ETH"),
        InstrumentSettings(symbol="ETH/USDC"),
        InstrumentSettings(symbol="WBTC/USDC"),
    ]


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    instruments: list[InstrumentSettings] = Field(default_factory=_default_instruments)
    source: SourceSettings = SourceSettings()
    aggregation: AggregationSettings = AggregationSettings()
    storage: StorageSettings = StorageSettings()
    api: ApiSettings = ApiSettings()

    @field_validator("instruments")
    @classmethod
    def _require_unique_instruments(
        cls, value: list[InstrumentSettings]
    ) -> list[InstrumentSettings]:
        if not value:
            raise ValueError("at least one instrument must be configured")
        ids = [i.instrument_id for i in value]
        if len(set(ids)) != len(ids):
            raise ValueError(f"duplicate instruments configured: {ids}")
        return value
