"""Candle persistence layer: SQLite database, typed store, and sinks."""

from candlebot.storage.database import CandleDatabase
from candlebot.storage.sink import (
    CandleSink,
    FanoutCandleSink,
    LoggingCandleSink,
    SqliteCandleSink,
)
from candlebot.storage.store import CandleStore

__all__ = [
    "CandleDatabase",
    "CandleSink",
    "CandleStore",
    "FanoutCandleSink",
    "LoggingCandleSink",
    "SqliteCandleSink",
]
