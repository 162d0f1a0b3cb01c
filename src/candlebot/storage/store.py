"""Typed SQLite read/write abstraction for candles.

CRITICAL: Prices are stored as TEXT in SQLite and restored as Decimal on read.
"""

import time
from decimal import Decimal

from candlebot.logging import get_logger
from candlebot.models import Candle, InstrumentId
from candlebot.storage.database import CandleDatabase

logger = get_logger(__name__)


class CandleStore:
    """Async SQLite store for sealed candles.

    All SQL access goes through self._database.db (the aiosqlite Connection).
    """

    def __init__(self, database: CandleDatabase) -> None:
        self._database = database

    async def insert_candle(self, instrument: InstrumentId, candle: Candle) -> bool:
        """Insert one candle, ignoring a duplicate (instrument, window_start_ms).

        Returns True if a row was written.
        """
        cursor = await self._database.db.execute(
            "INSERT OR IGNORE INTO candles "
            "(instrument, window_start_ms, window_end_ms, open, high, low, close, "
            "sample_count, stored_at_ms) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                instrument,
                candle.window_start_ms,
                candle.window_end_ms,
                str(candle.open),
                str(candle.high),
                str(candle.low),
                str(candle.close),
                candle.sample_count,
                int(time.time() * 1000),
            ),
        )
        await self._database.db.commit()

        inserted = cursor.rowcount > 0
        if not inserted:
            logger.warning(
                "duplicate_candle_ignored",
                instrument=instrument,
                window_start_ms=candle.window_start_ms,
            )
        return inserted

    async def get_recent_candles(
        self, instrument: InstrumentId, limit: int = 60
    ) -> list[Candle]:
        """Return the most recent candles for an instrument, oldest first."""
        cursor = await self._database.db.execute(
            "SELECT window_start_ms, window_end_ms, open, high, low, close, sample_count "
            "FROM candles WHERE instrument = ? "
            "ORDER BY window_start_ms DESC LIMIT ?",
            (instrument, limit),
        )
        rows = await cursor.fetchall()
        return [
            Candle(
                instrument=instrument,
                window_start_ms=row[0],
                window_end_ms=row[1],
                open=Decimal(row[2]),
                high=Decimal(row[3]),
                low=Decimal(row[4]),
                close=Decimal(row[5]),
                sample_count=row[6],
            )
            for row in reversed(rows)
        ]

    async def count_candles(self, instrument: InstrumentId) -> int:
        cursor = await self._database.db.execute(
            "SELECT COUNT(*) FROM candles WHERE instrument = ?",
            (instrument,),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0
