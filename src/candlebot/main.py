"""Entry point for the candle recorder.

Wires all components together, optionally embeds the FastAPI status API,
and runs one candle stream per configured instrument. When the API is
enabled, the streams and the API share a single asyncio event loop via
uvicorn's programmatic API and FastAPI's lifespan context manager.

Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in _build_components):
1. CandleDatabase + CandleStore (SQLite persistence)
2. Sinks (SQLite, plus log output if enabled)
3. CcxtPriceSource (shared quote connection)
4. CandleService (one InstrumentStream per instrument)
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError

from candlebot.config import AppSettings
from candlebot.exceptions import ConfigurationError
from candlebot.logging import get_logger, setup_logging
from candlebot.service import CandleService
from candlebot.sources.ccxt_source import CcxtPriceSource
from candlebot.storage.database import CandleDatabase
from candlebot.storage.sink import (
    CandleSink,
    FanoutCandleSink,
    LoggingCandleSink,
    SqliteCandleSink,
)
from candlebot.storage.store import CandleStore


def _build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all components from settings.

    Does NOT open the database or connect the source; run() does that so
    failures surface before any stream starts.
    """
    database = CandleDatabase(settings.storage.db_path)
    store = CandleStore(database)

    sink: CandleSink = SqliteCandleSink(
        store,
        max_retries=settings.storage.max_retries,
        retry_base_delay=settings.storage.retry_base_delay,
    )
    if settings.storage.log_candles:
        sink = FanoutCandleSink([sink, LoggingCandleSink()])

    source = CcxtPriceSource(settings.source)
    service = CandleService(settings, source, sink)

    return {
        "database": database,
        "store": store,
        "sink": sink,
        "source": source,
        "service": service,
    }


def _setup_signal_handlers(service: CandleService) -> None:
    """Register SIGINT/SIGTERM to stop the service gracefully.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("candlebot.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(service.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the streams with the API server and stop them with it."""
    logger = get_logger("candlebot.main")
    service: CandleService = app.state.service

    await service.start()
    logger.info("lifespan_started", instruments=list(service.instruments))

    yield

    await service.shutdown()
    logger.info("lifespan_stopped")


async def run() -> None:
    """Run the candle recorder until interrupted.

    Raises:
        ConfigurationError: If an instrument cannot be resolved. Raised
            before any polling begins.
    """
    settings = AppSettings()

    setup_logging(settings.log_level)
    logger = get_logger("candlebot.main")

    components = _build_components(settings)
    database: CandleDatabase = components["database"]
    source: CcxtPriceSource = components["source"]
    service: CandleService = components["service"]

    await database.connect()
    try:
        await source.connect()
        await service.resolve_instruments()

        if settings.api.enabled:
            from candlebot.api.app import create_api_app

            app = create_api_app(lifespan=lifespan)
            app.state.service = service
            app.state.store = components["store"]

            logger.info(
                "starting_with_api",
                host=settings.api.host,
                port=settings.api.port,
            )
            config = uvicorn.Config(
                app,
                host=settings.api.host,
                port=settings.api.port,
                log_level="warning",
            )
            await uvicorn.Server(config).serve()
        else:
            _setup_signal_handlers(service)
            logger.info(
                "starting_without_api",
                instruments=[i.instrument_id for i in settings.instruments],
                window_seconds=settings.aggregation.window_seconds,
                sample_interval=settings.aggregation.sample_interval,
            )
            await service.run()
    finally:
        await source.close()
        await database.close()
        logger.info("candle_recorder_stopped")


def main() -> None:
    """Synchronous entry point. Exits with status 2 on configuration errors."""
    try:
        asyncio.run(run())
    except (ConfigurationError, ValidationError) as exc:
        get_logger("candlebot.main").critical("configuration_error", error=str(exc))
        raise SystemExit(2) from exc


if __name__ == "__main__":
    main()
