"""FastAPI application factory for the read-only status API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from candlebot.api import routes


def create_api_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the status API application.

    Route handlers read ``app.state.service`` (CandleService) and
    ``app.state.store`` (CandleStore, optional); the caller wires both.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.
    """
    app = FastAPI(
        title="Candle Recorder",
        lifespan=lifespan,
    )
    app.state.service = None
    app.state.store = None

    app.include_router(routes.router, prefix="/api")

    return app
