"""JSON endpoints exposing stream status and recorded candles."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from candlebot.models import InstrumentId

router = APIRouter()


def _instrument_from_path(value: str) -> InstrumentId:
    """URL-safe "WBTC-ETH" -> instrument id "WBTC/ETH"."""
    return value.replace("-", "/").upper()


def _service(request: Request):  # type: ignore[no-untyped-def]
    service = request.app.state.service
    if service is None:
        raise HTTPException(status_code=503, detail="Service not started")
    return service


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    """Per-stream sampler, aggregator and emitter counters."""
    return JSONResponse(content=_service(request).get_status())


@router.get("/streams/{instrument}")
async def get_stream(request: Request, instrument: str) -> JSONResponse:
    """Status of one stream, including its open candle."""
    stream = _service(request).get_stream(_instrument_from_path(instrument))
    if stream is None:
        raise HTTPException(status_code=404, detail=f"Unknown instrument {instrument}")
    return JSONResponse(content=stream.status())


@router.get("/candles/{instrument}")
async def get_candles(
    request: Request,
    instrument: str,
    limit: int = Query(default=60, ge=1, le=1000),
) -> JSONResponse:
    """Most recently stored candles for an instrument, oldest first."""
    instrument_id = _instrument_from_path(instrument)
    if _service(request).get_stream(instrument_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown instrument {instrument}")

    store = request.app.state.store
    if store is None:
        raise HTTPException(status_code=503, detail="Candle storage disabled")

    candles = await store.get_recent_candles(instrument_id, limit=limit)
    return JSONResponse(content=[c.to_dict() for c in candles])
