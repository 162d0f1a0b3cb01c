"""Candle aggregation engine -- sampling, window folding, and sink handoff."""

from candlebot.aggregation.aggregator import CandleAggregator, align_window_start
from candlebot.aggregation.emitter import CandleEmitter
from candlebot.aggregation.sampler import Sampler, validate_price
from candlebot.aggregation.stream import InstrumentStream

__all__ = [
    "CandleAggregator",
    "CandleEmitter",
    "InstrumentStream",
    "Sampler",
    "align_window_start",
    "validate_price",
]
