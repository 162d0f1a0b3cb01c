"""Price sources -- the opaque async quote functions the sampler drives."""

from candlebot.sources.base import InvertedPriceSource, PriceSource
from candlebot.sources.ccxt_source import CcxtPriceSource

__all__ = ["CcxtPriceSource", "InvertedPriceSource", "PriceSource"]
