"""Tests for CcxtPriceSource, fill_price and InvertedPriceSource.

All tests use mocked ccxt exchange objects to avoid real API calls.
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from candlebot.config import SourceSettings
from candlebot.exceptions import ConfigurationError, InstrumentNotFoundError, SampleError
from candlebot.models import InstrumentInfo
from candlebot.sources.base import InvertedPriceSource
from candlebot.sources.ccxt_source import CcxtPriceSource, fill_price

MOCK_MARKETS = {
    "WBTC/ETH": {"symbol": "WBTC/ETH", "base": "WBTC", "quote": "ETH"},
    "USDC/ETH": {"symbol": "USDC/ETH", "base": "USDC", "quote": "ETH"},
}

MOCK_BOOK = {
    "bids": [[17.5, 0.4], [17.4, 0.5], [17.0, 10.0]],
    "asks": [[17.6, 1.0]],
}


@pytest.fixture
def mock_exchange() -> MagicMock:
    exchange = MagicMock()
    exchange.load_markets = AsyncMock(return_value=MOCK_MARKETS)
    exchange.fetch_order_book = AsyncMock(return_value=MOCK_BOOK)
    exchange.fetch_ticker = AsyncMock(return_value={"symbol": "WBTC/ETH", "last": 17.55})
    exchange.close = AsyncMock()
    return exchange


def _source(mock_exchange: MagicMock, amount_in: Decimal | None = Decimal("1")) -> CcxtPriceSource:
    return CcxtPriceSource(SourceSettings(amount_in=amount_in), exchange=mock_exchange)


# ---------------------------------------------------------------------------
# fill_price
# ---------------------------------------------------------------------------


class TestFillPrice:
    def test_single_level(self) -> None:
        assert fill_price([[100, 5]], Decimal("2")) == Decimal("100")

    def test_walks_levels(self) -> None:
        # 0.4 @ 17.5 + 0.5 @ 17.4 + 0.1 @ 17.0 = 7.0 + 8.7 + 1.7 = 17.4
        assert fill_price(MOCK_BOOK["bids"], Decimal("1")) == Decimal("17.4")

    def test_thin_book_raises(self) -> None:
        with pytest.raises(SampleError):
            fill_price([[100, 0.5]], Decimal("1"), "WBTC/ETH")

    def test_empty_book_raises(self) -> None:
        with pytest.raises(SampleError):
            fill_price([], Decimal("1"))


# ---------------------------------------------------------------------------
# CcxtPriceSource
# ---------------------------------------------------------------------------


class TestCcxtPriceSource:
    def test_unknown_exchange_id(self) -> None:
        with pytest.raises(ConfigurationError):
            CcxtPriceSource(SourceSettings(exchange_id="not_an_exchange"))

    @pytest.mark.asyncio
    async def test_connect_loads_markets(self, mock_exchange: MagicMock) -> None:
        source = _source(mock_exchange)
        await source.connect()
        mock_exchange.load_markets.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_closes_exchange(self, mock_exchange: MagicMock) -> None:
        source = _source(mock_exchange)
        await source.close()
        mock_exchange.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_resolve_known_instrument(self, mock_exchange: MagicMock) -> None:
        source = _source(mock_exchange)
        info = await source.resolve("WBTC/ETH")
        assert info == InstrumentInfo(symbol="WBTC/ETH", base="WBTC", quote="ETH")
        assert info.label == "WBTC/ETH"

    @pytest.mark.asyncio
    async def test_resolve_unknown_instrument(self, mock_exchange: MagicMock) -> None:
        source = _source(mock_exchange)
        await source.connect()
        with pytest.raises(InstrumentNotFoundError):
            await source.resolve("DOGE/ETH")

    @pytest.mark.asyncio
    async def test_quote_fixed_amount_uses_order_book(
        self, mock_exchange: MagicMock
    ) -> None:
        source = _source(mock_exchange, amount_in=Decimal("0.2"))
        price = await source.quote("WBTC/ETH")

        assert price == Decimal("17.5")
        mock_exchange.fetch_order_book.assert_awaited_once()
        mock_exchange.fetch_ticker.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_quote_without_amount_uses_last_price(
        self, mock_exchange: MagicMock
    ) -> None:
        source = _source(mock_exchange, amount_in=None)
        price = await source.quote("WBTC/ETH")

        assert price == Decimal("17.55")
        mock_exchange.fetch_order_book.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_quote_missing_last_price(self, mock_exchange: MagicMock) -> None:
        mock_exchange.fetch_ticker = AsyncMock(return_value={"last": None})
        source = _source(mock_exchange, amount_in=None)
        with pytest.raises(SampleError):
            await source.quote("WBTC/ETH")


# ---------------------------------------------------------------------------
# InvertedPriceSource
# ---------------------------------------------------------------------------


class TestInvertedPriceSource:
    @pytest.mark.asyncio
    async def test_quote_is_reciprocal(self) -> None:
        inner = AsyncMock()
        inner.quote = AsyncMock(return_value=Decimal("0.0004"))
        source = InvertedPriceSource(inner, "USDC/ETH")

        price = await source.quote("ETH/USDC")

        assert price == Decimal("2500")
        inner.quote.assert_awaited_once_with("USDC/ETH")

    @pytest.mark.asyncio
    async def test_resolve_swaps_base_and_quote(self) -> None:
        inner = AsyncMock()
        inner.resolve = AsyncMock(
            return_value=InstrumentInfo(symbol="USDC/ETH", base="USDC", quote="ETH")
        )
        source = InvertedPriceSource(inner, "USDC/ETH")

        info = await source.resolve("ETH/USDC")

        assert info == InstrumentInfo(symbol="ETH/USDC", base="ETH", quote="USDC")

    @pytest.mark.asyncio
    async def test_zero_passes_through_for_validation(self) -> None:
        inner = AsyncMock()
        inner.quote = AsyncMock(return_value=Decimal("0"))
        source = InvertedPriceSource(inner, "USDC/ETH")

        assert await source.quote("ETH/USDC") == Decimal("0")
