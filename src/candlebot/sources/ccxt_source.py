"""Price source backed by a ccxt async exchange.

With a fixed ``amount_in`` the quote simulates selling exactly that many
base units into the order book and returns the average quote received per
base unit, the same "quote an exact input" semantic a DEX quoter provides.
Without one, the ticker's last trade price is used.
"""

from decimal import Decimal

import ccxt.async_support as ccxt_async

from candlebot.config import SourceSettings
from candlebot.exceptions import ConfigurationError, InstrumentNotFoundError, SampleError
from candlebot.logging import get_logger
from candlebot.models import InstrumentId, InstrumentInfo
from candlebot.sources.base import PriceSource

logger = get_logger(__name__)

_ORDER_BOOK_DEPTH = 100


class CcxtPriceSource(PriceSource):
    """Concrete price source using any ccxt async exchange by id."""

    def __init__(self, settings: SourceSettings, exchange: ccxt_async.Exchange | None = None) -> None:
        self._settings = settings
        if exchange is None:
            exchange_cls = getattr(ccxt_async, settings.exchange_id, None)
            if exchange_cls is None:
                raise ConfigurationError(f"Unknown ccxt exchange id: {settings.exchange_id}")
            exchange = exchange_cls({"enableRateLimit": True})
        self._exchange = exchange
        self._markets: dict = {}

    @property
    def exchange(self) -> ccxt_async.Exchange:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        """Initialize connection by loading markets."""
        logger.info("connecting_price_source", exchange=self._settings.exchange_id)
        self._markets = await self._exchange.load_markets()
        logger.info(
            "price_source_connected",
            exchange=self._settings.exchange_id,
            market_count=len(self._markets),
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. Must be called to avoid leaking sessions."""
        await self._exchange.close()
        logger.info("price_source_closed", exchange=self._settings.exchange_id)

    async def resolve(self, instrument: InstrumentId) -> InstrumentInfo:
        if not self._markets:
            self._markets = await self._exchange.load_markets()

        market = self._markets.get(instrument)
        if not market:
            raise InstrumentNotFoundError(
                f"{instrument} not listed on {self._settings.exchange_id}"
            )
        return InstrumentInfo(
            symbol=instrument,
            base=market.get("base", instrument.split("/")[0]),
            quote=market.get("quote", instrument.split("/")[-1]),
        )

    async def quote(self, instrument: InstrumentId) -> Decimal:
        amount_in = self._settings.amount_in
        if amount_in is None:
            ticker = await self._exchange.fetch_ticker(instrument)
            last = ticker.get("last")
            if last is None:
                raise SampleError(f"No last price in ticker for {instrument}")
            return Decimal(str(last))

        book = await self._exchange.fetch_order_book(instrument, limit=_ORDER_BOOK_DEPTH)
        return fill_price(book.get("bids", []), amount_in, instrument)


def fill_price(bids: list, amount_in: Decimal, instrument: InstrumentId = "") -> Decimal:
    """Average price received when selling ``amount_in`` base units into ``bids``.

    Bids are ccxt ``[price, amount, ...]`` levels, best first.

    Raises:
        SampleError: If the visible book is too thin to absorb ``amount_in``.
    """
    remaining = amount_in
    received = Decimal("0")

    for level in bids:
        price = Decimal(str(level[0]))
        size = Decimal(str(level[1]))
        take = min(remaining, size)
        received += take * price
        remaining -= take
        if remaining <= 0:
            return received / amount_in

    raise SampleError(
        f"Order book for {instrument} too thin to fill {amount_in} (short by {remaining})"
    )
