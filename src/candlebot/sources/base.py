"""Abstract price source interface.

Defines the contract the sampler consumes. Exchange- or chain-specific
details stay in the concrete implementations.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from candlebot.models import InstrumentId, InstrumentInfo


class PriceSource(ABC):
    """Asynchronously quotes the current price of an instrument.

    Prices are always "quote units per one base unit".
    """

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection and load instrument metadata."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release network resources."""
        ...

    @abstractmethod
    async def resolve(self, instrument: InstrumentId) -> InstrumentInfo:
        """Look up instrument metadata.

        Raises:
            InstrumentNotFoundError: If the source does not know the instrument.
        """
        ...

    @abstractmethod
    async def quote(self, instrument: InstrumentId) -> Decimal:
        """Return the current price. Must not mutate caller state."""
        ...


class InvertedPriceSource(PriceSource):
    """Normalizes a pair quoted the other way round.

    Wraps a source quoting ``QUOTE/BASE`` and presents it as ``BASE/QUOTE``
    by returning ``1 / price``. Lifecycle calls go to the wrapped source.
    """

    def __init__(self, inner: PriceSource, symbol: InstrumentId) -> None:
        self._inner = inner
        self._symbol = symbol

    async def connect(self) -> None:
        await self._inner.connect()

    async def close(self) -> None:
        await self._inner.close()

    async def resolve(self, instrument: InstrumentId) -> InstrumentInfo:
        info = await self._inner.resolve(self._symbol)
        return InstrumentInfo(symbol=instrument, base=info.quote, quote=info.base)

    async def quote(self, instrument: InstrumentId) -> Decimal:
        price = await self._inner.quote(self._symbol)
        if price == 0:
            # Let the sampler's validation reject it instead of dividing by zero
            return price
        return Decimal(1) / price
