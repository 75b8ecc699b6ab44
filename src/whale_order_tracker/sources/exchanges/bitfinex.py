from __future__ import annotations

from whale_order_tracker.core.enums import Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter, ExchangeAPIError, coerce_float

BASE_URL = "https://api-pub.bitfinex.com"
SPOT_SYMBOL = "tBTCUSD"
FUTURES_SYMBOL = "tBTCF0:USTF0"


class BitfinexAdapter(ExchangeAdapter):
    """Bitfinex books are flat ``[PRICE, COUNT, AMOUNT]`` rows.

    The side is encoded in the sign of AMOUNT: positive for bids, negative
    for asks.
    """

    exchange = Exchange.BITFINEX

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        return await self._gather_markets(
            self._fetch_book(SPOT_SYMBOL, Market.SPOT, min_notional_usd, reference_price),
            self._fetch_book(FUTURES_SYMBOL, Market.FUTURES, min_notional_usd, reference_price),
        )

    async def _fetch_book(
        self,
        symbol: str,
        market: Market,
        min_notional_usd: float,
        reference_price: float,
    ) -> list[OrderBookEntry]:
        payload = await self._get_json(f"{BASE_URL}/v2/book/{symbol}/P0")
        if not isinstance(payload, list):
            raise ExchangeAPIError(self.exchange, f"{market.value} book is not a list")

        bids: list[tuple[float, float]] = []
        asks: list[tuple[float, float]] = []
        for row in payload:
            if not isinstance(row, list) or len(row) < 3:
                continue
            price = coerce_float(row[0])
            amount = coerce_float(row[2])
            if price is None or amount is None or amount == 0:
                continue
            if amount > 0:
                bids.append((price, amount))
            else:
                asks.append((price, abs(amount)))

        return self._sided_entries(
            bids,
            asks,
            market=market,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
        )
