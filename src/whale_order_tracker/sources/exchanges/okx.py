from __future__ import annotations

from whale_order_tracker.core.enums import Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter, ExchangeAPIError

BASE_URL = "https://www.okx.com"
SPOT_INSTRUMENT = "BTC-USDT"
SWAP_INSTRUMENT = "BTC-USDT-SWAP"


class OKXAdapter(ExchangeAdapter):
    exchange = Exchange.OKX

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        return await self._gather_markets(
            self._fetch_book(SPOT_INSTRUMENT, Market.SPOT, min_notional_usd, reference_price),
            self._fetch_book(SWAP_INSTRUMENT, Market.FUTURES, min_notional_usd, reference_price),
        )

    async def _fetch_book(
        self,
        instrument: str,
        market: Market,
        min_notional_usd: float,
        reference_price: float,
    ) -> list[OrderBookEntry]:
        payload = await self._get_json(f"{BASE_URL}/api/v5/market/books", {"instId": instrument, "sz": 100})
        if not isinstance(payload, dict):
            raise ExchangeAPIError(self.exchange, f"{market.value} payload is not an object")
        if payload.get("code") != "0":
            raise ExchangeAPIError(self.exchange, f"{market.value} code={payload.get('code')} {payload.get('msg', '')}")

        data = payload.get("data")
        if not isinstance(data, list) or not data:
            raise ExchangeAPIError(self.exchange, f"{market.value} payload has no book")

        # USDT is taken at par with USD; rows are [price, quantity, deprecated, num-orders]
        return self._book_entries(
            data[0],
            market=market,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
        )
