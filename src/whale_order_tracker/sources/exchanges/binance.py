from __future__ import annotations

from whale_order_tracker.core.enums import Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter

SPOT_BASE_URL = "https://data-api.binance.vision"
FUTURES_BASE_URL = "https://fapi.binance.com"
SYMBOL = "BTCUSDT"
DEPTH_LIMIT = 100


class BinanceAdapter(ExchangeAdapter):
    exchange = Exchange.BINANCE

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        return await self._gather_markets(
            self._fetch_book(f"{SPOT_BASE_URL}/api/v3/depth", Market.SPOT, min_notional_usd, reference_price),
            self._fetch_book(f"{FUTURES_BASE_URL}/fapi/v1/depth", Market.FUTURES, min_notional_usd, reference_price),
        )

    async def _fetch_book(
        self,
        url: str,
        market: Market,
        min_notional_usd: float,
        reference_price: float,
    ) -> list[OrderBookEntry]:
        payload = await self._get_json(url, {"symbol": SYMBOL, "limit": DEPTH_LIMIT})
        return self._book_entries(
            payload,
            market=market,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
        )
