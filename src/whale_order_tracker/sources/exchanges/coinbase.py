from __future__ import annotations

from whale_order_tracker.core.enums import Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter

BASE_URL = "https://api.exchange.coinbase.com"
PRODUCT = "BTC-USD"


class CoinbaseAdapter(ExchangeAdapter):
    exchange = Exchange.COINBASE

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        # level 2 rows are [price, size, num-orders]
        payload = await self._get_json(f"{BASE_URL}/products/{PRODUCT}/book", {"level": 2})
        return self._book_entries(
            payload,
            market=Market.SPOT,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
        )
