from __future__ import annotations

from whale_order_tracker.core.enums import Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter

BASE_URL = "https://www.bitstamp.net"
PAIR = "btcusd"


class BitstampAdapter(ExchangeAdapter):
    exchange = Exchange.BITSTAMP

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        payload = await self._get_json(f"{BASE_URL}/api/v2/order_book/{PAIR}/")
        return self._book_entries(
            payload,
            market=Market.SPOT,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
        )
