from __future__ import annotations

from whale_order_tracker.core.enums import Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter, ExchangeAPIError

BASE_URL = "https://api.kucoin.com"
SYMBOL = "BTC-USDT"
SUCCESS_CODE = "200000"


class KuCoinAdapter(ExchangeAdapter):
    exchange = Exchange.KUCOIN

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        payload = await self._get_json(f"{BASE_URL}/api/v1/market/orderbook/level2_100", {"symbol": SYMBOL})
        if not isinstance(payload, dict):
            raise ExchangeAPIError(self.exchange, "payload is not an object")
        if payload.get("code") != SUCCESS_CODE:
            raise ExchangeAPIError(self.exchange, f"code={payload.get('code')} {payload.get('msg', 'unknown error')}")

        return self._book_entries(
            payload.get("data"),
            market=Market.SPOT,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
        )
