from __future__ import annotations

from whale_order_tracker.core.enums import Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter, ExchangeAPIError

BASE_URL = "https://api.bybit.com"
SYMBOL = "BTCUSDT"


class BybitAdapter(ExchangeAdapter):
    exchange = Exchange.BYBIT

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        payload = await self._get_json(
            f"{BASE_URL}/v5/market/orderbook",
            {"category": "spot", "symbol": SYMBOL},
        )
        if not isinstance(payload, dict):
            raise ExchangeAPIError(self.exchange, "payload is not an object")
        if payload.get("retCode") != 0:
            raise ExchangeAPIError(self.exchange, f"retCode={payload.get('retCode')} {payload.get('retMsg', '')}")

        # v5 abbreviates the sides as b / a
        return self._book_entries(
            payload.get("result"),
            market=Market.SPOT,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
            bids_key="b",
            asks_key="a",
        )
