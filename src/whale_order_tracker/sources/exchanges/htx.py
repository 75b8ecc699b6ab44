from __future__ import annotations

from typing import Any

from whale_order_tracker.core.enums import Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter, ExchangeAPIError

SPOT_BASE_URL = "https://api.huobi.pro"
FUTURES_BASE_URL = "https://api.hbdm.com"
SPOT_SYMBOL = "btcusdt"
FUTURES_CONTRACT = "BTC-USDT"


class HTXAdapter(ExchangeAdapter):
    exchange = Exchange.HTX

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        return await self._gather_markets(
            self._fetch_book(
                f"{SPOT_BASE_URL}/market/depth",
                {"symbol": SPOT_SYMBOL, "type": "step0"},
                Market.SPOT,
                min_notional_usd,
                reference_price,
            ),
            self._fetch_book(
                f"{FUTURES_BASE_URL}/linear-swap-ex/market/depth",
                {"contract_code": FUTURES_CONTRACT, "type": "step0"},
                Market.FUTURES,
                min_notional_usd,
                reference_price,
            ),
        )

    async def _fetch_book(
        self,
        url: str,
        params: dict[str, Any],
        market: Market,
        min_notional_usd: float,
        reference_price: float,
    ) -> list[OrderBookEntry]:
        payload = await self._get_json(url, params)
        if not isinstance(payload, dict):
            raise ExchangeAPIError(self.exchange, f"{market.value} payload is not an object")
        if payload.get("status") != "ok":
            raise ExchangeAPIError(self.exchange, f"{market.value} error: {payload.get('err-msg', 'unknown error')}")

        return self._book_entries(
            payload.get("tick"),
            market=market,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
        )
