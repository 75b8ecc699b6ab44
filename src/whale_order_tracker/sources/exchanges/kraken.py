from __future__ import annotations

from typing import Any

from whale_order_tracker.core.enums import Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter, ExchangeAPIError

SPOT_BASE_URL = "https://api.kraken.com"
FUTURES_BASE_URL = "https://futures.kraken.com"
SPOT_PAIR = "XXBTZUSD"
FUTURES_SYMBOL = "PI_XBTUSD"


class KrakenAdapter(ExchangeAdapter):
    exchange = Exchange.KRAKEN

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        return await self._gather_markets(
            self._fetch_spot(min_notional_usd, reference_price),
            self._fetch_futures(min_notional_usd, reference_price),
        )

    async def _fetch_spot(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        payload = await self._get_json(f"{SPOT_BASE_URL}/0/public/Depth", {"pair": SPOT_PAIR, "count": 100})
        if not isinstance(payload, dict):
            raise ExchangeAPIError(self.exchange, "spot payload is not an object")
        errors = payload.get("error") or []
        if errors:
            raise ExchangeAPIError(self.exchange, f"spot error: {', '.join(map(str, errors))}")

        result: Any = payload.get("result")
        book = result.get(SPOT_PAIR) if isinstance(result, dict) else None
        # spot rows are [price, volume, timestamp]
        return self._book_entries(
            book,
            market=Market.SPOT,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
        )

    async def _fetch_futures(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        payload = await self._get_json(
            f"{FUTURES_BASE_URL}/derivatives/api/v3/orderbook",
            {"symbol": FUTURES_SYMBOL},
        )
        if not isinstance(payload, dict) or payload.get("result") != "success":
            error = payload.get("error", "unknown error") if isinstance(payload, dict) else "unknown error"
            raise ExchangeAPIError(self.exchange, f"futures error: {error}")

        return self._book_entries(
            payload.get("orderBook"),
            market=Market.FUTURES,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
        )
