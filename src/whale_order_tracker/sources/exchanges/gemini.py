from __future__ import annotations

from typing import Any

from whale_order_tracker.core.enums import Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter, ExchangeAPIError, coerce_float

BASE_URL = "https://api.gemini.com"
SYMBOL = "btcusd"


def _object_levels(value: Any) -> list[tuple[float, float]]:
    if not isinstance(value, list):
        raise TypeError(f"expected a list of levels, got {type(value).__name__}")

    levels: list[tuple[float, float]] = []
    for level in value:
        if not isinstance(level, dict):
            continue
        price = coerce_float(level.get("price"))
        amount = coerce_float(level.get("amount"))
        if price is None or amount is None:
            continue
        levels.append((price, amount))
    return levels


class GeminiAdapter(ExchangeAdapter):
    """Gemini returns levels as ``{"price", "amount", "timestamp"}`` objects."""

    exchange = Exchange.GEMINI

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        payload = await self._get_json(f"{BASE_URL}/v1/book/{SYMBOL}", {"limit_bids": 0, "limit_asks": 0})
        if not isinstance(payload, dict):
            raise ExchangeAPIError(self.exchange, "payload is not an object")
        try:
            bids = _object_levels(payload["bids"])
            asks = _object_levels(payload["asks"])
        except (KeyError, TypeError) as exc:
            raise ExchangeAPIError(self.exchange, f"malformed book: {exc}") from exc

        return self._sided_entries(
            bids,
            asks,
            market=Market.SPOT,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
        )
