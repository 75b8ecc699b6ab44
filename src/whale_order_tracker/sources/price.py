from __future__ import annotations

import logging
import math
import random
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Protocol

import httpx

from whale_order_tracker.core.time_utils import utc_now
from whale_order_tracker.sources.exchanges.base import coerce_float

logger = logging.getLogger(__name__)


class PriceSource(Protocol):
    async def get_current_price(self) -> float: ...

    async def reference_price(self) -> float: ...


class ReferencePriceFeed:
    """Best-effort BTC/USD reference price.

    A failed lookup never raises: it answers with the last good price plus a
    small random drift so that bucketing and fill checks always get a usable
    number.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str = "https://data-api.binance.vision",
        symbol: str = "BTCUSDT",
        fallback_price: float = 90_000.0,
        stale_after: timedelta = timedelta(seconds=30),
        drift_usd: float = 100.0,
        clock: Callable[[], datetime] = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        self._client = client
        self._url = f"{base_url.rstrip('/')}/api/v3/ticker/price"
        self._symbol = symbol.upper()
        self._last_known_price = fallback_price
        self._updated_at: datetime | None = None
        self._stale_after = stale_after
        self._drift_usd = drift_usd
        self._clock = clock
        self._rng = rng or random.Random()

    @property
    def last_known_price(self) -> float:
        return self._last_known_price

    @property
    def updated_at(self) -> datetime | None:
        return self._updated_at

    def is_stale(self) -> bool:
        if self._updated_at is None:
            return True
        return self._clock() - self._updated_at > self._stale_after

    async def get_current_price(self) -> float:
        try:
            response = await self._client.get(self._url, params={"symbol": self._symbol})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            return self._fallback(reason=exc.__class__.__name__)

        price = coerce_float(payload.get("price")) if isinstance(payload, dict) else None
        if price is None or not math.isfinite(price) or price <= 0:
            return self._fallback(reason="invalid price payload")

        self._last_known_price = price
        self._updated_at = self._clock()
        return price

    async def reference_price(self) -> float:
        """Cached price while fresh, otherwise a new lookup."""
        if not self.is_stale():
            return self._last_known_price
        return await self.get_current_price()

    def _fallback(self, *, reason: str) -> float:
        drift = self._rng.uniform(-self._drift_usd, self._drift_usd)  # noqa: S311
        price = max(self._last_known_price + drift, 0.01)
        logger.warning(
            "Reference price lookup failed; using last known price with drift",
            extra={"reason": reason, "last_known_price": self._last_known_price, "price": round(price, 2)},
        )
        return price
