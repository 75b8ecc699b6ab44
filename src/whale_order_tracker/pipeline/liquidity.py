from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime

from whale_order_tracker.core.enums import EventType, Exchange
from whale_order_tracker.core.models import LiquiditySnapshot, OrderBookEntry
from whale_order_tracker.core.time_utils import utc_now
from whale_order_tracker.realtime.broadcast import BroadcastChannel
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter
from whale_order_tracker.sources.price import PriceSource
from whale_order_tracker.transforms.liquidity_buckets import build_price_levels

logger = logging.getLogger(__name__)


class LiquiditySnapshotAggregator:
    """Periodic stateless view of whale liquidity across every exchange.

    Each cycle re-fetches all books, folds them into price buckets and then
    replaces the published snapshot in one assignment. Readers holding the
    previous snapshot keep a complete, unchanged object.
    """

    def __init__(
        self,
        adapters: Mapping[Exchange, ExchangeAdapter],
        price_feed: PriceSource,
        channel: BroadcastChannel,
        *,
        min_notional_usd: float = 8_400_000.0,
        bucket_size: float = 100.0,
        interval_seconds: float = 15.0,
        price_refresh_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._adapters = dict(adapters)
        self._price_feed = price_feed
        self._channel = channel
        self._min_notional_usd = min_notional_usd
        self._bucket_size = bucket_size
        self._interval_seconds = interval_seconds
        self._price_refresh_seconds = price_refresh_seconds
        self._clock = clock

        self._snapshot: LiquiditySnapshot | None = None
        self._reference_price: float | None = None
        self._tasks: list[asyncio.Task[None]] = []

    def latest_snapshot(self) -> LiquiditySnapshot | None:
        return self._snapshot

    @property
    def reference_price(self) -> float | None:
        return self._reference_price

    async def refresh_reference_price(self) -> float:
        price = await self._price_feed.get_current_price()
        self._reference_price = price
        return price

    async def aggregate_once(self) -> LiquiditySnapshot:
        reference_price = self._reference_price
        if reference_price is None:
            reference_price = await self.refresh_reference_price()

        exchanges = list(self._adapters)
        results = await asyncio.gather(
            *(
                self._adapters[exchange].fetch_whale_orders(self._min_notional_usd, reference_price)
                for exchange in exchanges
            ),
            return_exceptions=True,
        )

        entries_by_exchange: dict[Exchange, list[OrderBookEntry]] = {}
        for exchange, result in zip(exchanges, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "Skipping exchange in liquidity snapshot",
                    extra={"exchange": exchange.value, "error_type": type(result).__name__, "error": str(result)},
                )
                continue
            if isinstance(result, BaseException):
                raise result
            entries_by_exchange[exchange] = result

        levels = build_price_levels(entries_by_exchange, reference_price, self._bucket_size)
        snapshot = LiquiditySnapshot(
            timestamp=self._clock(),
            reference_price=reference_price,
            levels=levels,
            total_buy_liquidity=round(sum(level.buy_liquidity for level in levels), 2),
            total_sell_liquidity=round(sum(level.sell_liquidity for level in levels), 2),
        )
        self._snapshot = snapshot
        self._channel.publish(EventType.LIQUIDITY_UPDATE, snapshot.to_dict())
        logger.info(
            "Published liquidity snapshot",
            extra={
                "levels": len(levels),
                "exchanges_ok": len(entries_by_exchange),
                "exchanges_total": len(exchanges),
                "reference_price": round(reference_price, 2),
            },
        )
        return snapshot

    async def _aggregate_loop(self) -> None:
        while True:
            try:
                await self.aggregate_once()
            except Exception:
                logger.exception("Liquidity aggregation failed")
            await asyncio.sleep(self._interval_seconds)

    async def _price_loop(self) -> None:
        while True:
            await asyncio.sleep(self._price_refresh_seconds)
            try:
                await self.refresh_reference_price()
            except Exception:
                logger.exception("Reference price refresh failed")

    def start(self) -> None:
        if self._tasks:
            raise RuntimeError("liquidity aggregator already started")
        self._tasks.append(asyncio.create_task(self._aggregate_loop(), name="liquidity-aggregate"))
        self._tasks.append(asyncio.create_task(self._price_loop(), name="liquidity-price"))

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
