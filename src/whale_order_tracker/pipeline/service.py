from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx

from whale_order_tracker import __version__
from whale_order_tracker.core.config import Settings
from whale_order_tracker.core.time_utils import utc_now
from whale_order_tracker.pipeline.circuit_breaker import CircuitBreakerRegistry
from whale_order_tracker.pipeline.lifecycle import LifecycleConfig, OrderLifecycleManager
from whale_order_tracker.pipeline.liquidity import LiquiditySnapshotAggregator
from whale_order_tracker.realtime.broadcast import BroadcastChannel
from whale_order_tracker.realtime.server import EventStreamServer
from whale_order_tracker.sources.exchanges import build_adapters
from whale_order_tracker.sources.price import ReferencePriceFeed
from whale_order_tracker.state.store import InMemoryOrderStore, OrderStore, SQLiteOrderStore

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> OrderStore:
    if settings.store_backend == "memory":
        return InMemoryOrderStore()
    store = SQLiteOrderStore(settings.state_db)
    store.initialize()
    return store


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=settings.http_timeout_seconds,
        headers={"User-Agent": f"whale-order-tracker/{__version__}", "Accept": "application/json"},
        follow_redirects=True,
    )


class WhaleTrackerService:
    """Wires every component of the tracker to one HTTP client and one store."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        store: OrderStore | None = None,
        clock: Callable[[], datetime] = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings
        self._owns_client = client is None
        self.client = client or build_http_client(settings)
        self.store = store or build_store(settings)
        self.adapters = build_adapters(self.client, settings)
        self.price_feed = ReferencePriceFeed(
            self.client,
            base_url=settings.price_api_base_url,
            symbol=settings.price_symbol,
            fallback_price=settings.fallback_reference_price,
            stale_after=timedelta(seconds=settings.price_stale_seconds),
            drift_usd=settings.price_fallback_drift_usd,
            clock=clock,
            rng=rng,
        )
        self.breakers = CircuitBreakerRegistry(
            threshold=settings.breaker_failure_threshold,
            cooldown=timedelta(seconds=settings.breaker_cooldown_seconds),
            clock=clock,
        )
        self.channel = BroadcastChannel(settings.broadcast_queue_size)
        self.lifecycle = OrderLifecycleManager(
            self.adapters,
            self.store,
            self.breakers,
            self.price_feed,
            self.channel,
            config=LifecycleConfig.from_settings(settings),
            clock=clock,
            rng=rng,
        )
        self.aggregator = LiquiditySnapshotAggregator(
            self.adapters,
            self.price_feed,
            self.channel,
            min_notional_usd=settings.liquidity_min_notional_usd,
            bucket_size=settings.bucket_size_usd,
            interval_seconds=settings.liquidity_interval_seconds,
            price_refresh_seconds=settings.liquidity_price_refresh_seconds,
            clock=clock,
        )
        self.server = EventStreamServer(
            self.channel,
            initial_state=self.initial_state,
            host=settings.ws_host,
            port=settings.ws_port,
        )

    def initial_state(self) -> dict[str, Any]:
        snapshot = self.aggregator.latest_snapshot()
        return {
            "orders": [order.to_dict() for order in self.lifecycle.active_orders()],
            "liquidity": snapshot.to_dict() if snapshot is not None else None,
        }

    async def start(self, *, serve_events: bool = True) -> None:
        self.lifecycle.hydrate()
        self.lifecycle.start()
        self.aggregator.start()
        if serve_events:
            await self.server.start()
        logger.info(
            "Whale tracker started",
            extra={"exchanges": len(self.adapters), "store_backend": self._settings.store_backend},
        )

    async def run_forever(self, *, serve_events: bool = True) -> None:
        await self.start(serve_events=serve_events)
        try:
            await asyncio.Event().wait()
        finally:
            await self.close()

    async def close(self) -> None:
        await self.server.stop()
        await self.aggregator.stop()
        await self.lifecycle.stop()
        if self._owns_client:
            await self.client.aclose()
        self.store.close()
        logger.info("Whale tracker stopped")
