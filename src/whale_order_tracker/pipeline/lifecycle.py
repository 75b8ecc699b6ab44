from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import httpx

from whale_order_tracker.core.config import Settings
from whale_order_tracker.core.enums import Direction, EventType, Exchange, Market, OrderStatus, PresenceState
from whale_order_tracker.core.models import NewWhaleOrder, OrderBookEntry, WhaleOrder
from whale_order_tracker.core.time_utils import utc_now
from whale_order_tracker.pipeline.circuit_breaker import CircuitBreakerRegistry
from whale_order_tracker.realtime.broadcast import BroadcastChannel
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter, ExchangeAPIError
from whale_order_tracker.sources.price import PriceSource
from whale_order_tracker.state.store import DuplicateOrderError, InvalidStatusTransitionError, OrderStore

logger = logging.getLogger(__name__)

# absorbs float noise left after rounding to cents
_MATCH_EPSILON = 1e-9


@dataclass(frozen=True, slots=True)
class LifecycleConfig:
    price_tolerance: float = 0.01
    size_tolerance: float = 0.01
    grace_period: timedelta = timedelta(seconds=60)
    retention: timedelta = timedelta(days=7)
    min_notional_usd: Mapping[Exchange, float] = field(default_factory=dict)
    default_min_notional_usd: float = 840_000.0
    poll_intervals: Mapping[Exchange, float] = field(default_factory=dict)
    default_poll_interval_seconds: float = 10.0
    poll_jitter_seconds: float = 3.0
    fill_check_interval_seconds: float = 10.0
    reaper_interval_seconds: float = 3600.0

    @classmethod
    def from_settings(cls, settings: Settings) -> LifecycleConfig:
        return cls(
            price_tolerance=settings.dedup_price_tolerance,
            size_tolerance=settings.dedup_size_tolerance,
            grace_period=timedelta(seconds=settings.grace_period_seconds),
            retention=timedelta(days=settings.retention_days),
            min_notional_usd={exchange: settings.min_notional_for(exchange) for exchange in Exchange},
            poll_intervals={exchange: settings.poll_interval_for(exchange) for exchange in Exchange},
            default_poll_interval_seconds=settings.poll_base_interval_seconds,
            poll_jitter_seconds=settings.poll_jitter_seconds,
            fill_check_interval_seconds=settings.fill_check_interval_seconds,
            reaper_interval_seconds=settings.reaper_interval_seconds,
        )

    def min_notional_for(self, exchange: Exchange) -> float:
        return self.min_notional_usd.get(exchange, self.default_min_notional_usd)

    def poll_interval_for(self, exchange: Exchange) -> float:
        return self.poll_intervals.get(exchange, self.default_poll_interval_seconds)


@dataclass(frozen=True, slots=True)
class CycleSummary:
    exchange: Exchange
    skipped: bool = False
    fetched: int = 0
    created: int = 0
    duplicates: int = 0
    missing: int = 0
    deleted: int = 0
    error: str | None = None


@dataclass(slots=True)
class OrderPresence:
    state: PresenceState = PresenceState.ABSENT
    last_seen_at: datetime | None = None
    missing_since: datetime | None = None

    def mark_seen(self, now: datetime) -> None:
        self.state = PresenceState.SEEN
        self.last_seen_at = now
        self.missing_since = None

    def mark_missing(self, now: datetime) -> None:
        self.state = PresenceState.MISSING
        self.missing_since = now


@dataclass(frozen=True, slots=True)
class _Candidate:
    direction: Direction
    market: Market
    price: float
    size: float

    @classmethod
    def from_entry(cls, entry: OrderBookEntry) -> _Candidate:
        return cls(
            direction=entry.direction,
            market=entry.market,
            price=round(entry.price, 2),
            size=round(entry.quantity, 2),
        )


class OrderLifecycleManager:
    """Tracks whale orders from first sighting until they fill, vanish or expire.

    Each exchange owns its own active-order index and presence bookkeeping.
    Both are loaded from the store once by ``hydrate`` and then maintained
    incrementally by ``poll_exchange``, ``check_fills`` and ``reap_expired``.
    """

    def __init__(
        self,
        adapters: Mapping[Exchange, ExchangeAdapter],
        store: OrderStore,
        breakers: CircuitBreakerRegistry,
        price_feed: PriceSource,
        channel: BroadcastChannel,
        *,
        config: LifecycleConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        rng: random.Random | None = None,
    ) -> None:
        self._adapters = dict(adapters)
        self._store = store
        self._breakers = breakers
        self._price_feed = price_feed
        self._channel = channel
        self._config = config or LifecycleConfig()
        self._clock = clock
        self._rng = rng or random.Random()

        self._active: dict[Exchange, dict[str, WhaleOrder]] = {exchange: {} for exchange in self._adapters}
        self._presence: dict[str, OrderPresence] = {}
        self._in_flight: set[Exchange] = set()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def exchanges(self) -> tuple[Exchange, ...]:
        return tuple(self._adapters)

    def active_orders(self, exchange: Exchange | None = None) -> list[WhaleOrder]:
        if exchange is not None:
            return list(self._active.get(exchange, {}).values())
        return [order for index in self._active.values() for order in index.values()]

    def presence(self, order_id: str) -> OrderPresence | None:
        return self._presence.get(order_id)

    def hydrate(self) -> int:
        """Load active orders from the store, one query per exchange."""
        loaded = 0
        for exchange in self._adapters:
            orders = self._store.list_active(exchange)
            self._active[exchange] = {order.id: order for order in orders}
            for order in orders:
                self._presence.setdefault(order.id, OrderPresence())
            loaded += len(orders)
        logger.info("Hydrated active orders", extra={"orders": loaded, "exchanges": len(self._adapters)})
        return loaded

    async def poll_exchange(self, exchange: Exchange) -> CycleSummary:
        if exchange in self._in_flight:
            logger.debug("Previous cycle still running; skipping", extra={"exchange": exchange.value})
            return CycleSummary(exchange=exchange, skipped=True)
        if not self._breakers.allow_request(exchange):
            return CycleSummary(exchange=exchange, skipped=True)

        self._in_flight.add(exchange)
        try:
            return await self._run_cycle(exchange)
        finally:
            self._in_flight.discard(exchange)

    async def _run_cycle(self, exchange: Exchange) -> CycleSummary:
        adapter = self._adapters[exchange]
        reference_price = await self._price_feed.reference_price()
        try:
            entries = await adapter.fetch_whale_orders(self._config.min_notional_for(exchange), reference_price)
        except (ExchangeAPIError, httpx.HTTPError) as exc:
            self._breakers.record_failure(exchange)
            logger.warning(
                "Exchange fetch failed",
                extra={"exchange": exchange.value, "error_type": type(exc).__name__, "error": str(exc)},
            )
            return CycleSummary(exchange=exchange, error=str(exc))
        except Exception as exc:
            self._breakers.record_failure(exchange)
            logger.exception("Unexpected adapter failure", extra={"exchange": exchange.value})
            return CycleSummary(exchange=exchange, error=str(exc))
        self._breakers.record_success(exchange)

        now = self._clock()
        index = self._active.setdefault(exchange, {})
        candidates = [_Candidate.from_entry(entry) for entry in entries]

        created: list[WhaleOrder] = []
        duplicates = 0
        for candidate in candidates:
            if candidate.size <= 0 or candidate.price <= 0:
                continue
            if any(self._matches(order, candidate) for order in index.values()):
                duplicates += 1
                continue
            try:
                order = self._store.create(
                    NewWhaleOrder(
                        direction=candidate.direction,
                        size=candidate.size,
                        price=candidate.price,
                        exchange=exchange,
                        market=candidate.market,
                        created_at=now,
                    )
                )
            except DuplicateOrderError:
                duplicates += 1
                continue
            index[order.id] = order
            self._presence[order.id] = OrderPresence()
            created.append(order)

        missing = 0
        deleted: list[WhaleOrder] = []
        for order in list(index.values()):
            presence = self._presence.setdefault(order.id, OrderPresence())
            if any(self._matches(order, candidate) for candidate in candidates):
                presence.mark_seen(now)
                continue
            if presence.missing_since is None:
                presence.mark_missing(now)
                missing += 1
                continue
            if now - presence.missing_since <= self._config.grace_period:
                missing += 1
                continue
            removed = self._transition(order, OrderStatus.DELETED, at=now)
            if removed is not None:
                deleted.append(removed)

        for order in created:
            self._channel.publish(EventType.NEW_ORDER, order.to_dict())
        for order in deleted:
            self._channel.publish(EventType.ORDER_DELETED, order.to_dict())

        summary = CycleSummary(
            exchange=exchange,
            fetched=len(entries),
            created=len(created),
            duplicates=duplicates,
            missing=missing,
            deleted=len(deleted),
        )
        if created or deleted:
            logger.info(
                "Reconciled exchange book",
                extra={
                    "exchange": exchange.value,
                    "fetched": summary.fetched,
                    "new_orders": summary.created,
                    "deleted_orders": summary.deleted,
                    "active": len(index),
                },
            )
        return summary

    def _matches(self, order: WhaleOrder, candidate: _Candidate) -> bool:
        return (
            order.direction == candidate.direction
            and order.market == candidate.market
            and abs(order.price - candidate.price) <= self._config.price_tolerance + _MATCH_EPSILON
            and abs(order.size - candidate.size) <= self._config.size_tolerance + _MATCH_EPSILON
        )

    def _transition(
        self,
        order: WhaleOrder,
        status: OrderStatus,
        *,
        at: datetime,
        fill_price: float | None = None,
    ) -> WhaleOrder | None:
        try:
            updated = self._store.update_status(order.id, status, fill_price, at=at)
        except InvalidStatusTransitionError:
            logger.debug("Order already left active status", extra={"order_id": order.id})
            updated = None
        self._forget(order.exchange, order.id)
        return updated

    def _forget(self, exchange: Exchange, order_id: str) -> None:
        self._active.get(exchange, {}).pop(order_id, None)
        self._presence.pop(order_id, None)

    async def check_fills(self) -> list[WhaleOrder]:
        active = self.active_orders()
        if not active:
            return []

        price = round(await self._price_feed.get_current_price(), 2)
        now = self._clock()
        filled: list[WhaleOrder] = []
        for order in active:
            if order.direction == Direction.LONG:
                crossed = price <= order.price
            else:
                crossed = price >= order.price
            if not crossed:
                continue
            updated = self._transition(order, OrderStatus.FILLED, at=now, fill_price=price)
            if updated is None:
                continue
            filled.append(updated)
            self._channel.publish(EventType.ORDER_FILLED, updated.to_dict())

        if filled:
            logger.info("Orders filled", extra={"filled": len(filled), "price": price})
        return filled

    def reap_expired(self, now: datetime | None = None) -> list[str]:
        removed = self._store.delete_older_than(self._config.retention, now=now or self._clock())
        removed_ids = set(removed)
        for index in self._active.values():
            for order_id in [order_id for order_id in index if order_id in removed_ids]:
                del index[order_id]
        tracked = {order_id for index in self._active.values() for order_id in index}
        for order_id in [order_id for order_id in self._presence if order_id not in tracked]:
            del self._presence[order_id]
        logger.info(
            "Reaped expired orders",
            extra={"removed": len(removed), "retention_days": self._config.retention.days},
        )
        return removed

    def _jittered(self, interval: float) -> float:
        return interval + self._rng.uniform(0, self._config.poll_jitter_seconds)

    async def _exchange_loop(self, exchange: Exchange) -> None:
        interval = self._config.poll_interval_for(exchange)
        while True:
            await asyncio.sleep(self._jittered(interval))
            try:
                await self.poll_exchange(exchange)
            except Exception:
                logger.exception("Poll cycle failed", extra={"exchange": exchange.value})

    async def _fill_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.fill_check_interval_seconds)
            try:
                await self.check_fills()
            except Exception:
                logger.exception("Fill check failed")

    async def _reaper_loop(self) -> None:
        while True:
            await asyncio.sleep(self._config.reaper_interval_seconds)
            try:
                self.reap_expired()
            except Exception:
                logger.exception("Reaper run failed")

    def start(self, exchanges: Sequence[Exchange] | None = None) -> None:
        if self._tasks:
            raise RuntimeError("lifecycle manager already started")
        selected = list(self._adapters) if exchanges is None else list(exchanges)
        for exchange in selected:
            self._tasks.append(asyncio.create_task(self._exchange_loop(exchange), name=f"poll-{exchange.value}"))
        self._tasks.append(asyncio.create_task(self._fill_loop(), name="fill-check"))
        self._tasks.append(asyncio.create_task(self._reaper_loop(), name="reaper"))
        logger.info("Started lifecycle timers", extra={"exchanges": len(selected)})

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
