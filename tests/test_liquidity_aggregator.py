import asyncio
from datetime import UTC, datetime
from typing import Any

import pytest

from whale_order_tracker.core.enums import BookSide, EventType, Exchange, LevelKind, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.pipeline.liquidity import LiquiditySnapshotAggregator
from whale_order_tracker.sources.exchanges.base import ExchangeAPIError
from whale_order_tracker.transforms.liquidity_buckets import build_price_levels

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _entry(price: float, quantity: float, side: BookSide) -> OrderBookEntry:
    return OrderBookEntry(
        price=price,
        quantity=quantity,
        side=side,
        notional_total=price * quantity,
        market=Market.SPOT,
    )


class _StubAdapter:
    def __init__(self, exchange: Exchange, book: list[OrderBookEntry], error: Exception | None = None) -> None:
        self.exchange = exchange
        self.book = book
        self.error = error
        self.min_notional: float | None = None

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        self.min_notional = min_notional_usd
        if self.error is not None:
            raise self.error
        return list(self.book)


class _StubPriceFeed:
    def __init__(self, price: float) -> None:
        self.price = price

    async def get_current_price(self) -> float:
        return self.price

    async def reference_price(self) -> float:
        return self.price


class _RecordingChannel:
    def __init__(self) -> None:
        self.events: list[tuple[EventType, Any]] = []

    def publish(self, event_type: EventType, payload: Any) -> int:
        self.events.append((event_type, payload))
        return 0


def test_bucket_fold_groups_by_hundred_dollar_floor() -> None:
    levels = build_price_levels(
        {
            Exchange.BINANCE: [
                _entry(90_050.0, 10.0, BookSide.BID),
                _entry(90_099.99, 5.5, BookSide.BID),
                _entry(90_210.0, 7.0, BookSide.ASK),
            ],
            Exchange.OKX: [
                _entry(90_000.0, 2.25, BookSide.ASK),
                _entry(89_999.0, 100.0, BookSide.BID),
            ],
        },
        reference_price=90_100.0,
    )

    assert [level.bucket_price for level in levels] == [90_200.0, 90_000.0, 89_900.0]
    top, middle, bottom = levels
    assert (top.buy_liquidity, top.sell_liquidity, top.kind) == (0.0, 7.0, LevelKind.RESISTANCE)
    assert (middle.buy_liquidity, middle.sell_liquidity) == (15.5, 2.25)
    assert middle.contributing_exchanges == (Exchange.BINANCE, Exchange.OKX)
    assert middle.kind == LevelKind.SUPPORT
    assert bottom.contributing_exchanges == (Exchange.OKX,)


def test_bucket_at_reference_price_is_resistance() -> None:
    levels = build_price_levels({Exchange.KRAKEN: [_entry(90_000.0, 1.0, BookSide.BID)]}, reference_price=90_000.0)

    assert levels[0].kind == LevelKind.RESISTANCE


def test_bucket_fold_of_nothing_is_empty() -> None:
    assert build_price_levels({}, reference_price=90_000.0) == ()
    assert build_price_levels({Exchange.BINANCE: []}, reference_price=90_000.0) == ()


def test_snapshot_is_none_until_first_cycle() -> None:
    aggregator = LiquiditySnapshotAggregator({}, _StubPriceFeed(90_000.0), _RecordingChannel())  # type: ignore[arg-type]

    assert aggregator.latest_snapshot() is None


def test_aggregate_once_publishes_snapshot_and_skips_failing_exchange() -> None:
    channel = _RecordingChannel()
    healthy = _StubAdapter(
        Exchange.BINANCE,
        [_entry(90_010.0, 100.0, BookSide.BID), _entry(90_350.0, 120.123, BookSide.ASK)],
    )
    broken = _StubAdapter(Exchange.HTX, [], error=ExchangeAPIError(Exchange.HTX, "HTTP 500"))
    aggregator = LiquiditySnapshotAggregator(
        {Exchange.BINANCE: healthy, Exchange.HTX: broken},  # type: ignore[dict-item]
        _StubPriceFeed(90_200.0),
        channel,  # type: ignore[arg-type]
        clock=lambda: NOW,
    )

    snapshot = asyncio.run(aggregator.aggregate_once())

    assert aggregator.latest_snapshot() is snapshot
    assert healthy.min_notional == 8_400_000.0
    assert snapshot.timestamp == NOW
    assert snapshot.reference_price == 90_200.0
    assert [level.bucket_price for level in snapshot.levels] == [90_300.0, 90_000.0]
    assert snapshot.total_buy_liquidity == 100.0
    assert snapshot.total_sell_liquidity == 120.12
    assert [kind for kind, _ in channel.events] == [EventType.LIQUIDITY_UPDATE]
    payload = channel.events[0][1]
    assert payload["current_price"] == 90_200.0
    assert payload["levels"][0] == {
        "price": 90_300.0,
        "buy_liquidity": 0.0,
        "sell_liquidity": 120.12,
        "exchanges": ["binance"],
        "type": "resistance",
    }


def test_new_cycle_replaces_snapshot_without_touching_the_old_one() -> None:
    adapter = _StubAdapter(Exchange.BINANCE, [_entry(90_010.0, 100.0, BookSide.BID)])
    feed = _StubPriceFeed(90_500.0)
    aggregator = LiquiditySnapshotAggregator(
        {Exchange.BINANCE: adapter},  # type: ignore[dict-item]
        feed,
        _RecordingChannel(),  # type: ignore[arg-type]
    )

    first = asyncio.run(aggregator.aggregate_once())
    held_levels = first.levels

    adapter.book = [_entry(91_020.0, 200.0, BookSide.ASK)]
    second = asyncio.run(aggregator.aggregate_once())

    assert aggregator.latest_snapshot() is second
    assert first.levels is held_levels
    assert [level.bucket_price for level in first.levels] == [90_000.0]
    assert [level.bucket_price for level in second.levels] == [91_000.0]


def test_readers_during_a_cycle_see_the_previous_complete_snapshot() -> None:
    observed: list[Any] = []

    class _SlowAdapter(_StubAdapter):
        def __init__(self) -> None:
            super().__init__(Exchange.OKX, [_entry(90_110.0, 150.0, BookSide.BID)])
            self.gate: asyncio.Event | None = None

        async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
            assert self.gate is not None
            await self.gate.wait()
            return await super().fetch_whale_orders(min_notional_usd, reference_price)

    slow = _SlowAdapter()
    aggregator = LiquiditySnapshotAggregator(
        {Exchange.OKX: slow},  # type: ignore[dict-item]
        _StubPriceFeed(90_000.0),
        _RecordingChannel(),  # type: ignore[arg-type]
    )

    async def _run() -> None:
        slow.gate = asyncio.Event()
        slow.gate.set()
        first = await aggregator.aggregate_once()

        slow.book = [_entry(89_500.0, 175.0, BookSide.BID)]
        slow.gate = asyncio.Event()
        cycle = asyncio.create_task(aggregator.aggregate_once())
        await asyncio.sleep(0)
        observed.append(aggregator.latest_snapshot() is first)
        slow.gate.set()
        second = await cycle
        observed.append(aggregator.latest_snapshot() is second)
        observed.append([level.bucket_price for level in second.levels])

    asyncio.run(_run())

    assert observed == [True, True, [89_500.0]]


def test_reference_price_refresh_is_used_for_tagging() -> None:
    feed = _StubPriceFeed(90_000.0)
    adapter = _StubAdapter(Exchange.BINANCE, [_entry(90_050.0, 100.0, BookSide.BID)])
    aggregator = LiquiditySnapshotAggregator(
        {Exchange.BINANCE: adapter},  # type: ignore[dict-item]
        feed,
        _RecordingChannel(),  # type: ignore[arg-type]
    )

    first = asyncio.run(aggregator.aggregate_once())
    feed.price = 90_100.0
    assert asyncio.run(aggregator.refresh_reference_price()) == pytest.approx(90_100.0)
    second = asyncio.run(aggregator.aggregate_once())

    assert first.levels[0].kind == LevelKind.RESISTANCE
    assert second.levels[0].kind == LevelKind.SUPPORT
    assert aggregator.reference_price == 90_100.0
