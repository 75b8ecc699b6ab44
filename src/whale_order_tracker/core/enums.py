from __future__ import annotations

from datetime import timedelta
from enum import StrEnum


class Exchange(StrEnum):
    BINANCE = "binance"
    BYBIT = "bybit"
    KRAKEN = "kraken"
    BITFINEX = "bitfinex"
    COINBASE = "coinbase"
    OKX = "okx"
    GEMINI = "gemini"
    BITSTAMP = "bitstamp"
    KUCOIN = "kucoin"
    HTX = "htx"


class Market(StrEnum):
    SPOT = "spot"
    FUTURES = "futures"


class BookSide(StrEnum):
    BID = "bid"
    ASK = "ask"


class Direction(StrEnum):
    LONG = "long"
    SHORT = "short"

    @classmethod
    def from_side(cls, side: BookSide) -> Direction:
        return cls.LONG if side == BookSide.BID else cls.SHORT


class OrderStatus(StrEnum):
    ACTIVE = "active"
    FILLED = "filled"
    DELETED = "deleted"


class LevelKind(StrEnum):
    SUPPORT = "support"
    RESISTANCE = "resistance"


class PresenceState(StrEnum):
    """Book presence of an active order as of the latest reconcile cycle."""

    SEEN = "seen"
    MISSING = "missing"
    ABSENT = "absent"


class TimeRange(StrEnum):
    THIRTY_MINUTES = "30m"
    ONE_HOUR = "1h"
    FOUR_HOURS = "4h"
    ONE_DAY = "24h"
    SEVEN_DAYS = "7d"

    def to_timedelta(self) -> timedelta:
        return _TIME_RANGE_DELTAS[self]


_TIME_RANGE_DELTAS: dict[TimeRange, timedelta] = {
    TimeRange.THIRTY_MINUTES: timedelta(minutes=30),
    TimeRange.ONE_HOUR: timedelta(hours=1),
    TimeRange.FOUR_HOURS: timedelta(hours=4),
    TimeRange.ONE_DAY: timedelta(hours=24),
    TimeRange.SEVEN_DAYS: timedelta(days=7),
}


class EventType(StrEnum):
    INITIAL_DATA = "initial_data"
    NEW_ORDER = "new_order"
    ORDER_FILLED = "order_filled"
    ORDER_DELETED = "order_deleted"
    LIQUIDITY_UPDATE = "liquidity_update"
