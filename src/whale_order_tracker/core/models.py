from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from whale_order_tracker.core.enums import BookSide, Direction, Exchange, LevelKind, Market, OrderStatus
from whale_order_tracker.core.time_utils import to_iso


@dataclass(frozen=True, slots=True)
class OrderBookEntry:
    price: float
    quantity: float
    side: BookSide
    notional_total: float
    market: Market

    @property
    def direction(self) -> Direction:
        return Direction.from_side(self.side)


@dataclass(frozen=True, slots=True)
class NewWhaleOrder:
    direction: Direction
    size: float
    price: float
    exchange: Exchange
    market: Market
    created_at: datetime

    def __post_init__(self) -> None:
        if not self.size > 0:
            raise ValueError(f"size must be > 0, got {self.size}")
        if not self.price > 0:
            raise ValueError(f"price must be > 0, got {self.price}")


@dataclass(frozen=True, slots=True)
class WhaleOrder:
    id: str
    direction: Direction
    size: float
    price: float
    exchange: Exchange
    market: Market
    created_at: datetime
    status: OrderStatus = OrderStatus.ACTIVE
    filled_at: datetime | None = None
    fill_price: float | None = None

    def __post_init__(self) -> None:
        if not self.size > 0:
            raise ValueError(f"size must be > 0, got {self.size}")
        if not self.price > 0:
            raise ValueError(f"price must be > 0, got {self.price}")
        is_filled = self.status == OrderStatus.FILLED
        if is_filled != (self.filled_at is not None) or is_filled != (self.fill_price is not None):
            raise ValueError("filled_at and fill_price must be set exactly when status is filled")

    @classmethod
    def from_new(cls, order_id: str, order: NewWhaleOrder) -> WhaleOrder:
        return cls(
            id=order_id,
            direction=order.direction,
            size=order.size,
            price=order.price,
            exchange=order.exchange,
            market=order.market,
            created_at=order.created_at,
        )

    @property
    def identity_key(self) -> tuple[Exchange, Direction, Market, float, float]:
        return (self.exchange, self.direction, self.market, self.price, self.size)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "direction": self.direction.value,
            "size": self.size,
            "price": self.price,
            "exchange": self.exchange.value,
            "market": self.market.value,
            "created_at": to_iso(self.created_at),
            "status": self.status.value,
            "filled_at": to_iso(self.filled_at) if self.filled_at is not None else None,
            "fill_price": self.fill_price,
        }


@dataclass(frozen=True, slots=True)
class PriceLevel:
    bucket_price: float
    buy_liquidity: float
    sell_liquidity: float
    contributing_exchanges: tuple[Exchange, ...]
    kind: LevelKind

    def to_dict(self) -> dict[str, Any]:
        return {
            "price": self.bucket_price,
            "buy_liquidity": self.buy_liquidity,
            "sell_liquidity": self.sell_liquidity,
            "exchanges": [exchange.value for exchange in self.contributing_exchanges],
            "type": self.kind.value,
        }


@dataclass(frozen=True, slots=True)
class LiquiditySnapshot:
    timestamp: datetime
    reference_price: float
    levels: tuple[PriceLevel, ...]
    total_buy_liquidity: float
    total_sell_liquidity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": to_iso(self.timestamp),
            "current_price": self.reference_price,
            "levels": [level.to_dict() for level in self.levels],
            "total_buy_liquidity": self.total_buy_liquidity,
            "total_sell_liquidity": self.total_sell_liquidity,
        }
