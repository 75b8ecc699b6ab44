from __future__ import annotations

import sqlite3
import uuid
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from whale_order_tracker.core.enums import Direction, Exchange, Market, OrderStatus, TimeRange
from whale_order_tracker.core.models import NewWhaleOrder, WhaleOrder
from whale_order_tracker.core.time_utils import from_iso, to_iso, to_utc, utc_now


class OrderStoreError(RuntimeError):
    """Persistence failure other than a duplicate insert."""


class DuplicateOrderError(OrderStoreError):
    """An active order with the same exchange, direction, market, price and size already exists."""


class InvalidStatusTransitionError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class OrderFilter:
    min_size: float | None = None
    direction: Direction | None = None
    exchange: Exchange | None = None
    market: Market | None = None
    status: OrderStatus | None = None
    time_range: TimeRange | None = None
    since: datetime | None = None
    until: datetime | None = None
    min_price: float | None = None
    max_price: float | None = None
    limit: int | None = None

    def window_start(self, now: datetime) -> datetime | None:
        starts: list[datetime] = []
        if self.since is not None:
            starts.append(to_utc(self.since))
        if self.time_range is not None:
            starts.append(to_utc(now) - self.time_range.to_timedelta())
        return max(starts) if starts else None

    def matches(self, order: WhaleOrder, now: datetime) -> bool:
        if self.min_size is not None and order.size < self.min_size:
            return False
        if self.direction is not None and order.direction != self.direction:
            return False
        if self.exchange is not None and order.exchange != self.exchange:
            return False
        if self.market is not None and order.market != self.market:
            return False
        if self.status is not None and order.status != self.status:
            return False
        if self.min_price is not None and order.price < self.min_price:
            return False
        if self.max_price is not None and order.price > self.max_price:
            return False
        start = self.window_start(now)
        if start is not None and order.created_at < start:
            return False
        if self.until is not None and order.created_at > to_utc(self.until):
            return False
        return True


def _transitioned(order: WhaleOrder, status: OrderStatus, fill_price: float | None, at: datetime) -> WhaleOrder:
    if status == OrderStatus.ACTIVE:
        raise InvalidStatusTransitionError("orders cannot be moved back to active")
    if order.status != OrderStatus.ACTIVE:
        raise InvalidStatusTransitionError(f"order {order.id} is already {order.status.value}")
    if status == OrderStatus.FILLED:
        return replace(
            order,
            status=status,
            filled_at=to_utc(at),
            fill_price=fill_price if fill_price is not None else order.price,
        )
    return replace(order, status=status)


class OrderStore(ABC):
    """Persistence contract for whale orders.

    Implementations must reject a second *active* order with the same
    exchange, direction, market, price and size by raising
    ``DuplicateOrderError``.
    """

    @abstractmethod
    def create(self, order: NewWhaleOrder) -> WhaleOrder: ...

    @abstractmethod
    def get(self, order_id: str) -> WhaleOrder | None: ...

    @abstractmethod
    def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        fill_price: float | None = None,
        *,
        at: datetime | None = None,
    ) -> WhaleOrder | None: ...

    @abstractmethod
    def filter(self, criteria: OrderFilter | None = None, *, now: datetime | None = None) -> list[WhaleOrder]: ...

    @abstractmethod
    def delete_older_than(self, max_age: timedelta, *, now: datetime | None = None) -> list[str]: ...

    @abstractmethod
    def delete(self, order_id: str) -> WhaleOrder | None: ...

    def list_active(self, exchange: Exchange | None = None) -> list[WhaleOrder]:
        return self.filter(OrderFilter(status=OrderStatus.ACTIVE, exchange=exchange))

    def close(self) -> None:
        return None


class InMemoryOrderStore(OrderStore):
    def __init__(self) -> None:
        self._orders: dict[str, WhaleOrder] = {}
        self._active_keys: dict[tuple[Exchange, Direction, Market, float, float], str] = {}

    def create(self, order: NewWhaleOrder) -> WhaleOrder:
        created = WhaleOrder.from_new(uuid.uuid4().hex, order)
        if created.identity_key in self._active_keys:
            raise DuplicateOrderError(f"active order already exists for {created.identity_key}")
        self._orders[created.id] = created
        self._active_keys[created.identity_key] = created.id
        return created

    def get(self, order_id: str) -> WhaleOrder | None:
        return self._orders.get(order_id)

    def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        fill_price: float | None = None,
        *,
        at: datetime | None = None,
    ) -> WhaleOrder | None:
        order = self._orders.get(order_id)
        if order is None:
            return None
        updated = _transitioned(order, status, fill_price, at or utc_now())
        self._orders[order_id] = updated
        self._active_keys.pop(order.identity_key, None)
        return updated

    def filter(self, criteria: OrderFilter | None = None, *, now: datetime | None = None) -> list[WhaleOrder]:
        criteria = criteria or OrderFilter()
        now_utc = now or utc_now()
        matched = [order for order in self._orders.values() if criteria.matches(order, now_utc)]
        matched.sort(key=lambda order: order.created_at, reverse=True)
        if criteria.limit is not None:
            matched = matched[: criteria.limit]
        return matched

    def delete_older_than(self, max_age: timedelta, *, now: datetime | None = None) -> list[str]:
        cutoff = to_utc(now or utc_now()) - max_age
        expired = [order_id for order_id, order in self._orders.items() if order.created_at < cutoff]
        for order_id in expired:
            self.delete(order_id)
        return expired

    def delete(self, order_id: str) -> WhaleOrder | None:
        order = self._orders.pop(order_id, None)
        if order is not None and self._active_keys.get(order.identity_key) == order_id:
            del self._active_keys[order.identity_key]
        return order


class SQLiteOrderStore(OrderStore):
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    @contextmanager
    def _connect(self, *, timeout: float = 5.0) -> Iterator[sqlite3.Connection]:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        connection = sqlite3.connect(self._db_path, timeout=timeout)
        connection.row_factory = sqlite3.Row
        try:
            yield connection
        except sqlite3.IntegrityError as exc:
            if "UNIQUE constraint failed" in str(exc):
                raise DuplicateOrderError(str(exc)) from exc
            raise OrderStoreError(str(exc)) from exc
        except sqlite3.Error as exc:
            raise OrderStoreError(str(exc)) from exc
        finally:
            connection.close()

    def initialize(self) -> None:
        with self._connect() as connection:
            connection.execute("PRAGMA journal_mode=WAL")
            connection.execute("PRAGMA synchronous=NORMAL")
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS whale_orders (
                    id TEXT PRIMARY KEY,
                    direction TEXT NOT NULL,
                    size REAL NOT NULL CHECK (size > 0),
                    price REAL NOT NULL CHECK (price > 0),
                    exchange TEXT NOT NULL,
                    market TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    status TEXT NOT NULL,
                    filled_at TEXT,
                    fill_price REAL
                )
                """
            )
            # only one active order per identity; terminal rows may repeat
            connection.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_whale_orders_active_identity
                ON whale_orders(exchange, direction, market, price, size)
                WHERE status = 'active'
                """
            )
            connection.execute(
                "CREATE INDEX IF NOT EXISTS idx_whale_orders_exchange_status ON whale_orders(exchange, status)"
            )
            connection.execute("CREATE INDEX IF NOT EXISTS idx_whale_orders_created_at ON whale_orders(created_at)")
            connection.commit()

    @staticmethod
    def _row_to_order(row: sqlite3.Row) -> WhaleOrder:
        return WhaleOrder(
            id=row["id"],
            direction=Direction(row["direction"]),
            size=float(row["size"]),
            price=float(row["price"]),
            exchange=Exchange(row["exchange"]),
            market=Market(row["market"]),
            created_at=from_iso(row["created_at"]),
            status=OrderStatus(row["status"]),
            filled_at=from_iso(row["filled_at"]) if row["filled_at"] is not None else None,
            fill_price=float(row["fill_price"]) if row["fill_price"] is not None else None,
        )

    def create(self, order: NewWhaleOrder) -> WhaleOrder:
        created = WhaleOrder.from_new(uuid.uuid4().hex, order)
        with self._connect() as connection:
            connection.execute(
                """
                INSERT INTO whale_orders(
                    id, direction, size, price, exchange, market, created_at, status, filled_at, fill_price
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, NULL, NULL)
                """,
                (
                    created.id,
                    created.direction.value,
                    created.size,
                    created.price,
                    created.exchange.value,
                    created.market.value,
                    to_iso(created.created_at),
                    created.status.value,
                ),
            )
            connection.commit()
        return created

    def get(self, order_id: str) -> WhaleOrder | None:
        with self._connect() as connection:
            row = connection.execute("SELECT * FROM whale_orders WHERE id = ?", (order_id,)).fetchone()
        return self._row_to_order(row) if row is not None else None

    def update_status(
        self,
        order_id: str,
        status: OrderStatus,
        fill_price: float | None = None,
        *,
        at: datetime | None = None,
    ) -> WhaleOrder | None:
        current = self.get(order_id)
        if current is None:
            return None
        updated = _transitioned(current, status, fill_price, at or utc_now())

        with self._connect() as connection:
            cursor = connection.execute(
                """
                UPDATE whale_orders
                SET status = ?, filled_at = ?, fill_price = ?
                WHERE id = ? AND status = 'active'
                """,
                (
                    updated.status.value,
                    to_iso(updated.filled_at) if updated.filled_at is not None else None,
                    updated.fill_price,
                    order_id,
                ),
            )
            connection.commit()
        if cursor.rowcount == 0:
            raise InvalidStatusTransitionError(f"order {order_id} changed status concurrently")
        return updated

    def filter(self, criteria: OrderFilter | None = None, *, now: datetime | None = None) -> list[WhaleOrder]:
        criteria = criteria or OrderFilter()
        conditions: list[str] = []
        params: list[Any] = []

        if criteria.min_size is not None:
            conditions.append("size >= ?")
            params.append(criteria.min_size)
        if criteria.direction is not None:
            conditions.append("direction = ?")
            params.append(criteria.direction.value)
        if criteria.exchange is not None:
            conditions.append("exchange = ?")
            params.append(criteria.exchange.value)
        if criteria.market is not None:
            conditions.append("market = ?")
            params.append(criteria.market.value)
        if criteria.status is not None:
            conditions.append("status = ?")
            params.append(criteria.status.value)
        if criteria.min_price is not None:
            conditions.append("price >= ?")
            params.append(criteria.min_price)
        if criteria.max_price is not None:
            conditions.append("price <= ?")
            params.append(criteria.max_price)
        start = criteria.window_start(now or utc_now())
        if start is not None:
            conditions.append("created_at >= ?")
            params.append(to_iso(start))
        if criteria.until is not None:
            conditions.append("created_at <= ?")
            params.append(to_iso(criteria.until))

        query = "SELECT * FROM whale_orders"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY created_at DESC"
        if criteria.limit is not None:
            query += " LIMIT ?"
            params.append(criteria.limit)

        with self._connect() as connection:
            rows = connection.execute(query, params).fetchall()
        return [self._row_to_order(row) for row in rows]

    def delete_older_than(self, max_age: timedelta, *, now: datetime | None = None) -> list[str]:
        cutoff = to_iso(to_utc(now or utc_now()) - max_age)
        with self._connect(timeout=15.0) as connection:
            rows = connection.execute(
                "SELECT id FROM whale_orders WHERE created_at < ? ORDER BY created_at",
                (cutoff,),
            ).fetchall()
            connection.execute("DELETE FROM whale_orders WHERE created_at < ?", (cutoff,))
            connection.commit()
        return [row["id"] for row in rows]

    def delete(self, order_id: str) -> WhaleOrder | None:
        existing = self.get(order_id)
        if existing is None:
            return None
        with self._connect() as connection:
            connection.execute("DELETE FROM whale_orders WHERE id = ?", (order_id,))
            connection.commit()
        return existing
