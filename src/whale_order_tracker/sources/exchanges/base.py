from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Iterable
from typing import Any, ClassVar

import httpx

from whale_order_tracker.core.enums import BookSide, Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.validators import EntryValidator, NotionalBounds

logger = logging.getLogger(__name__)


class ExchangeAPIError(RuntimeError):
    """Raised when an exchange answers with an error status, error code or unreadable payload."""

    def __init__(self, exchange: Exchange, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{exchange.value}: {message}")
        self.exchange = exchange
        self.status_code = status_code


def coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        normalized = value.strip()
        if normalized == "":
            return None
        try:
            return float(normalized)
        except ValueError:
            return None
    return None


def parse_positional_levels(value: Any) -> list[tuple[float, float]]:
    """Read ``[[price, quantity, ...], ...]`` levels, skipping unreadable rows."""
    if not isinstance(value, list):
        raise TypeError(f"expected a list of levels, got {type(value).__name__}")

    levels: list[tuple[float, float]] = []
    for level in value:
        if not isinstance(level, (list, tuple)) or len(level) < 2:
            continue
        price = coerce_float(level[0])
        quantity = coerce_float(level[1])
        if price is None or quantity is None:
            continue
        levels.append((price, quantity))
    return levels


class ExchangeAdapter:
    """Fetches one exchange's public order book and returns whale-sized entries.

    Subclasses implement ``fetch_whale_orders``; parsing of the exchange-specific
    wire format stays inside the subclass, validation is shared here.
    """

    exchange: ClassVar[Exchange]

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        bounds: NotionalBounds,
        max_price_deviation: float = 0.20,
        max_calculation_deviation: float = 0.01,
    ) -> None:
        self._client = client
        self._validator = EntryValidator(
            bounds=bounds,
            max_price_deviation=max_price_deviation,
            max_calculation_deviation=max_calculation_deviation,
        )

    @property
    def bounds(self) -> NotionalBounds:
        return self._validator.bounds

    async def fetch_whale_orders(self, min_notional_usd: float, reference_price: float) -> list[OrderBookEntry]:
        raise NotImplementedError

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._client.get(url, params=params)
        if response.status_code >= 400:
            raise ExchangeAPIError(
                self.exchange,
                f"HTTP {response.status_code} from {response.request.url.path}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ExchangeAPIError(self.exchange, "response body is not JSON") from exc

    async def _gather_markets(self, *fetches: Awaitable[list[OrderBookEntry]]) -> list[OrderBookEntry]:
        results = await asyncio.gather(*fetches)
        return [entry for entries in results for entry in entries]

    def _whale_entries(
        self,
        levels: Iterable[tuple[float, float]],
        *,
        side: BookSide,
        market: Market,
        min_notional_usd: float,
        reference_price: float,
    ) -> list[OrderBookEntry]:
        entries: list[OrderBookEntry] = []
        rejected = 0
        for price, quantity in levels:
            total = price * quantity
            if total < min_notional_usd:
                continue
            if not self._validator.accepts(price, quantity, total, reference_price):
                rejected += 1
                continue
            entries.append(
                OrderBookEntry(price=price, quantity=quantity, side=side, notional_total=total, market=market)
            )
        if rejected:
            logger.debug(
                "Dropped whale-sized levels failing validation",
                extra={
                    "exchange": self.exchange.value,
                    "market": market.value,
                    "side": side.value,
                    "rejected": rejected,
                },
            )
        return entries

    def _book_entries(
        self,
        book: Any,
        *,
        market: Market,
        min_notional_usd: float,
        reference_price: float,
        bids_key: str = "bids",
        asks_key: str = "asks",
    ) -> list[OrderBookEntry]:
        """Whale entries from a ``{bids: [[p, q], ...], asks: [[p, q], ...]}`` shaped book."""
        if not isinstance(book, dict):
            raise ExchangeAPIError(self.exchange, f"{market.value} book is not an object")
        try:
            bids = parse_positional_levels(book[bids_key])
            asks = parse_positional_levels(book[asks_key])
        except (KeyError, TypeError) as exc:
            raise ExchangeAPIError(self.exchange, f"malformed {market.value} book: {exc}") from exc

        return self._sided_entries(
            bids,
            asks,
            market=market,
            min_notional_usd=min_notional_usd,
            reference_price=reference_price,
        )

    def _sided_entries(
        self,
        bids: Iterable[tuple[float, float]],
        asks: Iterable[tuple[float, float]],
        *,
        market: Market,
        min_notional_usd: float,
        reference_price: float,
    ) -> list[OrderBookEntry]:
        return [
            *self._whale_entries(
                bids,
                side=BookSide.BID,
                market=market,
                min_notional_usd=min_notional_usd,
                reference_price=reference_price,
            ),
            *self._whale_entries(
                asks,
                side=BookSide.ASK,
                market=market,
                min_notional_usd=min_notional_usd,
                reference_price=reference_price,
            ),
        ]
