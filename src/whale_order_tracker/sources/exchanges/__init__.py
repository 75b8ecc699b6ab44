from __future__ import annotations

from collections.abc import Iterable

import httpx

from whale_order_tracker.core.config import Settings
from whale_order_tracker.core.enums import Exchange
from whale_order_tracker.sources.exchanges.base import ExchangeAdapter, ExchangeAPIError
from whale_order_tracker.sources.exchanges.binance import BinanceAdapter
from whale_order_tracker.sources.exchanges.bitfinex import BitfinexAdapter
from whale_order_tracker.sources.exchanges.bitstamp import BitstampAdapter
from whale_order_tracker.sources.exchanges.bybit import BybitAdapter
from whale_order_tracker.sources.exchanges.coinbase import CoinbaseAdapter
from whale_order_tracker.sources.exchanges.gemini import GeminiAdapter
from whale_order_tracker.sources.exchanges.htx import HTXAdapter
from whale_order_tracker.sources.exchanges.kraken import KrakenAdapter
from whale_order_tracker.sources.exchanges.kucoin import KuCoinAdapter
from whale_order_tracker.sources.exchanges.okx import OKXAdapter
from whale_order_tracker.sources.validators import NotionalBounds

ADAPTER_TYPES: dict[Exchange, type[ExchangeAdapter]] = {
    Exchange.BINANCE: BinanceAdapter,
    Exchange.BYBIT: BybitAdapter,
    Exchange.KRAKEN: KrakenAdapter,
    Exchange.BITFINEX: BitfinexAdapter,
    Exchange.COINBASE: CoinbaseAdapter,
    Exchange.OKX: OKXAdapter,
    Exchange.GEMINI: GeminiAdapter,
    Exchange.BITSTAMP: BitstampAdapter,
    Exchange.KUCOIN: KuCoinAdapter,
    Exchange.HTX: HTXAdapter,
}


def build_adapter(client: httpx.AsyncClient, settings: Settings, exchange: Exchange) -> ExchangeAdapter:
    adapter_type = ADAPTER_TYPES[exchange]
    return adapter_type(
        client,
        bounds=NotionalBounds(lower=settings.min_notional_for(exchange), upper=settings.max_notional_usd),
        max_price_deviation=settings.max_price_deviation,
        max_calculation_deviation=settings.max_calculation_deviation,
    )


def build_adapters(
    client: httpx.AsyncClient,
    settings: Settings,
    exchanges: Iterable[Exchange] | None = None,
) -> dict[Exchange, ExchangeAdapter]:
    selected = settings.enabled_exchanges if exchanges is None else list(exchanges)
    return {exchange: build_adapter(client, settings, exchange) for exchange in selected}


__all__ = [
    "ADAPTER_TYPES",
    "ExchangeAPIError",
    "ExchangeAdapter",
    "build_adapter",
    "build_adapters",
]
