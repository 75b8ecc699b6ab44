from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from whale_order_tracker.core.enums import Exchange


def _default_min_notional() -> dict[Exchange, float]:
    return {
        Exchange.BINANCE: 840_000.0,
        Exchange.BYBIT: 450_000.0,
        Exchange.KRAKEN: 840_000.0,
        Exchange.BITFINEX: 840_000.0,
        Exchange.COINBASE: 840_000.0,
        Exchange.OKX: 450_000.0,
        Exchange.GEMINI: 840_000.0,
        Exchange.BITSTAMP: 840_000.0,
        Exchange.KUCOIN: 450_000.0,
        Exchange.HTX: 8_400_000.0,
    }


class Settings(BaseSettings):
    state_db: Path = Field(default=Path("./state/whale_orders.sqlite"))
    store_backend: Literal["sqlite", "memory"] = Field(default="sqlite")

    http_timeout_seconds: float = Field(default=10.0, gt=0)
    enabled_exchanges: list[Exchange] = Field(default_factory=lambda: list(Exchange))

    exchange_min_notional_usd: dict[Exchange, float] = Field(default_factory=_default_min_notional)
    max_notional_usd: float = Field(default=100_000_000.0, gt=0)
    max_price_deviation: float = Field(default=0.20, gt=0, lt=1)
    max_calculation_deviation: float = Field(default=0.01, gt=0, lt=1)

    price_api_base_url: str = Field(default="https://data-api.binance.vision")
    price_symbol: str = Field(default="BTCUSDT")
    fallback_reference_price: float = Field(default=90_000.0, gt=0)
    price_stale_seconds: float = Field(default=30.0, gt=0)
    price_fallback_drift_usd: float = Field(default=100.0, ge=0)

    poll_base_interval_seconds: float = Field(default=10.0, gt=0)
    poll_stagger_seconds: float = Field(default=2.0, ge=0)
    poll_jitter_seconds: float = Field(default=3.0, ge=0)
    grace_period_seconds: float = Field(default=60.0, ge=0)
    fill_check_interval_seconds: float = Field(default=10.0, gt=0)
    reaper_interval_seconds: float = Field(default=3600.0, gt=0)
    retention_days: int = Field(default=7, ge=1)

    breaker_failure_threshold: int = Field(default=3, ge=1)
    breaker_cooldown_seconds: float = Field(default=120.0, ge=0)

    dedup_price_tolerance: float = Field(default=0.01, ge=0)
    dedup_size_tolerance: float = Field(default=0.01, ge=0)

    liquidity_interval_seconds: float = Field(default=15.0, gt=0)
    liquidity_price_refresh_seconds: float = Field(default=5.0, gt=0)
    liquidity_min_notional_usd: float = Field(default=8_400_000.0, gt=0)
    bucket_size_usd: float = Field(default=100.0, gt=0)

    ws_host: str = Field(default="127.0.0.1")
    ws_port: int = Field(default=8765, ge=0, le=65535)
    broadcast_queue_size: int = Field(default=256, ge=1)

    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(
        env_prefix="WOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def min_notional_for(self, exchange: Exchange) -> float:
        return self.exchange_min_notional_usd.get(exchange, _default_min_notional()[exchange])

    def poll_interval_for(self, exchange: Exchange) -> float:
        """Base polling interval for an exchange before jitter.

        Exchanges are laddered by their declaration order so that, even without
        jitter, no two of them share a cadence.
        """
        position = list(Exchange).index(exchange)
        return self.poll_base_interval_seconds + position * self.poll_stagger_seconds
