from __future__ import annotations

from collections.abc import Mapping, Sequence

import polars as pl

from whale_order_tracker.core.enums import BookSide, Exchange, LevelKind
from whale_order_tracker.core.models import OrderBookEntry, PriceLevel

_ENTRY_SCHEMA: dict[str, pl.DataType] = {
    "exchange": pl.Utf8(),
    "side": pl.Utf8(),
    "price": pl.Float64(),
    "quantity": pl.Float64(),
}


def entries_frame(entries_by_exchange: Mapping[Exchange, Sequence[OrderBookEntry]]) -> pl.DataFrame:
    rows = [
        {
            "exchange": exchange.value,
            "side": entry.side.value,
            "price": entry.price,
            "quantity": entry.quantity,
        }
        for exchange, entries in entries_by_exchange.items()
        for entry in entries
    ]
    if not rows:
        return pl.DataFrame(schema=_ENTRY_SCHEMA)
    return pl.DataFrame(rows, schema=_ENTRY_SCHEMA)


def bucket_frame(frame: pl.DataFrame, bucket_size: float) -> pl.DataFrame:
    """Fold entries into ``bucket_size`` wide price buckets, highest bucket first."""
    if bucket_size <= 0:
        raise ValueError("bucket_size must be > 0")
    return (
        frame.with_columns(((pl.col("price") / bucket_size).floor() * bucket_size).alias("bucket_price"))
        .group_by("bucket_price")
        .agg(
            pl.when(pl.col("side") == BookSide.BID.value)
            .then(pl.col("quantity"))
            .otherwise(0.0)
            .sum()
            .alias("buy_liquidity"),
            pl.when(pl.col("side") == BookSide.ASK.value)
            .then(pl.col("quantity"))
            .otherwise(0.0)
            .sum()
            .alias("sell_liquidity"),
            pl.col("exchange").unique().sort().alias("exchanges"),
        )
        .sort("bucket_price", descending=True)
    )


def build_price_levels(
    entries_by_exchange: Mapping[Exchange, Sequence[OrderBookEntry]],
    reference_price: float,
    bucket_size: float = 100.0,
) -> tuple[PriceLevel, ...]:
    frame = entries_frame(entries_by_exchange)
    if frame.height == 0:
        return ()

    levels: list[PriceLevel] = []
    for row in bucket_frame(frame, bucket_size).iter_rows(named=True):
        bucket_price = float(row["bucket_price"])
        levels.append(
            PriceLevel(
                bucket_price=bucket_price,
                buy_liquidity=round(row["buy_liquidity"], 2),
                sell_liquidity=round(row["sell_liquidity"], 2),
                contributing_exchanges=tuple(Exchange(value) for value in row["exchanges"]),
                kind=LevelKind.SUPPORT if bucket_price < reference_price else LevelKind.RESISTANCE,
            )
        )
    return tuple(levels)
