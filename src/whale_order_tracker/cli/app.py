from __future__ import annotations

import asyncio
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import typer
from rich.console import Console
from rich.table import Table

from whale_order_tracker.core.config import Settings
from whale_order_tracker.core.enums import Direction, Exchange, Market, OrderStatus, TimeRange
from whale_order_tracker.core.logging import configure_logging
from whale_order_tracker.core.models import LiquiditySnapshot, WhaleOrder
from whale_order_tracker.pipeline.lifecycle import CycleSummary
from whale_order_tracker.pipeline.service import WhaleTrackerService
from whale_order_tracker.state.store import OrderFilter, SQLiteOrderStore

app = typer.Typer(help="BTC whale order tracker")
console = Console()


def _parse_utc_datetime(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _open_state_store(settings: Settings) -> SQLiteOrderStore:
    # offline commands read the persisted store whatever backend the service runs with
    store = SQLiteOrderStore(settings.state_db)
    store.initialize()
    return store


def _format_usd(value: float) -> str:
    return f"${value:,.2f}"


def orders_table(orders: Sequence[WhaleOrder], *, title: str = "Whale orders") -> Table:
    table = Table(title=title)
    table.add_column("id", overflow="fold")
    table.add_column("exchange")
    table.add_column("market")
    table.add_column("direction")
    table.add_column("price", justify="right")
    table.add_column("size (BTC)", justify="right")
    table.add_column("notional", justify="right")
    table.add_column("status")
    table.add_column("created_at")
    for order in orders:
        table.add_row(
            order.id,
            order.exchange.value,
            order.market.value,
            order.direction.value,
            _format_usd(order.price),
            f"{order.size:,.2f}",
            _format_usd(order.price * order.size),
            order.status.value,
            order.created_at.isoformat(timespec="seconds"),
        )
    return table


def snapshot_table(snapshot: LiquiditySnapshot) -> Table:
    table = Table(title=f"Whale liquidity @ {_format_usd(snapshot.reference_price)}")
    table.add_column("bucket", justify="right")
    table.add_column("type")
    table.add_column("buy (BTC)", justify="right")
    table.add_column("sell (BTC)", justify="right")
    table.add_column("exchanges")
    for level in snapshot.levels:
        table.add_row(
            _format_usd(level.bucket_price),
            level.kind.value,
            f"{level.buy_liquidity:,.2f}",
            f"{level.sell_liquidity:,.2f}",
            ", ".join(exchange.value for exchange in level.contributing_exchanges),
        )
    return table


def cycle_summary_line(summary: CycleSummary) -> str:
    if summary.skipped:
        return f"{summary.exchange.value}: skipped (circuit open or cycle in flight)"
    if summary.error is not None:
        return f"{summary.exchange.value}: fetch failed: {summary.error}"
    return (
        f"{summary.exchange.value}: "
        f"fetched={summary.fetched}, "
        f"created={summary.created}, "
        f"duplicates={summary.duplicates}, "
        f"missing={summary.missing}, "
        f"deleted={summary.deleted}"
    )


@app.command("init-state")
def init_state() -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    store = SQLiteOrderStore(settings.state_db)
    store.initialize()
    console.print(f"Order store initialized at [bold]{settings.state_db}[/bold]")


@app.command("run")
def run(
    serve_events: bool = typer.Option(
        True,
        "--serve-events/--no-serve-events",
        help="Expose the websocket event stream.",
    ),
) -> None:
    """
    Run every poller, the fill checker, the reaper and the liquidity aggregator until interrupted.
    """
    settings = Settings()
    configure_logging(settings.log_level)
    service = WhaleTrackerService(settings)
    try:
        asyncio.run(service.run_forever(serve_events=serve_events))
    except KeyboardInterrupt:
        console.print("Stopped.")


@app.command("poll-once")
def poll_once(
    exchange: Exchange = typer.Option(help="Exchange to reconcile"),
) -> None:
    settings = Settings()
    configure_logging(settings.log_level)

    async def _poll() -> tuple[CycleSummary, list[WhaleOrder]]:
        service = WhaleTrackerService(settings)
        try:
            service.lifecycle.hydrate()
            summary = await service.lifecycle.poll_exchange(exchange)
            return summary, service.lifecycle.active_orders(exchange)
        finally:
            await service.close()

    summary, active = asyncio.run(_poll())
    console.print(cycle_summary_line(summary))
    console.print(orders_table(active, title=f"Active orders on {exchange.value}"))


@app.command("snapshot")
def snapshot() -> None:
    settings = Settings()
    configure_logging(settings.log_level)

    async def _aggregate() -> LiquiditySnapshot:
        service = WhaleTrackerService(settings)
        try:
            return await service.aggregator.aggregate_once()
        finally:
            await service.close()

    result = asyncio.run(_aggregate())
    console.print(snapshot_table(result))
    console.print(
        f"Total buy={result.total_buy_liquidity:,.2f} BTC, total sell={result.total_sell_liquidity:,.2f} BTC"
    )


@app.command("orders")
def orders(
    min_size: float | None = typer.Option(default=None, min=0.0, help="Minimum size in BTC"),
    direction: Direction | None = typer.Option(default=None),
    exchange: Exchange | None = typer.Option(default=None),
    market: Market | None = typer.Option(default=None),
    status: OrderStatus | None = typer.Option(default=None),
    time_range: TimeRange | None = typer.Option(None, "--range", help="Preset window ending now"),
    since: str | None = typer.Option(default=None, help="UTC ISO datetime lower bound"),
    until: str | None = typer.Option(default=None, help="UTC ISO datetime upper bound"),
    min_price: float | None = typer.Option(default=None, min=0.0),
    max_price: float | None = typer.Option(default=None, min=0.0),
    limit: int = typer.Option(default=50, min=1, max=1000),
) -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    criteria = OrderFilter(
        min_size=min_size,
        direction=direction,
        exchange=exchange,
        market=market,
        status=status,
        time_range=time_range,
        since=_parse_utc_datetime(since) if since is not None else None,
        until=_parse_utc_datetime(until) if until is not None else None,
        min_price=min_price,
        max_price=max_price,
        limit=limit,
    )
    store = _open_state_store(settings)
    try:
        matched = store.filter(criteria)
    finally:
        store.close()
    console.print(orders_table(matched))
    console.print(f"{len(matched)} order(s)")


@app.command("reap")
def reap(
    retention_days: int | None = typer.Option(default=None, min=1, help="Override WOT_RETENTION_DAYS"),
) -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    days = retention_days or settings.retention_days
    store = _open_state_store(settings)
    try:
        removed = store.delete_older_than(timedelta(days=days))
    finally:
        store.close()
    console.print(f"Removed {len(removed)} order(s) older than {days} day(s)")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
