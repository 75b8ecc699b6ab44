import asyncio
from collections.abc import Callable

import httpx
import pytest

from whale_order_tracker.core.config import Settings
from whale_order_tracker.core.enums import BookSide, Direction, Exchange, Market
from whale_order_tracker.core.models import OrderBookEntry
from whale_order_tracker.sources.exchanges import ADAPTER_TYPES, ExchangeAdapter, ExchangeAPIError, build_adapters
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

Handler = Callable[[httpx.Request], httpx.Response]


def _fetch(
    adapter_type: type[ExchangeAdapter],
    handler: Handler,
    *,
    min_notional: float = 450_000.0,
    reference_price: float = 90_000.0,
) -> list[OrderBookEntry]:
    async def _run() -> list[OrderBookEntry]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            adapter = adapter_type(client, bounds=NotionalBounds(lower=450_000.0))
            return await adapter.fetch_whale_orders(min_notional, reference_price)

    return asyncio.run(_run())


def _summary(entries: list[OrderBookEntry]) -> set[tuple[str, str, float, float]]:
    return {(entry.market.value, entry.side.value, entry.price, entry.quantity) for entry in entries}


def test_binance_fetches_spot_and_futures_books() -> None:
    seen_hosts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_hosts.append(request.url.host)
        assert request.url.params["symbol"] == "BTCUSDT"
        if request.url.host == "fapi.binance.com":
            return httpx.Response(200, json={"bids": [["90500.00", "30.000"]], "asks": []})
        return httpx.Response(
            200,
            json={
                "lastUpdateId": 1,
                "bids": [["90000.00", "12.000"], ["89000.00", "0.500"]],
                "asks": [["91000.00", "20.000"]],
            },
        )

    entries = _fetch(BinanceAdapter, handler)

    assert sorted(seen_hosts) == ["data-api.binance.vision", "fapi.binance.com"]
    assert _summary(entries) == {
        ("spot", "bid", 90_000.0, 12.0),
        ("spot", "ask", 91_000.0, 20.0),
        ("futures", "bid", 90_500.0, 30.0),
    }
    bid = next(entry for entry in entries if entry.market == Market.SPOT and entry.side == BookSide.BID)
    assert bid.direction == Direction.LONG
    assert bid.notional_total == pytest.approx(1_080_000.0)


def test_adapter_drops_levels_far_from_reference_price() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"bids": [["50000", "100"], ["89950", "10"]], "asks": [["150000", "10"]]},
        )

    entries = _fetch(BitstampAdapter, handler)

    assert _summary(entries) == {("spot", "bid", 89_950.0, 10.0)}


def test_caller_threshold_applies_on_top_of_exchange_floor() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"bids": [["90000", "12", "3"]], "asks": [["90100", "100", "1"]]})

    entries = _fetch(CoinbaseAdapter, handler, min_notional=8_400_000.0)

    assert _summary(entries) == {("spot", "ask", 90_100.0, 100.0)}


def test_bybit_reads_abbreviated_sides() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["category"] == "spot"
        return httpx.Response(
            200,
            json={"retCode": 0, "retMsg": "OK", "result": {"s": "BTCUSDT", "b": [["90000", "10"]], "a": [["90100", "6"]]}},
        )

    entries = _fetch(BybitAdapter, handler)

    assert _summary(entries) == {("spot", "bid", 90_000.0, 10.0), ("spot", "ask", 90_100.0, 6.0)}


def test_bybit_non_zero_ret_code_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"retCode": 10001, "retMsg": "params error", "result": {}})

    with pytest.raises(ExchangeAPIError, match="retCode=10001"):
        _fetch(BybitAdapter, handler)


def test_kraken_combines_spot_and_futures() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "futures.kraken.com":
            return httpx.Response(
                200,
                json={"result": "success", "orderBook": {"bids": [[90000, 20]], "asks": [[90200, 15]]}},
            )
        return httpx.Response(
            200,
            json={
                "error": [],
                "result": {"XXBTZUSD": {"bids": [["90010.0", "11.0", 1700000000]], "asks": []}},
            },
        )

    entries = _fetch(KrakenAdapter, handler)

    assert _summary(entries) == {
        ("spot", "bid", 90_010.0, 11.0),
        ("futures", "bid", 90_000.0, 20.0),
        ("futures", "ask", 90_200.0, 15.0),
    }


def test_kraken_spot_error_list_fails_the_fetch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "futures.kraken.com":
            return httpx.Response(200, json={"result": "success", "orderBook": {"bids": [], "asks": []}})
        return httpx.Response(200, json={"error": ["EGeneral:Too many requests"], "result": {}})

    with pytest.raises(ExchangeAPIError, match="Too many requests"):
        _fetch(KrakenAdapter, handler)


def test_bitfinex_uses_amount_sign_for_side() -> None:
    requested_paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested_paths.append(request.url.path)
        if "tBTCUSD" in request.url.path:
            return httpx.Response(200, json=[[90000, 3, 12.5], [90100, 2, -9.0], [90050, 1, 0]])
        return httpx.Response(200, json=[[90020, 1, -40.0]])

    entries = _fetch(BitfinexAdapter, handler)

    assert sorted(requested_paths) == ["/v2/book/tBTCF0:USTF0/P0", "/v2/book/tBTCUSD/P0"]
    assert _summary(entries) == {
        ("spot", "bid", 90_000.0, 12.5),
        ("spot", "ask", 90_100.0, 9.0),
        ("futures", "ask", 90_020.0, 40.0),
    }
    assert all(entry.quantity > 0 for entry in entries)


def test_okx_reads_first_book_for_each_instrument() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        instrument = request.url.params["instId"]
        price = "90000" if instrument == "BTC-USDT" else "90300"
        return httpx.Response(
            200,
            json={"code": "0", "msg": "", "data": [{"bids": [[price, "10", "0", "4"]], "asks": [], "ts": "1"}]},
        )

    entries = _fetch(OKXAdapter, handler)

    assert _summary(entries) == {("spot", "bid", 90_000.0, 10.0), ("futures", "bid", 90_300.0, 10.0)}


def test_okx_error_code_fails_the_fetch() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "50011", "msg": "Rate limit reached", "data": []})

    with pytest.raises(ExchangeAPIError, match="50011"):
        _fetch(OKXAdapter, handler)


def test_gemini_reads_object_levels() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "bids": [{"price": "90000.00", "amount": "7.5", "timestamp": "1700000000"}],
                "asks": [{"price": "90150.00", "amount": "not-a-number", "timestamp": "1700000000"}],
            },
        )

    entries = _fetch(GeminiAdapter, handler)

    assert _summary(entries) == {("spot", "bid", 90_000.0, 7.5)}


def test_kucoin_requires_success_code() -> None:
    def ok_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"code": "200000", "data": {"time": 1, "sequence": "1", "bids": [["90000", "6"]], "asks": []}},
        )

    def error_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"code": "429000", "msg": "Too Many Requests"})

    assert _summary(_fetch(KuCoinAdapter, ok_handler)) == {("spot", "bid", 90_000.0, 6.0)}
    with pytest.raises(ExchangeAPIError, match="429000"):
        _fetch(KuCoinAdapter, error_handler)


def test_htx_fetches_spot_and_linear_swap_books() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "api.hbdm.com":
            assert request.url.params["contract_code"] == "BTC-USDT"
            return httpx.Response(200, json={"status": "ok", "tick": {"bids": [], "asks": [[90400, 100]]}})
        assert request.url.params["symbol"] == "btcusdt"
        return httpx.Response(200, json={"status": "ok", "tick": {"bids": [[90000, 95]], "asks": []}})

    entries = _fetch(HTXAdapter, handler, min_notional=8_400_000.0)

    assert _summary(entries) == {("spot", "bid", 90_000.0, 95.0), ("futures", "ask", 90_400.0, 100.0)}


def test_http_error_status_raises_exchange_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="maintenance")

    with pytest.raises(ExchangeAPIError) as excinfo:
        _fetch(CoinbaseAdapter, handler)

    assert excinfo.value.exchange == Exchange.COINBASE
    assert excinfo.value.status_code == 503


def test_non_json_body_raises_exchange_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    with pytest.raises(ExchangeAPIError, match="not JSON"):
        _fetch(BitstampAdapter, handler)


def test_malformed_book_raises_exchange_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"bids": "nope", "asks": []})

    with pytest.raises(ExchangeAPIError, match="malformed"):
        _fetch(BitstampAdapter, handler)


def test_registry_builds_every_exchange_with_its_floor() -> None:
    settings = Settings(exchange_min_notional_usd={Exchange.BYBIT: 500_000.0})

    async def _build() -> dict[Exchange, ExchangeAdapter]:
        async with httpx.AsyncClient() as client:
            return build_adapters(client, settings, exchanges=list(Exchange))

    adapters = asyncio.run(_build())

    assert set(adapters) == set(Exchange) == set(ADAPTER_TYPES)
    assert adapters[Exchange.BYBIT].bounds.lower == 500_000.0
    assert adapters[Exchange.HTX].bounds.lower == 8_400_000.0
    assert adapters[Exchange.BINANCE].bounds.upper == 100_000_000.0
    assert all(adapter.exchange == exchange for exchange, adapter in adapters.items())
