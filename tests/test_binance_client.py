"""
Binance REST fallback/error mapping and the live trade stream.
"""

import asyncio
import contextlib

import aiohttp
import pytest

from cryptosage.datafeed.binance_client import (
    CONNECTING,
    FAILED,
    STOPPED,
    STREAMING,
    BinanceClient,
    LiveTradeStream,
)
from cryptosage.datafeed.intervals import ChartInterval
from cryptosage.engine.live import EPOCH, LiveTickAggregator
from cryptosage.errors import DecodeError, TransportError
from cryptosage.types import ChartPoint

from .conftest import (
    BASE_TIME,
    FakeResponse,
    FakeSession,
    FakeWebSocket,
    FakeWsSession,
    error_message,
    text_message,
)

KLINES = [
    [1700000060000, "1", "1", "1", 99.9, "1"],
    [1700000000000, "1", "1", "1", "100.5", "1"],
]


def make_client(config, *outcomes):
    session = FakeSession(*outcomes)
    return BinanceClient(config, session=session), session


class TestFetchKlines:
    @pytest.mark.asyncio
    async def test_success_uses_primary(self, config):
        client, session = make_client(config, FakeResponse(200, KLINES))

        points = await client.fetch_klines("btc", ChartInterval.ONE_HOUR)

        assert points == [ChartPoint(1700000000.0, 100.5), ChartPoint(1700000060.0, 99.9)]
        url, params = session.calls[0]
        assert url == "https://api.binance.com/api/v3/klines"
        assert params == {"symbol": "BTCUSDT", "interval": "1h", "limit": "48"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("symbol", ["USDC", "tusd", "BUSD"])
    async def test_stablecoins_quoted_in_usdt(self, config, symbol):
        client, session = make_client(config, FakeResponse(200, KLINES))

        await client.fetch_klines(symbol, ChartInterval.ONE_DAY)

        assert session.calls[0][1]["symbol"] == symbol.upper() + "USDT"

    @pytest.mark.asyncio
    async def test_region_block_falls_back_once(self, config):
        client, session = make_client(
            config,
            FakeResponse(451, b'{"code": 0, "msg": "restricted location"}'),
            FakeResponse(200, KLINES),
        )

        points = await client.fetch_klines("ETH", ChartInterval.ONE_DAY)

        assert len(points) == 2
        assert [url for url, _ in session.calls] == [
            "https://api.binance.com/api/v3/klines",
            "https://api.binance.us/api/v3/klines",
        ]
        assert session.calls[0][1] == session.calls[1][1]

    @pytest.mark.asyncio
    async def test_fallback_also_blocked(self, config):
        client, session = make_client(config, FakeResponse(451), FakeResponse(451))

        with pytest.raises(TransportError) as exc_info:
            await client.fetch_klines("BTC", ChartInterval.ONE_DAY)

        assert exc_info.value.status_code == 451
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_server_error_not_retried(self, config):
        client, session = make_client(config, FakeResponse(500, b"oops"))

        with pytest.raises(TransportError) as exc_info:
            await client.fetch_klines("BTC", ChartInterval.ONE_DAY)

        assert exc_info.value.status_code == 500
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        aiohttp.ClientConnectionError("connection refused"),
        asyncio.TimeoutError(),
    ])
    async def test_network_failure(self, config, error):
        client, _ = make_client(config, error)

        with pytest.raises(TransportError) as exc_info:
            await client.fetch_klines("BTC", ChartInterval.ONE_DAY)

        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_empty_body(self, config):
        client, _ = make_client(config, FakeResponse(200, b""))

        with pytest.raises(DecodeError):
            await client.fetch_klines("BTC", ChartInterval.ONE_DAY)

    @pytest.mark.asyncio
    async def test_wrong_shape(self, config):
        client, _ = make_client(config, FakeResponse(200, {"klines": []}))

        with pytest.raises(DecodeError):
            await client.fetch_klines("BTC", ChartInterval.ONE_DAY)

    @pytest.mark.asyncio
    async def test_empty_batch_is_empty_result(self, config):
        client, _ = make_client(config, FakeResponse(200, []))
        assert await client.fetch_klines("BTC", ChartInterval.ONE_DAY) == []

    @pytest.mark.asyncio
    async def test_close_leaves_borrowed_session(self, config):
        client, session = make_client(config)
        await client.close()
        assert client._session is session


def trade(price, t_ms=1_700_000_000_000):
    return {"e": "trade", "p": str(price), "T": t_ms}


def make_stream(config, clock, ws_session=None, **agg_kwargs):
    aggregator = LiveTickAggregator(capacity=config.live_capacity, clock=clock, **agg_kwargs)
    return LiveTradeStream("btc", config=config, aggregator=aggregator,
                           session=ws_session, clock=clock)


class TestLiveTradeStream:
    def test_ws_url(self, config, clock):
        stream = make_stream(config, clock)
        assert stream._build_ws_url() == "wss://stream.binance.com:9443/ws/btcusdt@trade"

    def test_ws_url_for_usd_stablecoin(self, config, clock):
        stream = LiveTradeStream("usdc", config=config, clock=clock)
        assert stream._build_ws_url().endswith("/ws/usdcusdt@trade")

    def test_message_publishes_snapshot(self, config, clock):
        stream = make_stream(config, clock)
        seen = []
        stream.add_listener(seen.append)

        stream._handle_ws_message(text_message(trade(64000.5)).data)

        assert len(seen) == 1
        assert seen[0].points == [ChartPoint(1_700_000_000.0, 64000.5)]
        assert seen[0].symbol == "BTC"

    def test_dropped_and_malformed_messages_do_not_publish(self, config, clock):
        stream = make_stream(config, clock)
        stream._handle_ws_message(text_message(trade(1)).data)
        seen = []
        stream.add_listener(seen.append)

        stream._handle_ws_message(text_message(trade(2)).data)   # same second
        stream._handle_ws_message("{not json")
        stream._handle_ws_message(text_message([1, 2, 3]).data)
        stream._handle_ws_message(text_message({"p": "x", "T": 1}).data)

        assert seen == []
        assert stream.message_count == 5

    def test_unsubscribe(self, config, clock):
        stream = make_stream(config, clock)
        seen = []
        unsubscribe = stream.add_listener(seen.append)
        unsubscribe()
        unsubscribe()
        stream._handle_ws_message(text_message(trade(1)).data)
        assert seen == []

    def test_stop_is_idempotent(self, config, clock):
        stream = make_stream(config, clock)
        stream.stop()
        stream.stop()
        assert stream.status == STOPPED
        assert not stream.running

    @pytest.mark.asyncio
    async def test_held_point_flushed_by_timer(self, config, clock):
        stream = make_stream(config, clock, emit_interval=2.0)
        stream._handle_ws_message(text_message(trade(10)).data)
        clock.advance(1.0)
        stream._handle_ws_message(text_message(trade(11)).data)

        assert stream._flush_handle is not None
        assert len(stream.aggregator.window) == 1

        clock.advance(1.0)
        stream._on_flush_timer()

        assert [p.price for p in stream.aggregator.window] == [10.0, 11.0]
        assert stream._flush_handle is None

    @pytest.mark.asyncio
    async def test_stop_cancels_flush_timer(self, config, clock):
        stream = make_stream(config, clock, emit_interval=2.0)
        stream._handle_ws_message(text_message(trade(10)).data)
        clock.advance(1.0)
        stream._handle_ws_message(text_message(trade(11)).data)
        handle = stream._flush_handle

        stream.stop()
        stream.stop()

        assert handle.cancelled()
        assert stream._flush_handle is None

    @pytest.mark.asyncio
    async def test_error_frame_is_terminal(self, config, clock):
        ws = FakeWebSocket([text_message(trade(10)), error_message()],
                           exception=RuntimeError("socket reset"))
        stream = make_stream(config, clock, ws_session=FakeWsSession(ws))

        await stream.run()

        assert stream.status == FAILED
        assert stream.error == "socket reset"
        assert [p.price for p in stream.aggregator.window] == [10.0]

    @pytest.mark.asyncio
    async def test_server_close_is_terminal(self, config, clock):
        stream = make_stream(config, clock, ws_session=FakeWsSession(FakeWebSocket([])))
        await stream.run()
        assert stream.status == FAILED
        assert stream.error == "Connection closed"

    @pytest.mark.asyncio
    async def test_connect_failure(self, config, clock):
        ws_session = FakeWsSession(error=aiohttp.ClientConnectionError("refused"))
        stream = make_stream(config, clock, ws_session=ws_session)

        await stream.run()

        assert stream.status == FAILED
        assert stream.error == "refused"
        assert ws_session.urls == ["wss://stream.binance.com:9443/ws/btcusdt@trade"]

    @pytest.mark.asyncio
    async def test_start_resets_and_stop_cancels(self, config, clock):
        ws_session = FakeWsSession(FakeWebSocket([]))
        stream = make_stream(config, clock, ws_session=ws_session)
        stream.aggregator.offer(trade(1), now=BASE_TIME)

        stream.start()
        assert stream.status == CONNECTING
        assert len(stream.aggregator.window) == 0
        assert stream.running

        await stream.aclose()
        assert stream.status == STOPPED
        assert not stream.running

    @pytest.mark.asyncio
    async def test_restart_switches_symbol_and_resets(self, config, clock):
        ws_session = FakeWsSession(IdleWebSocket())
        stream = make_stream(config, clock, ws_session=ws_session)
        seen = []
        stream.add_listener(seen.append)

        stream.start()
        await asyncio.sleep(0)
        assert stream.status == STREAMING
        stream._handle_ws_message(text_message(trade(10)).data)
        assert stream.aggregator.last_accepted_time == BASE_TIME
        old_task = stream._task

        stream.restart("eth")
        with contextlib.suppress(asyncio.CancelledError):
            await old_task
        await asyncio.sleep(0)

        assert old_task.cancelled()
        assert stream.symbol == "ETH"
        assert stream.aggregator.last_accepted_time == EPOCH
        assert len(stream.aggregator.window) == 0
        assert stream.running
        assert ws_session.urls == [
            "wss://stream.binance.com:9443/ws/btcusdt@trade",
            "wss://stream.binance.com:9443/ws/ethusdt@trade",
        ]
        assert [s.status for s in seen[-2:]] == [CONNECTING, STREAMING]
        assert seen[-1].symbol == "ETH" and seen[-1].points == []

        await stream.aclose()


class IdleWebSocket(FakeWebSocket):
    """Open socket that never delivers a message."""

    def __init__(self) -> None:
        super().__init__([])

    async def __anext__(self):
        await asyncio.Event().wait()
