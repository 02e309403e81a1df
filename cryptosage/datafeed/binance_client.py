"""
Binance client: historical klines over REST and the live trade stream.

Handles:
1. Kline download with a one-shot fallback to Binance.US on region block
2. Trade WebSocket feeding the live tick aggregator
3. Timer-driven flush of throttled points
4. Snapshot push to registered listeners

Performance notes:
- orjson for JSON parsing
- Minimal logging in hot path
- All I/O is non-blocking (pure asyncio)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

import aiohttp
import orjson

from ..config import REGION_BLOCKED_STATUS, SageConfig
from ..engine.candles import normalize_klines
from ..engine.live import LiveTickAggregator
from ..types import ChartPoint, LiveSnapshot
from .http import check_status, fetch_body
from .intervals import ChartInterval, usdt_pair

logger = logging.getLogger(__name__)

KLINES_PATH = "/api/v3/klines"

# Stream states
CONNECTING = "connecting"
STREAMING = "streaming"
FAILED = "failed"
STOPPED = "stopped"


class BinanceClient:
    """
    Async Binance REST client for chart history.

    Usage:
        async with BinanceClient() as client:
            points = await client.fetch_klines("BTC", ChartInterval.ONE_HOUR)
    """

    def __init__(
        self,
        config: Optional[SageConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.config = config or SageConfig()
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> BinanceClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def _klines_params(self, symbol: str, interval: ChartInterval) -> dict[str, str]:
        return {
            "symbol": usdt_pair(symbol),
            "interval": interval.binance_interval,
            "limit": str(interval.binance_limit),
        }

    async def fetch_klines(self, symbol: str, interval: ChartInterval) -> list[ChartPoint]:
        """
        Fetch and normalize the close series for symbol/interval.

        A 451 from the primary endpoint is retried once against the fallback.

        Raises:
            TransportError: network failure or error status
            DecodeError: empty body or unexpected payload shape
        """
        session = self._get_session()
        params = self._klines_params(symbol, interval)
        timeout = self.config.request_timeout

        url = self.config.binance_rest + KLINES_PATH
        status, body = await fetch_body(session, url, params, timeout)

        if status == REGION_BLOCKED_STATUS:
            logger.info("Region blocked on %s, retrying on %s",
                        self.config.binance_rest, self.config.binance_rest_fallback)
            url = self.config.binance_rest_fallback + KLINES_PATH
            status, body = await fetch_body(session, url, params, timeout)

        check_status(status, url)
        points = normalize_klines(body)
        logger.debug("Fetched %d klines for %s %s", len(points), params["symbol"], interval.value)
        return points


class LiveTradeStream:
    """
    Live trade stream for one symbol, rate-limited into a bounded window.

    Connection errors are terminal: the stream stays FAILED until the caller
    restarts it. stop() may be called any number of times.

    Usage:
        stream = LiveTradeStream("BTC")
        stream.add_listener(on_snapshot)
        stream.start()
        ...
        stream.stop()
    """

    def __init__(
        self,
        symbol: str,
        config: Optional[SageConfig] = None,
        aggregator: Optional[LiveTickAggregator] = None,
        session: Optional[aiohttp.ClientSession] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or SageConfig()
        self.symbol = symbol.upper()
        self.aggregator = aggregator or LiveTickAggregator(
            capacity=self.config.live_capacity, clock=clock
        )
        self._clock = clock
        self._session = session

        self.status = STOPPED
        self.error: Optional[str] = None

        self._task: Optional[asyncio.Task] = None
        self._flush_handle: Optional[asyncio.TimerHandle] = None
        self._listeners: list[Callable[[LiveSnapshot], None]] = []

        self.message_count = 0

    def _build_ws_url(self) -> str:
        stream = f"{usdt_pair(self.symbol).lower()}@trade"
        return f"{self.config.binance_ws}/ws/{stream}"

    def add_listener(self, callback: Callable[[LiveSnapshot], None]) -> Callable[[], None]:
        """Register a snapshot callback. Returns an unsubscribe function."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Reset the window and connect. Must be called from the event loop."""
        if self.running:
            return
        self.aggregator.reset()
        self.error = None
        self.status = CONNECTING
        self._publish()
        self._task = asyncio.get_running_loop().create_task(self.run())

    def stop(self) -> None:
        """Cancel the socket task and any pending flush timer."""
        self._cancel_flush()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if self.status != STOPPED:
            self.status = STOPPED
            self._publish()

    def restart(self, symbol: Optional[str] = None) -> None:
        self.stop()
        if symbol:
            self.symbol = symbol.upper()
        self.start()

    async def aclose(self) -> None:
        """stop() and wait for the socket task to unwind."""
        task = self._task
        self.stop()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def run(self) -> None:
        """Connect and consume until error, server close or cancellation."""
        try:
            if self._session is not None:
                await self._consume(self._session)
            else:
                async with aiohttp.ClientSession() as session:
                    await self._consume(session)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._fail(str(e) or type(e).__name__)
        finally:
            self._cancel_flush()

    async def _consume(self, session: aiohttp.ClientSession) -> None:
        ws_url = self._build_ws_url()
        logger.info("Connecting live stream %s", ws_url)

        async with session.ws_connect(ws_url, heartbeat=30.0) as ws:
            self.status = STREAMING
            self._publish()

            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_ws_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._handle_ws_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    exc = ws.exception()
                    self._fail(str(exc) if exc else "WebSocket error")
                    return

        if self.status == STREAMING:
            self._fail("Connection closed")

    def _handle_ws_message(self, raw: str | bytes) -> None:
        """
        Handle one trade message.

        HOT PATH - called for every message.
        """
        self.message_count += 1
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError:
            logger.debug("Dropping undecodable message")
            return
        if not isinstance(data, dict):
            return

        if self.aggregator.offer(data):
            self._publish()
        self._schedule_flush()

    def _schedule_flush(self) -> None:
        """Arm a one-shot timer for the point held by the emission gate."""
        if self._flush_handle is not None:
            return
        deadline = self.aggregator.flush_deadline
        if deadline is None:
            return
        delay = max(0.0, deadline - self._clock())
        self._flush_handle = asyncio.get_running_loop().call_later(delay, self._on_flush_timer)

    def _on_flush_timer(self) -> None:
        self._flush_handle = None
        if self.aggregator.flush():
            self._publish()
        self._schedule_flush()

    def _cancel_flush(self) -> None:
        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

    def _fail(self, message: str) -> None:
        logger.warning("Live stream for %s failed: %s", self.symbol, message)
        self.status = FAILED
        self.error = message
        self._cancel_flush()
        self._publish()

    def snapshot(self) -> LiveSnapshot:
        return LiveSnapshot(
            symbol=self.symbol,
            points=self.aggregator.window.points(),
            status=self.status,
            error=self.error,
        )

    def _publish(self) -> None:
        snapshot = self.snapshot()
        for callback in list(self._listeners):
            callback(snapshot)
