"""
Chart model: binds the Binance client and live stream to the state hub.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..engine.state import (
    ChartState,
    StateHub,
    begin_load,
    live_updated,
    load_failed,
    load_succeeded,
)
from ..errors import FetchError
from .binance_client import BinanceClient, LiveTradeStream
from .intervals import ChartInterval

logger = logging.getLogger(__name__)


class ChartModel:
    """
    Drives one chart.

    select() issues a historical fetch or, for LIVE, starts a trade stream.
    A newer select() supersedes older ones; late completions are dropped by
    the generation check in the state transitions.
    """

    def __init__(
        self,
        client: BinanceClient,
        symbol: str = "BTC",
        interval: ChartInterval = ChartInterval.ONE_DAY,
        hub: Optional[StateHub] = None,
        stream_factory: Optional[Callable[[str], LiveTradeStream]] = None,
    ) -> None:
        self.client = client
        self.hub = hub or StateHub(ChartState(symbol=symbol.upper(), interval=interval))
        self._stream_factory = stream_factory or (
            lambda sym: LiveTradeStream(sym, config=client.config)
        )
        self.stream: Optional[LiveTradeStream] = None
        self._unsubscribe_stream: Optional[Callable[[], None]] = None

    @property
    def state(self) -> ChartState:
        return self.hub.state

    async def select(self, symbol: str, interval: ChartInterval) -> ChartState:
        self.stop_stream()
        state = self.hub.dispatch(begin_load, symbol, interval)
        generation = state.generation

        if interval.is_live:
            self._start_stream(state.symbol, generation)
            return self.hub.state

        try:
            points = await self.client.fetch_klines(state.symbol, interval)
        except FetchError as e:
            logger.warning("Chart load failed for %s %s: %s", state.symbol, interval.value, e)
            return self.hub.dispatch(load_failed, generation, str(e))
        return self.hub.dispatch(load_succeeded, generation, points)

    async def retry(self) -> ChartState:
        """Manual retry of the current selection."""
        return await self.select(self.state.symbol, self.state.interval)

    def _start_stream(self, symbol: str, generation: int) -> None:
        stream = self._stream_factory(symbol)
        self._unsubscribe_stream = stream.add_listener(
            lambda snapshot: self.hub.dispatch(live_updated, generation, snapshot)
        )
        self.stream = stream
        stream.start()

    def stop_stream(self) -> None:
        """Tear down the live stream, if any. Safe to call repeatedly."""
        if self._unsubscribe_stream is not None:
            self._unsubscribe_stream()
            self._unsubscribe_stream = None
        if self.stream is not None:
            self.stream.stop()
            self.stream = None
