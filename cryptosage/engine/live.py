"""
Live tick aggregation engine.

HOT PATH: offer() is called for every trade on the stream (can be 100s per
second for active symbols).

Two independent 1-second gates shape the output:
1. Ingestion gate - drops any tick arriving within 1s of the last accepted one
2. Emission gate - throttle, keep latest, at most one point per second

Accepted points land in a bounded FIFO window that the chart renders.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Any, Callable, Iterator, Optional

from ..types import ChartPoint, Tick

logger = logging.getLogger(__name__)

EPOCH = 0.0
DEFAULT_CAPACITY = 300
DEFAULT_INTERVAL_SEC = 1.0


def parse_tick(data: dict[str, Any]) -> Optional[Tick]:
    """
    Decode a Binance trade message ({"p": "price", "T": trade_time_ms, ...}).

    Returns None if the price or time field is missing or unparseable.
    """
    try:
        price = float(data['p'])
        event_time_ms = data['T']
    except (KeyError, TypeError, ValueError):
        return None
    if isinstance(event_time_ms, bool) or not isinstance(event_time_ms, (int, float)):
        return None
    if price != price:  # NaN
        return None
    return Tick(price=price, event_time_ms=int(event_time_ms))


class LiveWindow:
    """
    Bounded, ordered window of chart points.

    Invariant: len(window) <= capacity. Appending past capacity evicts the
    oldest point.
    """

    __slots__ = ('capacity', '_points')

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._points: deque[ChartPoint] = deque()

    def append(self, point: ChartPoint) -> Optional[ChartPoint]:
        """Append a point; returns the evicted point, if any."""
        self._points.append(point)
        if len(self._points) > self.capacity:
            return self._points.popleft()
        return None

    def clear(self) -> None:
        self._points.clear()

    def points(self) -> list[ChartPoint]:
        """Copy of the current series for rendering."""
        return list(self._points)

    @property
    def last(self) -> Optional[ChartPoint]:
        return self._points[-1] if self._points else None

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[ChartPoint]:
        return iter(self._points)


class EmissionThrottle:
    """
    Throttle that keeps the latest value.

    The first submission passes straight through. Submissions arriving inside
    the interval are held; a newer one replaces the held one. The held value
    is released by flush() once the interval since the last emission has
    elapsed.
    """

    __slots__ = ('interval', '_last_emit', '_pending')

    def __init__(self, interval: float = DEFAULT_INTERVAL_SEC) -> None:
        self.interval = interval
        self._last_emit: Optional[float] = None
        self._pending: Optional[ChartPoint] = None

    def submit(self, point: ChartPoint, now: float) -> Optional[ChartPoint]:
        """Returns the point if it may be emitted now, else holds it."""
        if self._last_emit is None or now - self._last_emit >= self.interval:
            self._last_emit = now
            self._pending = None
            return point
        self._pending = point
        return None

    def flush(self, now: float) -> Optional[ChartPoint]:
        """Release the held point if its slot has come."""
        if self._pending is None or self._last_emit is None:
            return None
        if now - self._last_emit < self.interval:
            return None
        point = self._pending
        self._pending = None
        self._last_emit = now
        return point

    @property
    def pending(self) -> Optional[ChartPoint]:
        return self._pending

    @property
    def deadline(self) -> Optional[float]:
        """Time at which the held point becomes due, None if nothing is held."""
        if self._pending is None or self._last_emit is None:
            return None
        return self._last_emit + self.interval

    def reset(self) -> None:
        self._last_emit = None
        self._pending = None


class LiveTickAggregator:
    """
    Turns a bursty tick stream into a smooth, bounded chart series.

    Thread-safety: NOT thread-safe. Designed for single-threaded async use.

    Usage:
        agg = LiveTickAggregator(capacity=300)
        if agg.offer({"p": "64000.1", "T": 1700000000123}):
            render(agg.window.points())
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        ingest_interval: float = DEFAULT_INTERVAL_SEC,
        emit_interval: float = DEFAULT_INTERVAL_SEC,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window = LiveWindow(capacity)
        self.ingest_interval = ingest_interval
        self.throttle = EmissionThrottle(emit_interval)
        self._clock = clock
        self.last_accepted_time: float = EPOCH

        self.accepted_count = 0
        self.dropped_count = 0
        self.malformed_count = 0

    def offer(self, data: dict[str, Any], now: Optional[float] = None) -> bool:
        """
        Offer one raw trade message.

        HOT PATH - called for every trade.

        Returns True if the window changed.
        """
        tick = parse_tick(data)
        if tick is None:
            self.malformed_count += 1
            logger.debug("Dropping malformed tick: %r", data)
            return False
        return self.offer_tick(tick, now)

    def offer_tick(self, tick: Tick, now: Optional[float] = None) -> bool:
        """Ingestion gate, then emission gate. Returns True if the window changed."""
        if now is None:
            now = self._clock()

        if now - self.last_accepted_time < self.ingest_interval:
            self.dropped_count += 1
            return False

        self.last_accepted_time = now
        self.accepted_count += 1

        point = ChartPoint(timestamp=tick.event_time_ms / 1000.0, price=tick.price)
        emitted = self.throttle.submit(point, now)
        if emitted is None:
            return False
        self.window.append(emitted)
        return True

    def flush(self, now: Optional[float] = None) -> bool:
        """Emit a held point if due. Returns True if the window changed."""
        if now is None:
            now = self._clock()
        emitted = self.throttle.flush(now)
        if emitted is None:
            return False
        self.window.append(emitted)
        return True

    @property
    def flush_deadline(self) -> Optional[float]:
        return self.throttle.deadline

    def reset(self) -> None:
        """Clear the window and both gates (symbol/interval change, restart)."""
        self.window.clear()
        self.throttle.reset()
        self.last_accepted_time = EPOCH
        self.accepted_count = 0
        self.dropped_count = 0
        self.malformed_count = 0
