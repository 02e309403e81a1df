"""
Chart view state.

State is an immutable ChartState; transitions are pure functions returning
a new state. StateHub owns the current state and notifies subscribers.
Each load is stamped with a generation number and completions from an
older generation are ignored, so the latest request always wins.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, NamedTuple, Optional

from ..datafeed.intervals import ChartInterval
from ..types import ChartPoint, LiveSnapshot

logger = logging.getLogger(__name__)

IDLE = "idle"
LOADING = "loading"
READY = "ready"
EMPTY = "empty"
FAILED = "failed"


class ChartState(NamedTuple):
    symbol: str
    interval: ChartInterval
    status: str = IDLE
    points: tuple[ChartPoint, ...] = ()
    error: Optional[str] = None
    generation: int = 0

    @property
    def last_price(self) -> Optional[float]:
        return self.points[-1].price if self.points else None


def begin_load(state: ChartState, symbol: str, interval: ChartInterval) -> ChartState:
    return state._replace(
        symbol=symbol.upper(),
        interval=interval,
        status=LOADING,
        points=(),
        error=None,
        generation=state.generation + 1,
    )


def load_succeeded(state: ChartState, generation: int, points: list[ChartPoint]) -> ChartState:
    if generation != state.generation:
        return state
    return state._replace(status=READY if points else EMPTY, points=tuple(points), error=None)


def load_failed(state: ChartState, generation: int, message: str) -> ChartState:
    if generation != state.generation:
        return state
    return state._replace(status=FAILED, points=(), error=message)


def live_updated(state: ChartState, generation: int, snapshot: LiveSnapshot) -> ChartState:
    """Fold a live stream snapshot into the chart state."""
    if generation != state.generation:
        return state
    if snapshot.status == "failed":
        return state._replace(status=FAILED, error=snapshot.error or "Stream failed")
    if snapshot.status == "stopped":
        return state
    points = tuple(snapshot.points)
    # Live chart shows loading until the first point arrives
    return state._replace(status=READY if points else LOADING, points=points, error=None)


class StateHub:
    """Holds the current ChartState and fans out changes."""

    def __init__(self, initial: ChartState) -> None:
        self._state = initial
        self._subscribers: list[Callable[[ChartState], None]] = []

    @property
    def state(self) -> ChartState:
        return self._state

    def subscribe(self, callback: Callable[[ChartState], None]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def dispatch(self, transition: Callable[..., ChartState], *args: Any) -> ChartState:
        """Apply transition(state, *args); notify only if the state changed."""
        new_state = transition(self._state, *args)
        if new_state is not self._state:
            self._state = new_state
            for callback in list(self._subscribers):
                callback(new_state)
        return self._state
