"""
Data types for CryptoSage.

Notes:
- Using NamedTuple for immutable, memory-efficient structures
- These are the UI-facing data structures; persisted records live in store.py
"""

from __future__ import annotations

from typing import NamedTuple, Optional


class ChartPoint(NamedTuple):
    """Single point of a price series."""
    timestamp: float  # Seconds since epoch
    price: float


class Tick(NamedTuple):
    """Single trade from the trade stream."""
    price: float
    event_time_ms: int


class Rect(NamedTuple):
    """Axis-aligned rectangle, origin at the top-left corner."""
    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height


class WeightedItem(NamedTuple):
    """Treemap input: weight drives the area, value drives the colour."""
    key: str
    weight: float
    value: float


class HeatMapTile(NamedTuple):
    """One coin on the heat map."""
    symbol: str
    pct_change: float  # 24h percent change
    market_cap: float

    def as_item(self) -> WeightedItem:
        return WeightedItem(self.symbol, self.market_cap, self.pct_change)


class MarketCoin(NamedTuple):
    """CoinGecko markets record used by the watch-list."""
    coin_id: str
    symbol: str
    name: Optional[str] = None
    current_price: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    total_volume: Optional[float] = None
    market_cap: Optional[float] = None
    circulating_supply: Optional[float] = None


class FearGreedReading(NamedTuple):
    """One Fear & Greed index value."""
    value: int            # 0..100
    classification: str   # e.g. "Extreme Fear"
    timestamp: int        # Seconds since epoch


class SentimentSnapshot(NamedTuple):
    """Current index plus the prior-period values, which may be missing."""
    now: FearGreedReading
    yesterday: Optional[FearGreedReading]
    last_week: Optional[FearGreedReading]


class LiveSnapshot(NamedTuple):
    """
    Live chart state pushed to stream listeners, at most once per second
    while streaming.
    """
    symbol: str
    points: list[ChartPoint]  # Ascending by timestamp
    status: str               # "connecting", "streaming", "failed", "stopped"
    error: Optional[str]
