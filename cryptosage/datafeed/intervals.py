"""
Chart intervals and Binance symbol helpers.
"""

from __future__ import annotations

from enum import Enum

# Base assets the chart knows Binance lists against USDT
SUPPORTED_SYMBOLS = frozenset({
    "BTC", "ETH", "SOL", "XRP", "BNB", "DOGE", "ADA", "APT", "ARB", "TRX",
    "MATIC", "DOT", "SHIB", "LINK", "LTC", "BCH", "ATOM", "FIL", "AVAX",
    "UNI", "XLM", "SUI", "PEPE", "OP", "QNT", "GRT", "ALGO", "ICP", "VET",
    "FTM", "NEAR", "AAVE", "WBTC", "TUSD", "USDC", "USDT", "BUSD", "DAI",
})

LIVE_WINDOW_SEC = 300


class ChartInterval(Enum):
    """Chart range selector. Value is the label shown in the UI."""

    LIVE = "LIVE"
    ONE_MIN = "1m"
    FIVE_MIN = "5m"
    FIFTEEN_MIN = "15m"
    THIRTY_MIN = "30m"
    ONE_HOUR = "1H"
    FOUR_HOUR = "4H"
    ONE_DAY = "1D"
    ONE_WEEK = "1W"
    ONE_MONTH = "1M"
    THREE_MONTH = "3M"
    ONE_YEAR = "1Y"
    THREE_YEAR = "3Y"
    ALL = "ALL"

    @property
    def binance_interval(self) -> str:
        """Kline interval code for the REST endpoint."""
        return _BINANCE_INTERVAL[self]

    @property
    def binance_limit(self) -> int:
        """Number of klines to request."""
        return _BINANCE_LIMIT[self]

    @property
    def is_live(self) -> bool:
        return self is ChartInterval.LIVE

    @classmethod
    def parse(cls, label: str) -> ChartInterval:
        """
        Resolve a UI label. Exact match first ("1M" month vs "1m" minute),
        then case-insensitive when that is unambiguous.
        """
        for member in cls:
            if member.value == label:
                return member
        matches = [m for m in cls if m.value.lower() == label.lower()]
        if len(matches) == 1:
            return matches[0]
        raise ValueError(f"Unknown chart interval: {label!r}")


_BINANCE_INTERVAL = {
    ChartInterval.LIVE: "1m",
    ChartInterval.ONE_MIN: "1m",
    ChartInterval.FIVE_MIN: "5m",
    ChartInterval.FIFTEEN_MIN: "15m",
    ChartInterval.THIRTY_MIN: "30m",
    ChartInterval.ONE_HOUR: "1h",
    ChartInterval.FOUR_HOUR: "4h",
    ChartInterval.ONE_DAY: "1d",
    ChartInterval.ONE_WEEK: "1w",
    ChartInterval.ONE_MONTH: "1M",
    ChartInterval.THREE_MONTH: "1d",
    ChartInterval.ONE_YEAR: "1d",
    ChartInterval.THREE_YEAR: "1d",
    ChartInterval.ALL: "1w",
}

_BINANCE_LIMIT = {
    ChartInterval.LIVE: LIVE_WINDOW_SEC,
    ChartInterval.ONE_MIN: 60,
    ChartInterval.FIVE_MIN: 48,
    ChartInterval.FIFTEEN_MIN: 24,
    ChartInterval.THIRTY_MIN: 24,
    ChartInterval.ONE_HOUR: 48,
    ChartInterval.FOUR_HOUR: 120,
    ChartInterval.ONE_DAY: 60,
    ChartInterval.ONE_WEEK: 52,
    ChartInterval.ONE_MONTH: 12,
    ChartInterval.THREE_MONTH: 90,
    ChartInterval.ONE_YEAR: 365,
    ChartInterval.THREE_YEAR: 1095,
    ChartInterval.ALL: 999,
}


def usdt_pair(symbol: str) -> str:
    """Market the chart trades on: always quoted in USDT ("usdc" -> "USDCUSDT")."""
    return symbol.strip().upper() + "USDT"


def binance_pair(symbol: str) -> str:
    """
    Display pair for the status bar. "btc" -> "BTCUSDT"; symbols already
    quoted in USD keep their quote ("BTC-USD" -> "BTCUSD").
    """
    upper = symbol.strip().upper()
    if "USD" in upper:
        return upper.replace("-", "")
    return upper + "USDT"


def is_supported_symbol(symbol: str) -> bool:
    return symbol.strip().upper() in SUPPORTED_SYMBOLS
