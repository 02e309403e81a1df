"""
Market dashboard TUI using Textual.

Displays:
- Top: status bar (symbol, interval, last price, load state)
- Left: price chart as a sparkline, redrawn on a 1-second clock; below it
  the saved watch-list quotes and the portfolio allocation
- Right: market heat map (treemap) and Fear & Greed sentiment

Performance notes:
- Chart redraws are driven by state changes plus one clock tick per second
- Heat map layout is recomputed only when tiles or panel size change
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Optional

import aiohttp
from rich.console import RenderableType
from rich.style import Style
from rich.text import Text

from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Footer, Static

from ..datafeed.binance_client import BinanceClient
from ..datafeed.chart_model import ChartModel
from ..datafeed.coingecko import CoinGeckoClient
from ..datafeed.intervals import LIVE_WINDOW_SEC, ChartInterval, binance_pair
from ..datafeed.poller import Poller
from ..datafeed.sentiment import fetch_fear_greed, sentiment_insight
from ..engine.state import EMPTY, FAILED, LOADING
from ..engine.treemap import change_color, heat_map_layout
from ..errors import StorageError
from ..store import KeyValueStore, Watchlist, portfolio_allocation, revalue_holdings
from ..types import Rect

if TYPE_CHECKING:
    from ..config import SageConfig
    from ..engine.state import ChartState
    from ..errors import SageError
    from ..store import Holding
    from ..types import ChartPoint, FearGreedReading, HeatMapTile, MarketCoin, SentimentSnapshot

logger = logging.getLogger(__name__)

# Color scheme (dark theme)
UP_COLOR = "#22c55e"       # Green
DOWN_COLOR = "#ef4444"     # Red
LINE_COLOR = "#facc15"     # Yellow
TEXT_COLOR = "#f8fafc"
HEADER_COLOR = "#94a3b8"

SPARK_CHARS = "▁▂▃▄▅▆▇█"

CLASSIFICATION_COLORS = {
    "extreme fear": "red",
    "fear": "dark_orange",
    "neutral": "yellow",
    "greed": "green",
    "extreme greed": "spring_green1",
}


def format_price(value: float) -> str:
    """Dollar price; sub-dollar prices keep up to 8 decimals."""
    if value < 1:
        text = f"{value:,.8f}".rstrip("0")
        if len(text.split(".")[1]) < 2:
            text = f"{value:,.2f}"
        return f"${text}"
    return f"${value:,.2f}"


def sparkline(points: list[ChartPoint], width: int) -> str:
    """Resample the series to `width` columns and draw it with block characters."""
    if not points or width <= 0:
        return ""
    prices = [p.price for p in points]
    if len(prices) > width:
        step = len(prices) / width
        prices = [prices[min(len(prices) - 1, int(i * step))] for i in range(width)]
    lo, hi = min(prices), max(prices)
    span = hi - lo
    top = len(SPARK_CHARS) - 1
    if span <= 0:
        return SPARK_CHARS[top // 2] * len(prices)
    return "".join(SPARK_CHARS[round((p - lo) / span * top)] for p in prices)


def render_heat_map(tiles: list[HeatMapTile], width: int, height: int, top_count: int = 10) -> Text:
    """Rasterize the treemap onto a width x height character grid."""
    if width <= 0 or height <= 0 or not tiles:
        return Text("No data", style="dim")

    grid: list[list[Optional[int]]] = [[None] * width for _ in range(height)]
    labels: dict[tuple[int, int], str] = {}
    cells = heat_map_layout(tiles, Rect(0.0, 0.0, float(width), float(height)), top_count)

    for index, (item, rect) in enumerate(cells):
        x0, y0 = round(rect.x), round(rect.y)
        x1, y1 = round(rect.x + rect.width), round(rect.y + rect.height)
        for row in range(max(0, y0), min(height, y1)):
            for col in range(max(0, x0), min(width, x1)):
                grid[row][col] = index
        label = f"{item.key} {item.value:+.1f}%"
        if x1 - x0 >= len(label) and y1 - y0 >= 1:
            labels[(y0, x0)] = label
        elif x1 - x0 >= len(item.key) and y1 - y0 >= 1:
            labels[(y0, x0)] = item.key

    styles = [Style(color=TEXT_COLOR, bgcolor=change_color(item.value), bold=True)
              for item, _ in cells]

    text = Text()
    for row in range(height):
        col = 0
        while col < width:
            index = grid[row][col]
            style = styles[index] if index is not None else Style()
            label = labels.get((row, col))
            if label:
                text.append(label, style=style)
                col += len(label)
            else:
                text.append(" ", style=style)
                col += 1
        if row < height - 1:
            text.append("\n")
    return text


def _change_text(pct: Optional[float]) -> tuple[str, str]:
    if pct is None:
        return "     -", "dim"
    return f"{pct:+6.2f}%", UP_COLOR if pct >= 0 else DOWN_COLOR


def render_watchlist(coins: list[MarketCoin]) -> Text:
    """One row per quoted coin: symbol, price, 24h change."""
    if not coins:
        return Text("Watch-list empty", style="dim")
    text = Text()
    for i, coin in enumerate(coins):
        price = format_price(coin.current_price) if coin.current_price is not None else "-"
        change, style = _change_text(coin.price_change_percentage_24h)
        text.append(f"{coin.symbol.upper():<6}", style="bold")
        text.append(f"{price:>16}  ", style=TEXT_COLOR)
        text.append(change, style=style)
        if i < len(coins) - 1:
            text.append("\n")
    return text


def render_portfolio(holdings: list[Holding]) -> Text:
    """Total value plus each holding's share of it."""
    allocation = portfolio_allocation(holdings)
    if not allocation:
        return Text("No holdings", style="dim")
    total = sum(h.total_value for h in holdings)
    text = Text.assemble(("Total ", "dim"), (format_price(total), f"bold {TEXT_COLOR}"))
    for holding, (symbol, fraction) in zip(holdings, allocation):
        change, style = _change_text(holding.daily_change_percent)
        text.append(f"\n{symbol:<6}", style="bold")
        text.append(f"{fraction * 100:5.1f}%  ", style=HEADER_COLOR)
        text.append(f"{format_price(holding.total_value):>14}  ", style=TEXT_COLOR)
        text.append(change, style=style)
    return text


class StatusBar(Static):
    """Symbol, interval, last price and load state."""

    DEFAULT_CSS = """
    StatusBar {
        dock: top;
        height: 1;
        padding: 0 2;
        background: #0f172a;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._state: ChartState | None = None

    def update_state(self, state: ChartState) -> None:
        self._state = state
        self.refresh()

    def render(self) -> RenderableType:
        if self._state is None:
            return Text("Connecting...", style="dim")
        s = self._state
        last = s.last_price
        parts = [
            Text(f" {s.symbol} ", style="bold white on #1e40af"),
            Text(f" {binance_pair(s.symbol)}", style="dim"),
            Text("  "),
            Text(s.interval.value, style="bold yellow"),
            Text("  Last: ", style="dim"),
            Text(format_price(last) if last is not None else "-", style=TEXT_COLOR),
            Text("  │  ", style="dim"),
            Text(s.status, style="red" if s.status == FAILED else "cyan"),
        ]
        result = Text()
        for p in parts:
            result.append(p)
        return result


class ChartPanel(Static):
    """Price chart for the current selection."""

    DEFAULT_CSS = """
    ChartPanel {
        width: 100%;
        height: 2fr;
        padding: 1 1;
        border: round #334155;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._state: ChartState | None = None
        self.now = time.time()

    def update_state(self, state: ChartState) -> None:
        self._state = state
        self.refresh()

    def tick(self) -> None:
        """1-second clock; live charts slide their time axis with it."""
        self.now = time.time()
        if self._state is not None and self._state.interval.is_live:
            self.refresh()

    def render(self) -> RenderableType:
        s = self._state
        if s is None or s.status == LOADING:
            return Text("Loading...", style="dim")
        if s.status == FAILED:
            return Text.assemble(
                ("Error loading chart\n", "bold red"),
                (s.error or "", "dim"),
                ("\n\nPress r to retry", "yellow"),
            )
        if s.status == EMPTY or not s.points:
            return Text("No data", style="dim")

        width = max(1, self.size.width - 4)
        points = list(s.points)
        if s.interval.is_live:
            cutoff = self.now - LIVE_WINDOW_SEC
            points = [p for p in points if p.timestamp >= cutoff] or points[-1:]

        first, last = points[0].price, points[-1].price
        change = (last - first) / first * 100 if first else 0.0
        color = UP_COLOR if change >= 0 else DOWN_COLOR
        lo = min(p.price for p in points)
        hi = max(p.price for p in points)

        return Text.assemble(
            (f"{format_price(last)}  ", f"bold {TEXT_COLOR}"),
            (f"{change:+.2f}%\n\n", color),
            (sparkline(points, width), LINE_COLOR),
            (f"\n\nHigh {format_price(hi)}   Low {format_price(lo)}   "
             f"Points {len(points)}", HEADER_COLOR),
        )


class HeatMapPanel(Static):
    """Treemap of the top coins by market cap."""

    DEFAULT_CSS = """
    HeatMapPanel {
        height: 2fr;
        border: round #334155;
    }
    """

    def __init__(self, top_count: int = 10) -> None:
        super().__init__()
        self.top_count = top_count
        self._tiles: list[HeatMapTile] = []
        self._error: Optional[str] = None

    def update_tiles(self, tiles: list[HeatMapTile]) -> None:
        self._tiles = tiles
        self._error = None
        self.refresh()

    def show_error(self, error: SageError) -> None:
        self._error = str(error)
        self.refresh()

    def render(self) -> RenderableType:
        if self._error and not self._tiles:
            return Text(f"Heat map unavailable: {self._error}", style="red")
        return render_heat_map(self._tiles, self.size.width, self.size.height, self.top_count)


class SentimentPanel(Static):
    """Fear & Greed now / yesterday / last week."""

    DEFAULT_CSS = """
    SentimentPanel {
        height: 1fr;
        padding: 0 1;
        border: round #334155;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._snapshot: SentimentSnapshot | None = None
        self._loaded = False
        self._error: Optional[str] = None

    def update_snapshot(self, snapshot: Optional[SentimentSnapshot]) -> None:
        self._snapshot = snapshot
        self._loaded = True
        self._error = None
        self.refresh()

    def show_error(self, error: SageError) -> None:
        self._error = str(error)
        self.refresh()

    def _row(self, label: str, reading: Optional[FearGreedReading]) -> Text:
        if reading is None:
            return Text.assemble((f"{label:<10}", "dim"), ("-", "dim"))
        color = CLASSIFICATION_COLORS.get(reading.classification.lower(), "grey50")
        return Text.assemble(
            (f"{label:<10}", "dim"),
            (f"{reading.value} {reading.classification.title()}", f"bold {color}"),
        )

    def render(self) -> RenderableType:
        if self._error and self._snapshot is None:
            return Text(f"Sentiment unavailable: {self._error}", style="red")
        if not self._loaded:
            return Text("Loading Fear & Greed...", style="dim")
        if self._snapshot is None:
            return Text("No data available.", style="dim")
        snap = self._snapshot
        result = Text("Market Sentiment\n", style="bold white")
        for label, reading in (("Now", snap.now), ("Yesterday", snap.yesterday),
                               ("Last Week", snap.last_week)):
            result.append(self._row(label, reading))
            result.append("\n")
        result.append(sentiment_insight(snap.now.value), style="italic")
        return result


class WatchlistPanel(Static):
    """Quotes for the saved watch-list."""

    DEFAULT_CSS = """
    WatchlistPanel {
        width: 1fr;
        height: 100%;
        padding: 0 1;
        border: round #334155;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._coins: list[MarketCoin] = []
        self._loaded = False
        self._error: Optional[str] = None

    def update_coins(self, coins: list[MarketCoin]) -> None:
        self._coins = coins
        self._loaded = True
        self._error = None
        self.refresh()

    def show_error(self, error: SageError) -> None:
        self._error = str(error)
        self.refresh()

    def render(self) -> RenderableType:
        if self._error and not self._coins:
            return Text(f"Watch-list unavailable: {self._error}", style="red")
        if not self._loaded:
            return Text("Loading watch-list...", style="dim")
        return render_watchlist(self._coins)


class PortfolioPanel(Static):
    """Holdings and their allocation."""

    DEFAULT_CSS = """
    PortfolioPanel {
        width: 1fr;
        height: 100%;
        padding: 0 1;
        border: round #334155;
    }
    """

    def __init__(self) -> None:
        super().__init__()
        self._holdings: list[Holding] = []
        self._error: Optional[str] = None

    def update_holdings(self, holdings: list[Holding]) -> None:
        self._holdings = holdings
        self.refresh()

    def show_error(self, error: SageError) -> None:
        self._error = str(error)
        self.refresh()

    def render(self) -> RenderableType:
        if self._error and not self._holdings:
            return Text(f"Portfolio unavailable: {self._error}", style="red")
        return render_portfolio(self._holdings)


class DashboardApp(App):
    """Main CryptoSage application."""

    CSS = """
    Screen {
        background: #0f172a;
    }

    #body {
        width: 100%;
        height: 100%;
    }

    #main {
        width: 2fr;
        height: 100%;
    }

    #quotes {
        height: 1fr;
    }

    #side {
        width: 1fr;
        height: 100%;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("r", "retry", "Retry"),
        ("l", "toggle_live", "Live"),
    ]

    def __init__(
        self,
        config: SageConfig,
        symbol: str = "BTC",
        interval: ChartInterval = ChartInterval.ONE_DAY,
        top_count: int = 10,
    ) -> None:
        super().__init__()
        self.config = config
        self.symbol = symbol.upper()
        self.interval = interval
        self._previous_interval = interval if not interval.is_live else ChartInterval.ONE_DAY

        self._status_bar = StatusBar()
        self._chart = ChartPanel()
        self._heat_map = HeatMapPanel(top_count)
        self._sentiment = SentimentPanel()
        self._watchlist_panel = WatchlistPanel()
        self._portfolio = PortfolioPanel()

        self.store: Optional[KeyValueStore] = None
        self.watchlist = Watchlist()
        self.holdings: list[Holding] = []

        self._session: Optional[aiohttp.ClientSession] = None
        self._client: Optional[BinanceClient] = None
        self.model: Optional[ChartModel] = None
        self._pollers: list[Poller] = []

    def compose(self) -> ComposeResult:
        yield self._status_bar
        yield Horizontal(
            Vertical(
                self._chart,
                Horizontal(self._watchlist_panel, self._portfolio, id="quotes"),
                id="main",
            ),
            Vertical(self._heat_map, self._sentiment, id="side"),
            id="body",
        )
        yield Footer()

    async def on_mount(self) -> None:
        self._session = aiohttp.ClientSession()
        self._client = BinanceClient(self.config, session=self._session)
        self.model = ChartModel(self._client, self.symbol, self.interval)
        self.model.hub.subscribe(self._on_chart_state)
        self._load_user_state()

        coingecko = CoinGeckoClient(self._session, self.config)
        self._pollers = [
            Poller(coingecko.fetch_heat_map, self.config.heatmap_refresh,
                   self._heat_map.update_tiles, self._heat_map.show_error, name="heat map"),
            Poller(lambda: fetch_fear_greed(self._session, self.config),
                   self.config.sentiment_refresh,
                   self._sentiment.update_snapshot, self._sentiment.show_error, name="sentiment"),
            Poller(lambda: coingecko.fetch_markets(self.watchlist.ids), self.config.heatmap_refresh,
                   self._on_quotes, self._watchlist_panel.show_error, name="watch-list"),
        ]
        for poller in self._pollers:
            poller.start()

        self.set_interval(1.0, self._chart.tick)
        self.run_worker(self.model.select(self.symbol, self.interval), exclusive=True)

    async def on_unmount(self) -> None:
        for poller in self._pollers:
            poller.stop()
        if self.model is not None:
            self.model.stop_stream()
        if self._session is not None:
            await self._session.close()

    def _load_user_state(self) -> None:
        """Watch-list and holdings from the data directory; defaults on a bad store."""
        try:
            self.store = KeyValueStore(self.config.data_dir)
            self.watchlist = self.store.load_watchlist()
            self.holdings = self.store.load_holdings()
        except StorageError as e:
            logger.warning("Saved state unavailable, using defaults: %s", e)
            self._portfolio.show_error(e)
        self._portfolio.update_holdings(self.holdings)

    def _on_quotes(self, coins: list[MarketCoin]) -> None:
        self._watchlist_panel.update_coins(coins)
        revalued = revalue_holdings(self.holdings, coins)
        if revalued == self.holdings:
            return
        self.holdings = revalued
        self._portfolio.update_holdings(revalued)
        if self.store is not None:
            try:
                self.store.save_holdings(revalued)
            except StorageError as e:
                logger.warning("Could not save holdings: %s", e)

    def _on_chart_state(self, state: ChartState) -> None:
        self._status_bar.update_state(state)
        self._chart.update_state(state)

    def action_retry(self) -> None:
        """Re-issue the current chart request (bound to 'r')."""
        if self.model is not None:
            self.run_worker(self.model.retry(), exclusive=True)

    def action_toggle_live(self) -> None:
        """Switch between LIVE and the last historical interval (bound to 'l')."""
        if self.model is None:
            return
        if self.interval.is_live:
            self.interval = self._previous_interval
        else:
            self._previous_interval = self.interval
            self.interval = ChartInterval.LIVE
        self.run_worker(self.model.select(self.symbol, self.interval), exclusive=True)


async def run_ui(
    config: SageConfig,
    symbol: str,
    interval: ChartInterval,
    top_count: int = 10,
) -> None:
    """Run the TUI application."""
    app = DashboardApp(config, symbol, interval, top_count)
    await app.run_async()
