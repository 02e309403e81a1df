"""
CryptoSage - crypto market charts, heat map and sentiment in the terminal.

Architecture:
- datafeed/: REST + WebSocket sources (Binance, CoinGecko, alternative.me)
- engine/: Pure computations (live tick aggregation, kline normalization,
  treemap layout, chart state)
- ui/: Dashboard (Textual TUI)
- store.py: Versioned local persistence for watch-list, holdings, wallets, chat
"""

__version__ = "0.1.0"
