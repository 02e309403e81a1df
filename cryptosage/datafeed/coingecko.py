"""
CoinGecko market data: heat map tiles and watch-list quotes.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

import aiohttp

from ..config import SageConfig
from ..errors import DecodeError
from ..types import HeatMapTile, MarketCoin
from .http import get_json

logger = logging.getLogger(__name__)

MARKETS_PATH = "/api/v3/coins/markets"
HEATMAP_PAGE_SIZE = 100


def _optional_float(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        try:
            return float(raw)
        except ValueError:
            return None
    return None


def _expect_list(payload: Any) -> list:
    if not isinstance(payload, list):
        raise DecodeError("Bad JSON", {'reason': f"expected array, got {type(payload).__name__}"})
    return payload


def parse_heat_map(payload: Any) -> list[HeatMapTile]:
    """
    Decode markets records into tiles.

    A null cap or change counts as 0; records without a symbol, or with a
    non-numeric cap/change, are skipped.
    """
    tiles: list[HeatMapTile] = []
    for record in _expect_list(payload):
        if not isinstance(record, dict):
            continue
        symbol = record.get('symbol')
        if not isinstance(symbol, str) or not symbol:
            continue

        raw_change = record.get('price_change_percentage_24h')
        raw_cap = record.get('market_cap')
        change = _optional_float(raw_change)
        cap = _optional_float(raw_cap)
        if (raw_change is not None and change is None) or (raw_cap is not None and cap is None):
            continue

        tiles.append(HeatMapTile(
            symbol=symbol.upper(),
            pct_change=change or 0.0,
            market_cap=max(cap or 0.0, 0.0),
        ))
    return tiles


def parse_markets(payload: Any) -> list[MarketCoin]:
    """Decode markets records into MarketCoin; records without id/symbol are skipped."""
    coins: list[MarketCoin] = []
    for record in _expect_list(payload):
        if not isinstance(record, dict):
            continue
        coin_id, symbol = record.get('id'), record.get('symbol')
        if not isinstance(coin_id, str) or not isinstance(symbol, str):
            continue
        name = record.get('name')
        coins.append(MarketCoin(
            coin_id=coin_id,
            symbol=symbol,
            name=name if isinstance(name, str) else None,
            current_price=_optional_float(record.get('current_price')),
            price_change_percentage_24h=_optional_float(record.get('price_change_percentage_24h')),
            high_24h=_optional_float(record.get('high_24h')),
            low_24h=_optional_float(record.get('low_24h')),
            total_volume=_optional_float(record.get('total_volume')),
            market_cap=_optional_float(record.get('market_cap')),
            circulating_supply=_optional_float(record.get('circulating_supply')),
        ))
    return coins


class CoinGeckoClient:
    """Markets endpoint wrapper. The caller owns the session."""

    def __init__(self, session: aiohttp.ClientSession, config: Optional[SageConfig] = None) -> None:
        self.session = session
        self.config = config or SageConfig()

    @property
    def _markets_url(self) -> str:
        return self.config.coingecko_rest + MARKETS_PATH

    async def fetch_heat_map(self) -> list[HeatMapTile]:
        params = {
            "vs_currency": "usd",
            "order": "market_cap_desc",
            "per_page": str(HEATMAP_PAGE_SIZE),
            "page": "1",
            "sparkline": "false",
            "price_change_percentage": "24h",
        }
        payload = await get_json(self.session, self._markets_url, params, self.config.request_timeout)
        tiles = parse_heat_map(payload)
        logger.debug("Heat map fetched: %d tiles", len(tiles))
        return tiles

    async def fetch_markets(self, ids: Iterable[str]) -> list[MarketCoin]:
        """Quotes for the given coin ids; no request when ids is empty."""
        joined = ",".join(sorted(set(ids)))
        if not joined:
            return []
        params = {
            "vs_currency": "usd",
            "ids": joined,
            "order": "market_cap_desc",
            "per_page": "100",
            "page": "1",
            "sparkline": "false",
        }
        payload = await get_json(self.session, self._markets_url, params, self.config.request_timeout)
        return parse_markets(payload)
