"""
CoinGecko heat map and watch-list decoding.
"""

import pytest

from cryptosage.datafeed.coingecko import CoinGeckoClient, parse_heat_map, parse_markets
from cryptosage.errors import DecodeError, TransportError
from cryptosage.types import HeatMapTile, MarketCoin

from .conftest import FakeResponse, FakeSession

MARKETS = [
    {
        "id": "bitcoin", "symbol": "btc", "name": "Bitcoin",
        "current_price": 64000.0, "price_change_percentage_24h": 2.5,
        "high_24h": 65000, "low_24h": 63000, "total_volume": 1.2e10,
        "market_cap": 1.26e12, "circulating_supply": 19700000,
    },
    {
        "id": "ethereum", "symbol": "eth", "name": "Ethereum",
        "current_price": 3100.5, "price_change_percentage_24h": -1.25,
        "market_cap": 3.7e11,
    },
]


class TestParseHeatMap:
    def test_decodes_tiles(self):
        assert parse_heat_map(MARKETS) == [
            HeatMapTile("BTC", 2.5, 1.26e12),
            HeatMapTile("ETH", -1.25, 3.7e11),
        ]

    def test_null_fields_count_as_zero(self):
        tiles = parse_heat_map([{"symbol": "new", "price_change_percentage_24h": None,
                                 "market_cap": None}])
        assert tiles == [HeatMapTile("NEW", 0.0, 0.0)]

    def test_malformed_records_skipped(self):
        payload = [
            {"price_change_percentage_24h": 1.0, "market_cap": 5.0},       # no symbol
            {"symbol": "bad", "price_change_percentage_24h": "x", "market_cap": 5.0},
            {"symbol": "bad2", "price_change_percentage_24h": 1.0, "market_cap": [1]},
            "garbage",
            {"symbol": "ok", "price_change_percentage_24h": "1.5", "market_cap": 7},
        ]
        assert parse_heat_map(payload) == [HeatMapTile("OK", 1.5, 7.0)]

    def test_requires_array(self):
        with pytest.raises(DecodeError):
            parse_heat_map({"error": "rate limited"})


class TestParseMarkets:
    def test_optional_fields(self):
        coins = parse_markets(MARKETS)
        assert coins[0].coin_id == "bitcoin"
        assert coins[0].circulating_supply == 19700000.0
        assert coins[1] == MarketCoin(
            coin_id="ethereum", symbol="eth", name="Ethereum", current_price=3100.5,
            price_change_percentage_24h=-1.25, market_cap=3.7e11,
        )

    def test_missing_id_skipped(self):
        assert parse_markets([{"symbol": "btc"}]) == []


class TestCoinGeckoClient:
    @pytest.mark.asyncio
    async def test_fetch_heat_map(self, config):
        session = FakeSession(FakeResponse(200, MARKETS))
        client = CoinGeckoClient(session, config)

        tiles = await client.fetch_heat_map()

        assert len(tiles) == 2
        url, params = session.calls[0]
        assert url == "https://api.coingecko.com/api/v3/coins/markets"
        assert params["per_page"] == "100"
        assert params["price_change_percentage"] == "24h"

    @pytest.mark.asyncio
    async def test_fetch_markets_joins_ids(self, config):
        session = FakeSession(FakeResponse(200, MARKETS))
        client = CoinGeckoClient(session, config)

        coins = await client.fetch_markets({"solana", "bitcoin", "ethereum"})

        assert [c.coin_id for c in coins] == ["bitcoin", "ethereum"]
        assert session.calls[0][1]["ids"] == "bitcoin,ethereum,solana"

    @pytest.mark.asyncio
    async def test_empty_watchlist_skips_request(self, config):
        session = FakeSession()
        client = CoinGeckoClient(session, config)
        assert await client.fetch_markets([]) == []
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_rate_limited(self, config):
        session = FakeSession(FakeResponse(429, {"status": {"error_code": 429}}))
        client = CoinGeckoClient(session, config)
        with pytest.raises(TransportError) as exc_info:
            await client.fetch_heat_map()
        assert exc_info.value.status_code == 429
