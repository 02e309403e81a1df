"""
Local persistence for user state.

Each key is one JSON file under the data directory:
    {"schema_version": 1, "records": ...}

Blobs written before versioning (a bare JSON list) are read as schema 0.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Iterable, TypeVar

import orjson

from .errors import SchemaVersionError, StorageError

if TYPE_CHECKING:
    from .types import MarketCoin

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

WATCHLIST_KEY = "watchlist"
HOLDINGS_KEY = "holdingsData"

DEFAULT_WATCHLIST = ("bitcoin", "ethereum", "solana")

R = TypeVar('R')


@dataclass
class Watchlist:
    ids: list[str] = field(default_factory=lambda: list(DEFAULT_WATCHLIST))

    def add(self, coin_id: str) -> None:
        if coin_id not in self.ids:
            self.ids.append(coin_id)

    def remove(self, coin_id: str) -> None:
        if coin_id in self.ids:
            self.ids.remove(coin_id)


@dataclass
class Holding:
    symbol: str
    amount: float
    total_value: float
    daily_change_percent: float = 0.0


def _holding(raw: dict) -> Holding:
    # Older blobs used camelCase keys
    return Holding(
        symbol=str(raw['symbol']),
        amount=float(raw['amount']),
        total_value=float(raw.get('total_value', raw.get('totalValue', 0.0))),
        daily_change_percent=float(
            raw.get('daily_change_percent', raw.get('dailyChangePercent', 0.0))
        ),
    )


class KeyValueStore:
    """
    File-per-key JSON store.

    Thread-safety: NOT thread-safe. Writes are atomic per key.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Could not create {self.directory}", {'reason': str(e)}) from e

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def write(self, key: str, records: Any) -> None:
        """Wrap records in the versioned envelope and write atomically."""
        blob = orjson.dumps(
            {"schema_version": SCHEMA_VERSION, "records": records},
            option=orjson.OPT_INDENT_2,
        )
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(blob)
            os.replace(tmp_name, self._path(key))
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Could not write '{key}'", {'reason': str(e)}) from e

    def read(self, key: str) -> tuple[int, Any] | None:
        """
        Returns (schema_version, records), or None if the key is absent.

        Raises:
            StorageError: unreadable or corrupt blob
            SchemaVersionError: blob from a newer schema
        """
        path = self._path(key)
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Could not read '{key}'", {'reason': str(e)}) from e

        try:
            blob = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            raise StorageError(f"Corrupt blob for '{key}'", {'reason': str(e)}) from e

        if isinstance(blob, list):
            return 0, blob
        if not isinstance(blob, dict) or 'records' not in blob:
            raise StorageError(f"Unrecognized blob for '{key}'")

        version = blob.get('schema_version')
        if not isinstance(version, int):
            raise StorageError(f"Missing schema version for '{key}'")
        if version > SCHEMA_VERSION:
            raise SchemaVersionError(key, version, SCHEMA_VERSION)
        return version, blob['records']

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def _read_list(self, key: str, parse: Callable[[dict], R]) -> list[R]:
        found = self.read(key)
        if found is None:
            return []
        _, records = found
        if not isinstance(records, list):
            raise StorageError(f"Expected a list for '{key}'")
        try:
            return [parse(r) for r in records]
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Bad record in '{key}'", {'reason': str(e)}) from e

    # Typed accessors

    def load_watchlist(self) -> Watchlist:
        found = self.read(WATCHLIST_KEY)
        if found is None:
            return Watchlist()
        _, records = found
        if isinstance(records, dict):
            records = records.get('ids')
        if not isinstance(records, list) or not all(isinstance(i, str) for i in records):
            raise StorageError(f"Bad record in '{WATCHLIST_KEY}'")
        return Watchlist(ids=list(dict.fromkeys(records)))

    def save_watchlist(self, watchlist: Watchlist) -> None:
        self.write(WATCHLIST_KEY, asdict(watchlist))

    def edit_watchlist(self, add: Iterable[str] = (), remove: Iterable[str] = ()) -> Watchlist:
        """Apply additions then removals; writes only when the list changed."""
        watchlist = self.load_watchlist()
        before = list(watchlist.ids)
        for coin_id in add:
            watchlist.add(coin_id.strip().lower())
        for coin_id in remove:
            watchlist.remove(coin_id.strip().lower())
        if watchlist.ids != before:
            self.save_watchlist(watchlist)
            logger.info("Watch-list saved: %s", ", ".join(watchlist.ids))
        return watchlist

    def load_holdings(self) -> list[Holding]:
        return self._read_list(HOLDINGS_KEY, _holding)

    def save_holdings(self, holdings: list[Holding]) -> None:
        self.write(HOLDINGS_KEY, [asdict(h) for h in holdings])

    def set_holding(self, symbol: str, amount: float) -> list[Holding]:
        """
        Set the amount held of symbol; zero or less removes it.

        The stored value is rescaled at the last known unit price until the
        next revaluation.
        """
        symbol = symbol.strip().upper()
        holdings = self.load_holdings()
        current = next((h for h in holdings if h.symbol.upper() == symbol), None)
        if amount <= 0:
            holdings = [h for h in holdings if h is not current]
        elif current is None:
            holdings.append(Holding(symbol, amount, 0.0))
        else:
            unit = current.total_value / current.amount if current.amount else 0.0
            holdings[holdings.index(current)] = replace(
                current, amount=amount, total_value=unit * amount
            )
        self.save_holdings(holdings)
        return holdings


def revalue_holdings(holdings: list[Holding], coins: Iterable[MarketCoin]) -> list[Holding]:
    """Reprice holdings from market quotes matched by symbol; unquoted ones keep their value."""
    quotes = {c.symbol.upper(): c for c in coins if c.current_price is not None}
    revalued = []
    for h in holdings:
        coin = quotes.get(h.symbol.upper())
        if coin is None:
            revalued.append(h)
            continue
        revalued.append(replace(
            h,
            total_value=h.amount * coin.current_price,
            daily_change_percent=coin.price_change_percentage_24h or 0.0,
        ))
    return revalued


def portfolio_allocation(holdings: list[Holding]) -> list[tuple[str, float]]:
    """(symbol, fraction of total value) per holding; empty when the total is 0."""
    total = sum(h.total_value for h in holdings)
    if total <= 0:
        return []
    return [(h.symbol, h.total_value / total) for h in holdings]
