"""
Kline (candle) normalization.

Binance klines arrive as an array of arrays:
    [[open_time_ms, open, high, low, close, volume, ...], ...]

Only open time (field 0) and close (field 4) are used. Close may be a JSON
number or a numeric string.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

import orjson

from ..errors import DecodeError
from ..types import ChartPoint

logger = logging.getLogger(__name__)

OPEN_TIME_FIELD = 0
CLOSE_FIELD = 4


def _as_float(raw: Any) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        try:
            return float(raw)
        except ValueError:
            return None
    return None


def parse_kline(entry: Any) -> Optional[ChartPoint]:
    """Decode one kline record, None if a required field is unusable."""
    if not isinstance(entry, (list, tuple)) or len(entry) <= CLOSE_FIELD:
        return None
    open_time = entry[OPEN_TIME_FIELD]
    if isinstance(open_time, bool) or not isinstance(open_time, (int, float)):
        return None
    close = _as_float(entry[CLOSE_FIELD])
    if close is None:
        return None
    return ChartPoint(timestamp=open_time / 1000.0, price=close)


def normalize_klines(payload: Union[bytes, str, list]) -> list[ChartPoint]:
    """
    Decode a kline payload into an ascending ChartPoint series.

    Records that fail to parse are skipped. An empty result is valid.

    Raises:
        DecodeError: payload is empty, not JSON, or not an array of records
    """
    if isinstance(payload, (bytes, str)):
        if not payload:
            raise DecodeError("No data")
        try:
            payload = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise DecodeError("Bad JSON", {'reason': str(e)}) from e

    if not isinstance(payload, list):
        raise DecodeError("Bad JSON", {'reason': f"expected array, got {type(payload).__name__}"})

    points: list[ChartPoint] = []
    skipped = 0
    for entry in payload:
        point = parse_kline(entry)
        if point is None:
            skipped += 1
            continue
        points.append(point)

    if skipped:
        logger.debug("Skipped %d malformed kline records of %d", skipped, len(payload))

    # Do not trust server ordering
    points.sort(key=lambda p: p.timestamp)
    return points
