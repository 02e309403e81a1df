"""
Fear & Greed index from alternative.me.

Payload:
    {"data": [{"value": "40", "value_classification": "Fear",
               "timestamp": "1700000000", ...}, ...]}

Entry 0 is today, entry 1 yesterday, entry 7 a week ago.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import aiohttp

from ..config import SageConfig
from ..errors import DecodeError
from ..types import FearGreedReading, SentimentSnapshot
from .http import get_json

logger = logging.getLogger(__name__)

FNG_PATH = "/fng/"
DEFAULT_LIMIT = 10
YESTERDAY_INDEX = 1
LAST_WEEK_INDEX = 7


def parse_reading(entry: Any) -> Optional[FearGreedReading]:
    """Decode one index entry, None if value is missing or out of range."""
    if not isinstance(entry, dict):
        return None
    try:
        value = int(entry['value'])
    except (KeyError, TypeError, ValueError):
        return None
    if not 0 <= value <= 100:
        return None

    classification = entry.get('value_classification')
    if not isinstance(classification, str) or not classification:
        classification = classify(value)

    try:
        timestamp = int(entry.get('timestamp', 0))
    except (TypeError, ValueError):
        timestamp = 0

    return FearGreedReading(value=value, classification=classification, timestamp=timestamp)


def parse_fear_greed(payload: Any) -> Optional[SentimentSnapshot]:
    """
    Build a snapshot; None when the index has no usable current value.

    Raises:
        DecodeError: payload is not {"data": [...]}
    """
    if not isinstance(payload, dict) or not isinstance(payload.get('data'), list):
        raise DecodeError("Bad JSON", {'reason': "expected object with a data array"})
    data = payload['data']

    def at(index: int) -> Optional[FearGreedReading]:
        return parse_reading(data[index]) if index < len(data) else None

    now = at(0)
    if now is None:
        return None
    return SentimentSnapshot(now=now, yesterday=at(YESTERDAY_INDEX), last_week=at(LAST_WEEK_INDEX))


def classify(value: int) -> str:
    """Label for an index value, used when the feed omits one."""
    if value < 25:
        return "Extreme Fear"
    if value < 47:
        return "Fear"
    if value < 55:
        return "Neutral"
    if value < 75:
        return "Greed"
    return "Extreme Greed"


def sentiment_insight(value: float) -> str:
    """One-line reading of the index for the dashboard."""
    if value < 25:
        return "Extreme Fear: market is fragile."
    if value < 50:
        return "Fear: selective buying might be possible."
    if value < 75:
        return "Neutral: monitor momentum."
    return "Greed: potential profit-taking."


async def fetch_fear_greed(
    session: aiohttp.ClientSession,
    config: Optional[SageConfig] = None,
    limit: int = DEFAULT_LIMIT,
) -> Optional[SentimentSnapshot]:
    """Fetch the index with enough history for the last-week value."""
    config = config or SageConfig()
    url = config.fng_rest + FNG_PATH
    payload = await get_json(session, url, {"limit": str(limit)}, config.request_timeout)
    snapshot = parse_fear_greed(payload)
    if snapshot is not None:
        logger.debug("Fear & Greed: %d (%s)", snapshot.now.value, snapshot.now.classification)
    return snapshot
