"""
Shared aiohttp request helpers.

Maps aiohttp failures onto the CryptoSage error taxonomy so every source
surfaces TransportError / DecodeError the same way.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp
import orjson

from ..errors import DecodeError, TransportError

logger = logging.getLogger(__name__)


async def fetch_body(
    session: aiohttp.ClientSession,
    url: str,
    params: Optional[dict[str, str]] = None,
    timeout: float = 10.0,
) -> tuple[int, bytes]:
    """
    GET url and return (status, body). Does not judge the status.

    Raises:
        TransportError: connection failure or timeout
    """
    try:
        async with session.get(
            url, params=params, timeout=aiohttp.ClientTimeout(total=timeout)
        ) as resp:
            body = await resp.read()
            return resp.status, body
    except asyncio.TimeoutError as e:
        raise TransportError("Request timed out", url=url) from e
    except aiohttp.ClientError as e:
        raise TransportError(str(e) or type(e).__name__, url=url) from e


def check_status(status: int, url: str) -> None:
    """Raise TransportError for any non-2xx status."""
    if not 200 <= status < 300:
        raise TransportError(f"HTTP {status}", status_code=status, url=url)


def decode_json(body: bytes) -> Any:
    """
    Parse a JSON body.

    Raises:
        DecodeError: body is empty or not JSON
    """
    if not body:
        raise DecodeError("No data")
    try:
        return orjson.loads(body)
    except orjson.JSONDecodeError as e:
        raise DecodeError("Bad JSON", {'reason': str(e)}) from e


async def get_json(
    session: aiohttp.ClientSession,
    url: str,
    params: Optional[dict[str, str]] = None,
    timeout: float = 10.0,
) -> Any:
    """GET + status check + JSON decode."""
    status, body = await fetch_body(session, url, params, timeout)
    check_status(status, url)
    return decode_json(body)
