"""
Shared fixtures: a controllable clock and fake aiohttp sessions.
"""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Optional, Union

import aiohttp
import orjson
import pytest

from cryptosage.config import SageConfig

BASE_TIME = 1_700_000_000.0


class FakeClock:
    """Callable clock the test advances by hand."""

    def __init__(self, start: float = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


class FakeResponse:
    def __init__(self, status: int = 200, body: Union[bytes, Any] = b"") -> None:
        self.status = status
        self._body = body if isinstance(body, bytes) else orjson.dumps(body)

    async def read(self) -> bytes:
        return self._body


class _RequestContext:
    def __init__(self, outcome: Union[FakeResponse, BaseException]) -> None:
        self._outcome = outcome

    async def __aenter__(self) -> FakeResponse:
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome

    async def __aexit__(self, *exc_info: object) -> None:
        return None


class FakeSession:
    """
    Stand-in for aiohttp.ClientSession.get().

    Outcomes are consumed in order; each is a FakeResponse or an exception
    to raise. Calls are recorded as (url, params).
    """

    def __init__(self, *outcomes: Union[FakeResponse, BaseException]) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[str, Optional[dict]]] = []

    def get(self, url: str, params: Optional[dict] = None, timeout: Any = None) -> _RequestContext:
        self.calls.append((url, params))
        if not self.outcomes:
            raise AssertionError(f"Unexpected request to {url}")
        return _RequestContext(self.outcomes.pop(0))


class FakeWebSocket:
    """Async-iterable socket yielding prepared messages."""

    def __init__(self, messages: list[SimpleNamespace], exception: Optional[BaseException] = None) -> None:
        self._messages = list(messages)
        self._exception = exception

    def __aiter__(self) -> FakeWebSocket:
        return self

    async def __anext__(self) -> SimpleNamespace:
        if not self._messages:
            raise StopAsyncIteration
        return self._messages.pop(0)

    def exception(self) -> Optional[BaseException]:
        return self._exception

    async def __aenter__(self) -> FakeWebSocket:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        return None


class FakeWsSession:
    """Stand-in for aiohttp.ClientSession.ws_connect()."""

    def __init__(self, ws: Optional[FakeWebSocket] = None, error: Optional[BaseException] = None) -> None:
        self.ws = ws
        self.error = error
        self.urls: list[str] = []

    def ws_connect(self, url: str, **kwargs: Any) -> Any:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        return self.ws


def text_message(payload: Any) -> SimpleNamespace:
    return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=orjson.dumps(payload).decode())


def error_message() -> SimpleNamespace:
    return SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data=None)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path) -> SageConfig:
    return SageConfig({'data_dir': str(tmp_path), 'live_capacity': 300})
