"""
Fixed-interval refresh for REST sources (heat map, sentiment).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from ..errors import SageError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class Poller(Generic[T]):
    """
    Runs fetch() now and then every `interval` seconds.

    Failures go to on_error and the next tick tries again. Unexpected
    exceptions propagate from refresh() but are logged and survived by the
    timer loop. stop() is idempotent.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[T]],
        interval: float,
        on_result: Callable[[T], None],
        on_error: Optional[Callable[[SageError], None]] = None,
        name: str = "poller",
    ) -> None:
        self.fetch = fetch
        self.interval = interval
        self.on_result = on_result
        self.on_error = on_error
        self.name = name
        self._task: Optional[asyncio.Task] = None
        self.run_count = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def refresh(self) -> None:
        """One fetch, outside the timer (manual retry)."""
        self.run_count += 1
        try:
            result = await self.fetch()
        except SageError as e:
            logger.warning("%s refresh failed: %s", self.name, e)
            if self.on_error is not None:
                self.on_error(e)
            return
        self.on_result(result)

    async def _run(self) -> None:
        while True:
            try:
                await self.refresh()
            except Exception:
                # A broken callback must not end the refresh loop
                logger.exception("%s refresh raised", self.name)
            await asyncio.sleep(self.interval)
