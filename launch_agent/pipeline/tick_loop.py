"""Cooperative per-instance tick task.

A tick runs to completion, then the loop sleeps for its interval or until
``stop()`` is called. A tick returning False ends the loop. An exception that
escapes a tick is handed to ``on_error`` and ends the loop, unless the loop
was built with ``keep_alive=True``, in which case it is logged and the next
tick runs on schedule.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class TickLoop:
    def __init__(
        self,
        name: str,
        tick: Callable[[], Awaitable[bool | None]],
        interval: float,
        on_error: Callable[[BaseException], None] | None = None,
        keep_alive: bool = False,
    ):
        self.name = name
        self.interval = interval
        self._tick = tick
        self._on_error = on_error
        self.keep_alive = keep_alive
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run(), name=self.name)

    def stop(self) -> None:
        self._stop.set()

    async def join(self) -> None:
        if self._task is not None:
            await self._task

    async def _run(self) -> None:
        logger.debug("Tick loop %s started (every %.1fs)", self.name, self.interval)
        while not self._stop.is_set():
            try:
                keep_going = await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Tick loop %s: tick raised", self.name)
                if self._on_error is not None:
                    self._on_error(e)
                if not self.keep_alive:
                    return
                keep_going = True
            if keep_going is False:
                break
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.debug("Tick loop %s stopped", self.name)
