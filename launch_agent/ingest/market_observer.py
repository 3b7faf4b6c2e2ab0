"""Shared, reference-counted token price polling with bounded history."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from launch_agent.errors import ProviderError
from launch_agent.execution.ports import PriceSource
from launch_agent.models.trading import PricePoint
from launch_agent.pipeline.tick_loop import TickLoop
from launch_agent.signal import indicators

logger = logging.getLogger(__name__)


@dataclass
class _Tracker:
    token: str
    decimals: int
    loop: TickLoop | None = None
    ref_count: int = 1
    history: list[PricePoint] = field(default_factory=list)


class MarketObserver:
    """One poll task per distinct token, shared by every strategy watching it."""

    def __init__(
        self,
        prices: PriceSource,
        interval: float = 30.0,
        max_points: int = 2880,
        clock: Callable[[], float] = time.time,
    ):
        self.prices = prices
        self.interval = interval
        self.max_points = max_points
        self.clock = clock
        self._trackers: dict[str, _Tracker] = {}
        self._started = False

    def start(self) -> None:
        """Begin polling every tracked token, and any tracked later."""
        self._started = True
        for tracker in self._trackers.values():
            self._arm(tracker)

    def _arm(self, tracker: _Tracker) -> None:
        if not self._started or (tracker.loop is not None and tracker.loop.running):
            return
        key = tracker.token
        tracker.loop = TickLoop(f"price:{key[:10]}", lambda: self.poll(key), self.interval, keep_alive=True)
        tracker.loop.start()

    def start_tracking(self, token: str, decimals: int = 18) -> None:
        key = token.lower()
        tracker = self._trackers.get(key)
        if tracker is not None:
            tracker.ref_count += 1
            return
        tracker = _Tracker(token=key, decimals=decimals)
        self._trackers[key] = tracker
        self._arm(tracker)
        logger.info("Started tracking %s every %.0fs", key[:10], self.interval)

    def stop_tracking(self, token: str) -> None:
        key = token.lower()
        tracker = self._trackers.get(key)
        if tracker is None:
            return
        tracker.ref_count -= 1
        if tracker.ref_count <= 0:
            if tracker.loop is not None:
                tracker.loop.stop()
            del self._trackers[key]
            logger.info("Stopped tracking %s", key[:10])

    def is_tracking(self, token: str) -> bool:
        return token.lower() in self._trackers

    def ref_count(self, token: str) -> int:
        tracker = self._trackers.get(token.lower())
        return tracker.ref_count if tracker else 0

    async def poll(self, token: str) -> None:
        """Fetch one price sample; provider errors are logged and skipped."""
        tracker = self._trackers.get(token.lower())
        if tracker is None:
            return
        try:
            price = await self.prices.price(tracker.token, tracker.decimals)
        except ProviderError as e:
            logger.warning("Price poll failed for %s: %s", tracker.token[:10], e)
            return
        self.record(tracker.token, price)

    def record(self, token: str, price: float, timestamp: float | None = None) -> None:
        tracker = self._trackers.get(token.lower())
        if tracker is None:
            return
        ts = self.clock() if timestamp is None else timestamp
        tracker.history.append(PricePoint(timestamp=ts, price=price))
        if len(tracker.history) > self.max_points:
            del tracker.history[: len(tracker.history) - self.max_points]

    def latest(self, token: str) -> float | None:
        tracker = self._trackers.get(token.lower())
        if tracker is None or not tracker.history:
            return None
        return tracker.history[-1].price

    def history(self, token: str) -> list[PricePoint]:
        tracker = self._trackers.get(token.lower())
        return list(tracker.history) if tracker else []

    def ema(self, token: str, period_minutes: float) -> float | None:
        return indicators.ema(self.history(token), period_minutes * 60, self.clock())

    def sma(self, token: str, period_minutes: float) -> float | None:
        return indicators.sma(self.history(token), period_minutes * 60, self.clock())

    async def close(self) -> None:
        for tracker in list(self._trackers.values()):
            if tracker.loop is not None:
                tracker.loop.stop()
                await tracker.loop.join()
        self._trackers.clear()
