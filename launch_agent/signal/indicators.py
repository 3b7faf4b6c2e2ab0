"""Moving averages over a timestamped price history."""

from dataclasses import dataclass

from launch_agent.models.trading import PricePoint


def window(history: list[PricePoint], period_seconds: float, now: float) -> list[PricePoint]:
    cutoff = now - period_seconds
    return [p for p in history if p.timestamp >= cutoff]


def sma(history: list[PricePoint], period_seconds: float, now: float) -> float | None:
    points = window(history, period_seconds, now)
    if not points:
        return None
    return sum(p.price for p in points) / len(points)


def ema(history: list[PricePoint], period_seconds: float, now: float) -> float | None:
    """Exponential moving average over the points inside the window.

    The smoothing factor uses the number of points in the window
    (k = 2 / (n + 1)), seeded with the oldest point. Needs at least two points.
    """
    points = window(history, period_seconds, now)
    if len(points) < 2:
        return None
    k = 2 / (len(points) + 1)
    value = points[0].price
    for p in points[1:]:
        value = p.price * k + value * (1 - k)
    return value


@dataclass(frozen=True)
class MarketIndicators:
    """What an evaluator sees on one tick: latest price plus history-derived averages."""

    price: float
    history: list[PricePoint]
    now: float

    def ema(self, period_minutes: float) -> float | None:
        return ema(self.history, period_minutes * 60, self.now)

    def sma(self, period_minutes: float) -> float | None:
        return sma(self.history, period_minutes * 60, self.now)
