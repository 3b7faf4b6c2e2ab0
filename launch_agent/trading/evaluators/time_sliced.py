"""Time-sliced execution: a total amount split into equal buys across a window."""

from launch_agent.models.trading import Signal, TimeSlicedParams, TradeSide, TradingStrategy
from launch_agent.signal.indicators import MarketIndicators


def next_slice_due(params: TimeSlicedParams) -> float:
    """Slice n (1-based) is due at start + n * interval."""
    return params.start_time + (params.slices_executed + 1) * params.slice_interval


def evaluate(strategy: TradingStrategy, indicators: MarketIndicators) -> Signal | None:
    params = strategy.params
    assert isinstance(params, TimeSlicedParams)
    if is_complete(params) or indicators.now < next_slice_due(params):
        return None
    return Signal(side=TradeSide.BUY, amount_usdc=params.slice_size)


def apply_fill(params: TimeSlicedParams, now: float) -> TimeSlicedParams:
    return params.model_copy(
        update={"slices_executed": params.slices_executed + 1, "last_slice_time": now}
    )


def is_complete(params: TimeSlicedParams) -> bool:
    return params.slices_executed >= params.slices
