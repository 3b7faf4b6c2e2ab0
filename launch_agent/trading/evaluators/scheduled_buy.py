"""Scheduled buy: fixed-size buys on an interval, optionally capped by a total budget."""

from launch_agent.models.trading import ScheduledBuyParams, Signal, TradeSide, TradingStrategy
from launch_agent.signal.indicators import MarketIndicators


def evaluate(strategy: TradingStrategy, indicators: MarketIndicators) -> Signal | None:
    params = strategy.params
    assert isinstance(params, ScheduledBuyParams)
    if params.last_buy_time > 0 and indicators.now - params.last_buy_time < params.interval_seconds:
        return None

    amount = params.amount_per_buy
    if params.total_budget > 0:
        remaining = params.total_budget - strategy.position.total_invested
        # budget spent: keep running so risk limits still apply
        if remaining <= 0:
            return None
        amount = min(amount, remaining)
    return Signal(side=TradeSide.BUY, amount_usdc=amount)


def apply_fill(params: ScheduledBuyParams, now: float) -> ScheduledBuyParams:
    return params.model_copy(update={"last_buy_time": now, "buys_executed": params.buys_executed + 1})


def is_complete(params: ScheduledBuyParams) -> bool:
    return False
