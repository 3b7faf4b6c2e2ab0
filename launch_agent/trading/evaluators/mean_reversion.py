"""Mean reversion: buy dips below the EMA, sell spikes above it."""

from launch_agent.models.trading import MeanReversionParams, Signal, TradeSide, TradingStrategy
from launch_agent.signal.indicators import MarketIndicators


def evaluate(strategy: TradingStrategy, indicators: MarketIndicators) -> Signal | None:
    params = strategy.params
    assert isinstance(params, MeanReversionParams)
    ema = indicators.ema(params.ema_period_minutes)
    if ema is None or ema <= 0:
        return None  # warming up
    if params.last_trade_time > 0 and indicators.now - params.last_trade_time < params.cooldown_seconds:
        return None

    deviation = (indicators.price - ema) / ema * 100
    if deviation < -params.buy_threshold_pct:
        return Signal(side=TradeSide.BUY, amount_usdc=params.amount_per_trade)
    if deviation > params.sell_threshold_pct and strategy.position.token_balance > 0:
        return Signal(side=TradeSide.SELL, amount_usdc=params.amount_per_trade)
    return None


def apply_fill(params: MeanReversionParams, now: float) -> MeanReversionParams:
    return params.model_copy(update={"last_trade_time": now})


def is_complete(params: MeanReversionParams) -> bool:
    return False
