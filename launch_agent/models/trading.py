"""Trading strategy state: position, trades, risk limits, evaluator params."""

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from launch_agent.models.common import Address
from launch_agent.models.events import LogEntry


class StrategyKind(StrEnum):
    SCHEDULED_BUY = "scheduled-buy"
    TIME_SLICED = "time-sliced"
    MEAN_REVERSION = "mean-reversion"


class TradingStatus(StrEnum):
    RUNNING = "running"
    PAUSED = "paused"
    DONE = "done"
    FAILED = "failed"


class TradeSide(StrEnum):
    BUY = "buy"
    SELL = "sell"


class PricePoint(BaseModel):
    timestamp: float
    price: float


class Position(BaseModel):
    token_balance: float = 0.0
    avg_entry_price: float = 0.0
    total_invested: float = 0.0  # USDC spent buying
    total_realized: float = 0.0  # USDC received selling

    def value(self, price: float) -> float:
        return self.token_balance * price


class PnL(BaseModel):
    realized: float = 0.0
    unrealized: float = 0.0


class Trade(BaseModel):
    model_config = {"frozen": True}

    timestamp: float
    side: TradeSide
    amount_usdc: float
    amount_token: float
    price: float
    tx_hash: str
    gas_cost_eth: float = 0.0
    reason: str = "signal"


class RiskLimits(BaseModel):
    max_position_usdc: float = Field(default=5000.0, ge=0.0)
    stop_loss_percent: float = Field(default=20.0, ge=0.0, le=100.0)
    max_drawdown_percent: float = Field(default=30.0, ge=0.0, le=100.0)


class ScheduledBuyParams(BaseModel):
    kind: Literal["scheduled-buy"] = "scheduled-buy"
    amount_per_buy: float = Field(gt=0)
    interval_seconds: float = Field(gt=0)
    total_budget: float = Field(default=0.0, ge=0.0)  # 0 = unlimited
    last_buy_time: float = 0.0
    buys_executed: int = 0


class TimeSlicedParams(BaseModel):
    kind: Literal["time-sliced"] = "time-sliced"
    total_amount: float = Field(gt=0)
    duration_seconds: float = Field(gt=0)
    slices: int = Field(ge=1)
    start_time: float
    slices_executed: int = 0
    last_slice_time: float = 0.0

    @property
    def slice_size(self) -> float:
        return self.total_amount / self.slices

    @property
    def slice_interval(self) -> float:
        return self.duration_seconds / self.slices


class MeanReversionParams(BaseModel):
    kind: Literal["mean-reversion"] = "mean-reversion"
    amount_per_trade: float = Field(gt=0)
    ema_period_minutes: float = Field(gt=0)
    buy_threshold_pct: float = Field(ge=0)
    sell_threshold_pct: float = Field(ge=0)
    cooldown_seconds: float = Field(default=300.0, ge=0)
    last_trade_time: float = 0.0


StrategyParams = Annotated[
    ScheduledBuyParams | TimeSlicedParams | MeanReversionParams,
    Field(discriminator="kind"),
]


class Signal(BaseModel):
    model_config = {"frozen": True}

    side: TradeSide
    amount_usdc: float


class InFlightTrade(BaseModel):
    side: TradeSide
    amount_usdc: float
    started_at: float
    params_after: StrategyParams


class TradingStrategy(BaseModel):
    id: str
    label: str | None = None
    status: TradingStatus = TradingStatus.RUNNING
    token_address: Address
    token_symbol: str = ""
    token_decimals: int = 18
    position: Position = Field(default_factory=Position)
    price_history: list[PricePoint] = Field(default_factory=list)
    trades: list[Trade] = Field(default_factory=list)
    pnl: PnL = Field(default_factory=PnL)
    risk_limits: RiskLimits = Field(default_factory=RiskLimits)
    params: StrategyParams
    total_gas_cost_eth: float = 0.0
    in_flight: InFlightTrade | None = None
    log: list[LogEntry] = Field(default_factory=list)

    @property
    def kind(self) -> StrategyKind:
        return StrategyKind(self.params.kind)

    @property
    def is_active(self) -> bool:
        return self.status in (TradingStatus.RUNNING, TradingStatus.PAUSED)
