"""Pydantic v2 configuration schema with strict validation."""

from enum import StrEnum

from pydantic import BaseModel, Field

from launch_agent.models.trading import RiskLimits


class ExecutionMode(StrEnum):
    DRY_RUN = "dry-run"
    LIVE = "live"


class ApiConfig(BaseModel):
    model_config = {"extra": "forbid"}

    base_url: str = "https://www.flow.bid/api"
    timeout_seconds: float = Field(default=15.0, gt=0.0)


class PriceConfig(BaseModel):
    model_config = {"extra": "forbid"}

    base_url: str = "https://api.dexscreener.com"
    chain_id: str = "base"
    timeout_seconds: float = Field(default=10.0, gt=0.0)


class WalletConfig(BaseModel):
    model_config = {"extra": "forbid"}

    address: str = ""


class ExecutionConfig(BaseModel):
    model_config = {"extra": "forbid"}

    mode: ExecutionMode = ExecutionMode.DRY_RUN
    live_backend: str = ""  # "package.module:factory" returning (ChainSender, SwapProvider)
    dry_run_usdc: float = Field(default=10_000.0, ge=0.0)
    dry_run_eth: float = Field(default=0.05, ge=0.0)


class BidConfig(BaseModel):
    model_config = {"extra": "forbid"}

    poll_interval_seconds: float = Field(default=4.0, gt=0.0)
    bid_window_blocks: int = Field(default=30, ge=1)
    clearing_margin: float = Field(default=1.10, ge=1.0)
    floor_margin: float = Field(default=1.05, ge=1.0)
    price_bump: float = Field(default=1.20, gt=1.0)
    max_attempts: int = Field(default=5, ge=1)
    alignment_bump: float = Field(default=1.15, gt=1.0)
    max_alignment_retries: int = Field(default=5, ge=0)
    log_limit: int = Field(default=50, ge=1)


class ExitConfig(BaseModel):
    model_config = {"extra": "forbid"}

    poll_interval_seconds: float = Field(default=30.0, gt=0.0)
    default_profile: str = "moderate"
    log_limit: int = Field(default=50, ge=1)


class TradingConfig(BaseModel):
    model_config = {"extra": "forbid"}

    poll_interval_seconds: float = Field(default=30.0, gt=0.0)
    max_single_trade_usdc: float = Field(default=500.0, gt=0.0)
    default_risk_limits: RiskLimits = RiskLimits()
    max_history_points: int = Field(default=2880, ge=1)
    log_limit: int = Field(default=100, ge=1)


class MarketConfig(BaseModel):
    model_config = {"extra": "forbid"}

    poll_interval_seconds: float = Field(default=30.0, gt=0.0)
    max_history_points: int = Field(default=2880, ge=1)


class GraduationConfig(BaseModel):
    model_config = {"extra": "forbid"}

    poll_interval_seconds: float = Field(default=60.0, gt=0.0)


class ReadinessStage(BaseModel):
    model_config = {"extra": "forbid"}

    name: str
    blocks: int = Field(ge=1)


class ReadinessConfig(BaseModel):
    model_config = {"extra": "forbid"}

    enabled: bool = True
    poll_interval_seconds: float = Field(default=10.0, gt=0.0)
    stages: list[ReadinessStage] = [
        ReadinessStage(name="15min", blocks=450),
        ReadinessStage(name="5min", blocks=150),
        ReadinessStage(name="1min", blocks=30),
    ]
    min_gas_eth: float = Field(default=0.002, ge=0.0)


class PersistenceConfig(BaseModel):
    model_config = {"extra": "forbid"}

    path: str = "data/state.md"
    debounce_seconds: float = Field(default=5.0, ge=0.0)


class AlertConfig(BaseModel):
    model_config = {"extra": "forbid"}

    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""


class BidDeclaration(BaseModel):
    model_config = {"extra": "forbid"}

    auction_address: str
    amount: float = Field(gt=0.0)
    max_valuation: float = Field(gt=0.0)
    min_valuation: float = Field(default=0.0, ge=0.0)
    exit_profile: str | None = None
    stop_loss: float | None = Field(default=None, gt=0.0)


class ExitDeclaration(BaseModel):
    model_config = {"extra": "forbid"}

    auction_address: str
    profile: str = "moderate"
    stop_loss: float | None = Field(default=None, gt=0.0)


class TradeDeclaration(BaseModel):
    """A trading strategy to create on boot; ``label`` is its stable identity."""

    model_config = {"extra": "forbid"}

    label: str
    kind: str  # scheduled-buy | time-sliced | mean-reversion
    token_address: str
    token_symbol: str = ""
    token_decimals: int = Field(default=18, ge=0, le=36)
    amount: float = Field(gt=0.0)  # per buy / total / per trade, depending on kind
    interval: str = ""  # scheduled-buy interval, e.g. "4h"
    total_budget: float = Field(default=0.0, ge=0.0)
    duration: str = ""  # time-sliced window, e.g. "1d"
    slices: int = Field(default=1, ge=1)
    ema_period_minutes: float = Field(default=60.0, gt=0.0)
    buy_threshold_pct: float = Field(default=5.0, ge=0.0)
    sell_threshold_pct: float = Field(default=5.0, ge=0.0)
    cooldown: str = "5m"
    risk_limits: RiskLimits | None = None


class StrategyDeclarations(BaseModel):
    model_config = {"extra": "forbid"}

    bids: list[BidDeclaration] = []
    exits: list[ExitDeclaration] = []
    trades: list[TradeDeclaration] = []


class AgentConfig(BaseModel):
    model_config = {"extra": "forbid"}

    api: ApiConfig = ApiConfig()
    prices: PriceConfig = PriceConfig()
    wallet: WalletConfig = WalletConfig()
    execution: ExecutionConfig = ExecutionConfig()
    bid: BidConfig = BidConfig()
    exit: ExitConfig = ExitConfig()
    trading: TradingConfig = TradingConfig()
    market: MarketConfig = MarketConfig()
    graduation: GraduationConfig = GraduationConfig()
    readiness: ReadinessConfig = ReadinessConfig()
    persistence: PersistenceConfig = PersistenceConfig()
    alerts: AlertConfig = AlertConfig()
    strategies: StrategyDeclarations = StrategyDeclarations()
