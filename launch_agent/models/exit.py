"""Exit (tranche liquidation) strategy state."""

from enum import StrEnum

from pydantic import BaseModel, Field

from launch_agent.models.common import Address, now_ts
from launch_agent.models.events import LogEntry


class TrancheStatus(StrEnum):
    PENDING = "pending"
    EXECUTED = "executed"
    SKIPPED = "skipped"


class ExitStatus(StrEnum):
    RUNNING = "running"
    DONE = "done"
    STOPPED = "stopped"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Tranche(BaseModel):
    pct_to_sell: float = Field(gt=0, le=100)
    target_multiple: float = Field(gt=0)
    status: TrancheStatus = TrancheStatus.PENDING
    executed_at: float | None = None
    tx_hash: str | None = None
    amount_sold: int | None = None  # token base units
    usdc_received: float | None = None

    @property
    def label(self) -> str:
        return f"{self.pct_to_sell:g}%@{self.target_multiple:g}x"


class InFlightSell(BaseModel):
    tranche_index: int | None  # None for a stop-loss sell
    amount: int
    balance_before: int
    started_at: float


class ExitStrategy(BaseModel):
    auction_address: Address
    token_address: Address
    token_symbol: str = ""
    token_decimals: int = 18
    total_supply: int
    entry_valuation: float
    initial_balance: int
    current_balance: int
    current_valuation: float = 0.0
    current_multiple: float = 0.0
    profile_name: str = "custom"
    tranches: list[Tranche]
    stop_loss_multiple: float | None = None
    total_usdc_realized: float = 0.0
    status: ExitStatus = ExitStatus.RUNNING
    in_flight: InFlightSell | None = None
    created_at: float = Field(default_factory=now_ts)
    log: list[LogEntry] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == ExitStatus.RUNNING

    @property
    def pending_tranches(self) -> list[Tranche]:
        return [t for t in self.tranches if t.status == TrancheStatus.PENDING]
