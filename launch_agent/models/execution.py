"""Action executor result models."""

from dataclasses import dataclass, field
from enum import StrEnum

from launch_agent.errors import BidRejection


class ActionStatus(StrEnum):
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"  # classified failure, action not taken
    FAILED = "FAILED"  # unclassified failure, action not taken


@dataclass(frozen=True)
class SwapFill:
    amount_out: int  # base units of the output token
    tx_hash: str
    gas_cost_eth: float = 0.0


@dataclass(frozen=True)
class BidResult:
    status: ActionStatus
    valuation: float
    rejection: BidRejection | None
    tx_hashes: list[str] = field(default_factory=list)
    error_message: str = ""
    executed_at: str = ""

    @property
    def confirmed(self) -> bool:
        return self.status == ActionStatus.CONFIRMED


@dataclass(frozen=True)
class SwapResult:
    status: ActionStatus
    amount_in: int
    amount_out: int
    tx_hash: str = ""
    gas_cost_eth: float = 0.0
    error_message: str = ""
    executed_at: str = ""

    @property
    def confirmed(self) -> bool:
        return self.status == ActionStatus.CONFIRMED
