"""Bid strategy state."""

from enum import StrEnum

from pydantic import BaseModel, Field

from launch_agent.models.common import Address, now_ts
from launch_agent.models.events import LogEntry


class BidStatus(StrEnum):
    WAITING = "waiting"
    WATCHING = "watching"
    BIDDING = "bidding"
    DONE = "done"
    FAILED = "failed"


ACTIVE_BID_STATUSES = frozenset({BidStatus.WAITING, BidStatus.WATCHING, BidStatus.BIDDING})

# Transitions only move forward through this order; BIDDING may repeat itself.
_BID_ORDER = {
    BidStatus.WAITING: 0,
    BidStatus.WATCHING: 1,
    BidStatus.BIDDING: 2,
    BidStatus.DONE: 3,
    BidStatus.FAILED: 3,
}


def can_transition(current: BidStatus, new: BidStatus) -> bool:
    if current in (BidStatus.DONE, BidStatus.FAILED):
        return False
    return _BID_ORDER[new] >= _BID_ORDER[current]


class InFlightBid(BaseModel):
    valuation: float
    started_at: float


class BidStrategy(BaseModel):
    auction_address: Address
    bidder: Address
    amount: float  # USDC committed to the bid
    min_valuation: float = 0.0
    max_valuation: float
    status: BidStatus = BidStatus.WAITING
    attempts: int = 0
    current_target: float | None = None
    last_bid_valuation: float | None = None
    clearing_price: int | None = None
    implied_valuation: float | None = None
    total_bids: int = 0
    blocks_left: int | None = None
    start_height: int | None = None
    end_height: int | None = None
    exit_profile: str | None = None
    stop_loss: float | None = None  # exit stop-loss multiple, e.g. 0.5
    in_flight: InFlightBid | None = None
    tx_hashes: list[str] = Field(default_factory=list)
    created_at: float = Field(default_factory=now_ts)
    log: list[LogEntry] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BID_STATUSES
