"""Auction platform models: launch data, chain height, built bid transactions."""

from dataclasses import dataclass, field

from launch_agent.models.common import Address, USDC_DECIMALS


@dataclass(frozen=True)
class AuctionInfo:
    address: Address
    start_height: int
    end_height: int
    floor_price: int  # fixed-point (Q96) as encoded by the contract
    clearing_price: int | None  # None until the first bid lands
    required_raise: int  # currency base units
    auction_amount: int  # token base units
    total_supply: int  # token base units
    token_address: Address = ""
    token_symbol: str = ""
    token_decimals: int = 18
    currency_decimals: int = USDC_DECIMALS
    graduated: bool = False

    def blocks_left(self, height: int) -> int:
        return max(0, self.end_height - height)

    def has_started(self, height: int) -> bool:
        return height >= self.start_height

    def has_ended(self, height: int) -> bool:
        return height >= self.end_height


@dataclass(frozen=True)
class ChainHeight:
    height: int
    timestamp: float


@dataclass(frozen=True)
class ChainCall:
    to: Address
    data: str
    value: int = 0
    description: str = ""


@dataclass(frozen=True)
class BidBuild:
    """Transactions returned by the bid builder, executed in order."""

    calls: list[ChainCall]
    quantized_price: int  # price actually encoded after tick alignment
    valuation: float
    currency_address: Address = ""


@dataclass(frozen=True)
class ChainReceipt:
    tx_hash: str
    succeeded: bool
    block_number: int = 0
    logs: list[dict] = field(default_factory=list)
