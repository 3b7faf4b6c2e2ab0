"""Shared test fixtures and in-memory fakes for the auction API and price feed."""

from pathlib import Path

import pytest
import yaml

from launch_agent.config.schema import AgentConfig
from launch_agent.errors import AuctionApiError, PriceUnavailableError
from launch_agent.execution.bid_submitter import BidSubmitter
from launch_agent.execution.dry_run import DryRunChain, DryRunSwapProvider
from launch_agent.execution.executor import ActionExecutor
from launch_agent.models.auction import AuctionInfo, BidBuild, ChainCall, ChainHeight
from launch_agent.reporting.notifier import NullNotifier
from launch_agent.storage.snapshot_store import SnapshotStore

WALLET = "0x1111111111111111111111111111111111111111"
AUCTION = "0xaaaa000000000000000000000000000000000001"
TOKEN = "0xbbbb000000000000000000000000000000000002"
Q96 = 2**96


def make_auction(
    address: str = AUCTION,
    start: int = 100,
    end: int = 200,
    clearing_price: int | None = None,
    graduated: bool = False,
) -> AuctionInfo:
    """1,000 tokens total, 100 sold for 1,000 USDC: floor valuation $10,000."""
    return AuctionInfo(
        address=address,
        start_height=start,
        end_height=end,
        floor_price=Q96,
        clearing_price=clearing_price,
        required_raise=1_000 * 10**6,
        auction_amount=100 * 10**18,
        total_supply=1_000 * 10**18,
        token_address=TOKEN,
        token_symbol="LAUNCH",
        graduated=graduated,
    )


class Clock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeAuctions:
    """Auction API stand-in backed by dicts the test mutates."""

    def __init__(self, height: int = 50):
        self.height = height
        self.auctions: dict[str, AuctionInfo] = {}
        self.bids: dict[str, list[dict]] = {}
        self.user_bids: list[dict] = []
        self.build_requests: list[float] = []
        self.quantize = lambda valuation: Q96 + int(valuation)
        self.fail_height = False

    def add(self, auction: AuctionInfo) -> AuctionInfo:
        self.auctions[auction.address.lower()] = auction
        return auction

    async def get_current_height(self) -> ChainHeight:
        if self.fail_height:
            raise AuctionApiError("block endpoint down", status_code=503)
        return ChainHeight(height=self.height, timestamp=0.0)

    async def get_auction(self, address: str) -> AuctionInfo:
        try:
            return self.auctions[address.lower()]
        except KeyError:
            raise AuctionApiError(f"unknown auction {address}", status_code=404) from None

    async def get_launches(self) -> list[AuctionInfo]:
        return list(self.auctions.values())

    async def get_bids(self, address: str) -> list[dict]:
        return list(self.bids.get(address.lower(), []))

    async def get_user_bids(self, bidder: str) -> list[dict]:
        return list(self.user_bids)

    async def build_bid(self, bidder: str, auction_address: str, valuation: float, amount: float) -> BidBuild:
        self.build_requests.append(valuation)
        return BidBuild(
            calls=[ChainCall(to=auction_address, data="0xbid", description="submit bid")],
            quantized_price=self.quantize(valuation),
            valuation=valuation,
        )

    async def close(self) -> None:
        return None


class FakePrices:
    def __init__(self, prices: dict[str, float] | None = None):
        self.prices = {k.lower(): v for k, v in (prices or {}).items()}
        self.calls = 0

    def set(self, token: str, price: float) -> None:
        self.prices[token.lower()] = price

    async def price(self, token: str, decimals: int = 18) -> float:
        self.calls += 1
        try:
            return self.prices[token.lower()]
        except KeyError:
            raise PriceUnavailableError(f"no price for {token}") from None

    async def close(self) -> None:
        return None


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def auctions() -> FakeAuctions:
    return FakeAuctions()


@pytest.fixture
def prices() -> FakePrices:
    return FakePrices({TOKEN: 1.0})


@pytest.fixture
def chain() -> DryRunChain:
    return DryRunChain(WALLET, usdc=10_000 * 10**6, native=10**17)


@pytest.fixture
def swaps(prices: FakePrices, chain: DryRunChain) -> DryRunSwapProvider:
    return DryRunSwapProvider(prices, chain)


@pytest.fixture
def executor(auctions: FakeAuctions, chain: DryRunChain, swaps: DryRunSwapProvider) -> ActionExecutor:
    return ActionExecutor(BidSubmitter(auctions, chain), swaps)


@pytest.fixture
def store(tmp_path: Path) -> SnapshotStore:
    return SnapshotStore(tmp_path / "state.md", debounce_seconds=0.0)


@pytest.fixture
def notifier() -> NullNotifier:
    return NullNotifier()


@pytest.fixture
def default_config() -> AgentConfig:
    return AgentConfig()


@pytest.fixture
def config_yaml_path(tmp_path: Path) -> Path:
    """Write a minimal valid config YAML and return its path."""
    data = {
        "bid": {"max_attempts": 3},
        "execution": {"mode": "dry-run"},
        "persistence": {"path": str(tmp_path / "state.md")},
        "strategies": {
            "bids": [{"auction_address": AUCTION, "amount": 100, "max_valuation": 50_000}],
            "trades": [
                {
                    "label": "dca",
                    "kind": "scheduled-buy",
                    "token_address": TOKEN,
                    "amount": 100,
                    "interval": "1h",
                    "total_budget": 1_000,
                }
            ],
        },
    }
    path = tmp_path / "agent.yaml"
    with open(path, "w") as f:
        yaml.dump(data, f)
    return path
