"""Pre-auction readiness checks at fixed block distances before start."""

import logging
from dataclasses import dataclass

from launch_agent.config.schema import ReadinessConfig
from launch_agent.errors import ProviderError
from launch_agent.execution.ports import ChainSender
from launch_agent.ingest.auction_client import AuctionClient
from launch_agent.models.bid import BidStatus, BidStrategy
from launch_agent.models.common import USDC_BASE, USDC_DECIMALS, format_amount, short_address
from launch_agent.models.units import from_base_units
from launch_agent.pipeline.bid_engine import BidEngine
from launch_agent.pipeline.tick_loop import TickLoop
from launch_agent.reporting.notifier import Notifier, NullNotifier
from launch_agent.storage.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

SECTION = "Readiness Alerts"


@dataclass(frozen=True)
class ReadinessReport:
    auction_address: str
    stage: str
    blocks_until_start: int
    usdc_balance: float
    usdc_needed: float
    eth_balance: float
    min_gas_eth: float
    config_description: str

    @property
    def usdc_ok(self) -> bool:
        return self.usdc_balance >= self.usdc_needed

    @property
    def eth_ok(self) -> bool:
        return self.eth_balance > self.min_gas_eth

    @property
    def ready(self) -> bool:
        return self.usdc_ok and self.eth_ok


def format_report(report: ReadinessReport) -> str:
    def mark(ok: bool) -> str:
        return "✅" if ok else "❌"

    lines = [
        f"*Auction in ~{report.stage}* {short_address(report.auction_address)}"
        f" ({report.blocks_until_start} blocks)",
        "",
        f"{mark(report.usdc_ok)} USDC: ${report.usdc_balance:.2f} (need ${report.usdc_needed:.2f})",
        f"{mark(report.eth_ok)} ETH: {report.eth_balance:.4f} (gas)",
        f"{mark(True)} {report.config_description}",
        "",
        "*Ready to go.*" if report.ready else "*Action needed.*",
    ]
    return "\n".join(lines)


class ReadinessMonitor:
    def __init__(
        self,
        config: ReadinessConfig,
        auctions: AuctionClient,
        chain: ChainSender,
        bids: BidEngine,
        store: SnapshotStore,
        notifier: Notifier | None = None,
        usdc: str = USDC_BASE,
    ):
        self.config = config
        self.auctions = auctions
        self.chain = chain
        self.bids = bids
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.usdc = usdc
        self.alerted: dict[str, set[str]] = {}
        self._loop: TickLoop | None = None
        store.register(SECTION, self.collect)

    def start(self) -> None:
        self._loop = TickLoop("readiness", self.check, self.config.poll_interval_seconds, keep_alive=True)
        self._loop.start()
        logger.info("Readiness monitor started")

    async def stop(self) -> None:
        if self._loop is not None:
            self._loop.stop()
            await self._loop.join()

    def collect(self) -> list[dict]:
        return [{"auction": a, "stages": sorted(s)} for a, s in self.alerted.items()]

    def restore(self, data: list[dict]) -> None:
        for item in data or []:
            self.alerted[str(item["auction"]).lower()] = set(item.get("stages", []))

    def has_alerted(self, auction_address: str, stage: str) -> bool:
        return stage in self.alerted.get(auction_address.lower(), set())

    async def check(self) -> list[ReadinessReport]:
        waiting = [s for s in self.bids.list_strategies() if s.status == BidStatus.WAITING]
        if not waiting:
            return []
        try:
            height = (await self.auctions.get_current_height()).height
        except ProviderError as e:
            logger.warning("Readiness check skipped: %s", e)
            return []

        reports = []
        for strategy in waiting:
            start = strategy.start_height
            if start is None:
                try:
                    start = (await self.auctions.get_auction(strategy.auction_address)).start_height
                except ProviderError:
                    continue
            if not start or height >= start:
                continue
            blocks_until = start - height
            crossed = [stage for stage in self.config.stages if blocks_until <= stage.blocks]
            if not crossed:
                continue
            # only the tightest stage alerts; wider ones crossed at the same time are absorbed
            stage = min(crossed, key=lambda st: st.blocks)
            if self.has_alerted(strategy.auction_address, stage.name):
                continue
            report = await self._run_checklist(strategy, stage.name, blocks_until)
            self.alerted.setdefault(strategy.auction_address.lower(), set()).update(st.name for st in crossed)
            self.store.mark_dirty()
            self.notifier.post(format_report(report))
            logger.info("Readiness alert %s @ %s", strategy.auction_address[:10], stage.name)
            reports.append(report)
        return reports

    async def _run_checklist(self, strategy: BidStrategy, stage: str, blocks_until: int) -> ReadinessReport:
        usdc = eth = 0.0
        try:
            usdc = from_base_units(
                await self.chain.token_balance(self.usdc, self.chain.address), USDC_DECIMALS
            )
            eth = from_base_units(await self.chain.native_balance(self.chain.address), 18)
        except ProviderError as e:
            logger.error("Balance fetch failed: %s", e)
        description = f"{strategy.amount:g} USDC up to ${format_amount(strategy.max_valuation)} valuation"
        if strategy.exit_profile:
            description += f" | exit: {strategy.exit_profile}"
        return ReadinessReport(
            auction_address=strategy.auction_address,
            stage=stage,
            blocks_until_start=blocks_until,
            usdc_balance=usdc,
            usdc_needed=strategy.amount,
            eth_balance=eth,
            min_gas_eth=self.config.min_gas_eth,
            config_description=description,
        )
