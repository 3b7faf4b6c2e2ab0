"""Graduation bridge: starts an exit strategy once a won auction's token graduates."""

import logging

from launch_agent.config.schema import GraduationConfig
from launch_agent.errors import ProviderError
from launch_agent.execution.ports import ChainSender
from launch_agent.ingest.auction_client import AuctionClient
from launch_agent.models.auction import AuctionInfo
from launch_agent.models.bid import BidStatus, BidStrategy
from launch_agent.pipeline.bid_engine import BidEngine
from launch_agent.pipeline.exit_engine import ExitEngine
from launch_agent.pipeline.tick_loop import TickLoop
from launch_agent.reporting.notifier import Notifier, NullNotifier
from launch_agent.signal.valuation import implied_valuation

logger = logging.getLogger(__name__)


class GraduationMonitor:
    def __init__(
        self,
        config: GraduationConfig,
        auctions: AuctionClient,
        chain: ChainSender,
        bids: BidEngine,
        exits: ExitEngine,
        notifier: Notifier | None = None,
    ):
        self.config = config
        self.auctions = auctions
        self.chain = chain
        self.bids = bids
        self.exits = exits
        self.notifier = notifier or NullNotifier()
        self.processed: set[str] = set()
        self._loop: TickLoop | None = None

    def start(self) -> None:
        self._loop = TickLoop("graduation", self.check, self.config.poll_interval_seconds, keep_alive=True)
        self._loop.start()
        logger.info("Graduation monitor started")

    async def stop(self) -> None:
        if self._loop is not None:
            self._loop.stop()
            await self._loop.join()

    def _candidates(self) -> list[BidStrategy]:
        return [
            s
            for s in self.bids.list_strategies()
            if s.exit_profile
            and s.status == BidStatus.DONE
            and s.auction_address.lower() not in self.processed
        ]

    async def check(self) -> list[str]:
        """One pass. Returns the auctions an exit strategy was started for."""
        candidates = self._candidates()
        if not candidates:
            return []
        try:
            launches = await self.auctions.get_launches()
        except ProviderError as e:
            logger.warning("Launch list unavailable: %s", e)
            return []
        by_address = {launch.address.lower(): launch for launch in launches}

        started = []
        for strategy in candidates:
            key = strategy.auction_address.lower()
            launch = by_address.get(key)
            if launch is None or not launch.graduated:
                continue
            if self.exits.get(key) is not None:
                self.processed.add(key)
                continue
            logger.info("%s graduated, starting exit strategy", launch.token_symbol or key[:10])
            try:
                if await self._start_exit(strategy, launch):
                    started.append(key)
                    self.processed.add(key)
            except ProviderError as e:
                logger.warning("Could not start exit for %s yet: %s", key[:10], e)
            except ValueError as e:
                logger.error("Exit for %s rejected: %s", key[:10], e)
                self.processed.add(key)
        return started

    async def _start_exit(self, strategy: BidStrategy, launch: AuctionInfo) -> bool:
        if not (launch.total_supply and launch.floor_price and launch.clearing_price):
            launch = await self.auctions.get_auction(strategy.auction_address)
        balance = await self.chain.token_balance(launch.token_address, self.chain.address)
        if balance == 0:
            logger.info("No %s tokens in wallet, skipping exit", launch.token_symbol or "auction")
            self.processed.add(strategy.auction_address.lower())
            return False
        entry = implied_valuation(launch)
        if entry is None or entry <= 0:
            logger.error("Could not compute entry valuation for %s", strategy.auction_address[:10])
            self.processed.add(strategy.auction_address.lower())
            return False
        self.exits.start_strategy(
            auction_address=strategy.auction_address,
            token_address=launch.token_address,
            total_supply=launch.total_supply,
            entry_valuation=entry,
            balance=balance,
            profile_or_custom=strategy.exit_profile,
            stop_loss_multiple=strategy.stop_loss,
            token_decimals=launch.token_decimals,
            token_symbol=launch.token_symbol,
        )
        self.notifier.post(
            f"*Graduated* {launch.token_symbol or strategy.auction_address[:10]}: "
            f"exit strategy `{strategy.exit_profile}` started"
        )
        return True
