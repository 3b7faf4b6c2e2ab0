"""Bid strategy engine: waiting -> watching -> bidding -> done | failed, one per auction."""

import logging
import time
from collections.abc import Callable

from pydantic import ValidationError

from launch_agent.config.schema import BidConfig
from launch_agent.errors import BidRejection, ProviderError
from launch_agent.execution.executor import ActionExecutor
from launch_agent.ingest.auction_client import AuctionClient
from launch_agent.models.auction import AuctionInfo, ChainHeight
from launch_agent.models.bid import BidStatus, BidStrategy, InFlightBid, can_transition
from launch_agent.models.common import format_amount, short_address
from launch_agent.models.events import EventKind, append_event
from launch_agent.pipeline.tick_loop import TickLoop
from launch_agent.reporting.notifier import Notifier, NullNotifier
from launch_agent.signal.valuation import implied_valuation, initial_target, retry_target
from launch_agent.storage.snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)

SECTION = "Bid Strategies"


class BidEngine:
    def __init__(
        self,
        config: BidConfig,
        auctions: AuctionClient,
        executor: ActionExecutor,
        store: SnapshotStore,
        notifier: Notifier | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.auctions = auctions
        self.executor = executor
        self.store = store
        self.notifier = notifier or NullNotifier()
        self.clock = clock
        self.strategies: dict[str, BidStrategy] = {}
        self._loops: dict[str, TickLoop] = {}
        self._started = False
        store.register(SECTION, self.collect)

    # --- lifecycle ---

    def start(self) -> None:
        """Arm a tick task for every active strategy, now and for those added later."""
        self._started = True
        for key, strategy in self.strategies.items():
            if strategy.is_active:
                self._arm(key)

    async def stop(self) -> None:
        for loop in self._loops.values():
            loop.stop()
        for loop in list(self._loops.values()):
            await loop.join()
        self._loops.clear()
        self._started = False

    def _arm(self, key: str) -> None:
        if not self._started:
            return
        loop = self._loops.get(key)
        if loop is not None and loop.running:
            return
        loop = TickLoop(
            f"bid:{key[:10]}",
            lambda: self.tick(key),
            self.config.poll_interval_seconds,
            on_error=lambda e: self._crashed(key, e),
        )
        self._loops[key] = loop
        loop.start()

    # --- commands ---

    def start_strategy(
        self,
        auction_address: str,
        bidder: str,
        amount: float,
        max_valuation: float,
        min_valuation: float = 0.0,
        exit_profile: str | None = None,
        stop_loss: float | None = None,
    ) -> BidStrategy:
        key = auction_address.lower()
        existing = self.strategies.get(key)
        if existing is not None and existing.is_active:
            raise ValueError(f"A bid strategy is already active for {auction_address}")
        if amount <= 0:
            raise ValueError("Bid amount must be positive")
        if max_valuation <= 0 or max_valuation < min_valuation:
            raise ValueError("max_valuation must be positive and at least min_valuation")

        strategy = BidStrategy(
            auction_address=auction_address,
            bidder=bidder,
            amount=amount,
            min_valuation=min_valuation,
            max_valuation=max_valuation,
            exit_profile=exit_profile,
            stop_loss=stop_loss,
        )
        self.strategies[key] = strategy
        self._log(
            strategy,
            f"Strategy started: {amount:g} USDC, valuation ${format_amount(min_valuation)}"
            f" - ${format_amount(max_valuation)}",
        )
        self.store.mark_dirty()
        self._arm(key)
        return strategy

    def get(self, auction_address: str) -> BidStrategy | None:
        return self.strategies.get(auction_address.lower())

    def list_strategies(self) -> list[BidStrategy]:
        return list(self.strategies.values())

    def cancel(self, auction_address: str) -> bool:
        """Cancel cooperatively; the tick task exits at its next boundary."""
        key = auction_address.lower()
        strategy = self.strategies.get(key)
        if strategy is None or not strategy.is_active:
            return False
        strategy.status = BidStatus.DONE
        self._log(strategy, "Strategy cancelled")
        loop = self._loops.get(key)
        if loop is not None:
            loop.stop()
        self.store.mark_dirty()
        return True

    # --- persistence ---

    def collect(self) -> list[dict]:
        return [s.model_dump(mode="json") for s in self.strategies.values()]

    def restore(self, data: list[dict]) -> int:
        """Repopulate from a snapshot. Nothing is replayed; in-flight bids are
        reconciled by the first tick."""
        restored = 0
        for item in data or []:
            try:
                strategy = BidStrategy.model_validate(item)
            except ValidationError as e:
                logger.error("Skipping unreadable bid strategy: %s", e)
                continue
            key = strategy.auction_address.lower()
            self.strategies[key] = strategy
            restored += 1
            if strategy.is_active:
                self._log(strategy, f"Restored in {strategy.status} state")
                self._arm(key)
        return restored

    # --- tick ---

    async def tick(self, auction_address: str) -> bool:
        """Advance one strategy by one step. Returns False once it is terminal."""
        key = auction_address.lower()
        strategy = self.strategies.get(key)
        if strategy is None or not strategy.is_active:
            return False
        try:
            if strategy.in_flight is not None:
                await self._reconcile(strategy)
                if not strategy.is_active:
                    return False
            height = await self.auctions.get_current_height()
            if strategy.status == BidStatus.WAITING:
                await self._tick_waiting(strategy, height)
            if strategy.status == BidStatus.WATCHING:
                await self._tick_watching(strategy, height)
            elif strategy.status == BidStatus.BIDDING:
                auction = await self.auctions.get_auction(strategy.auction_address)
                await self._tick_bidding(strategy, auction, height)
        except ProviderError as e:
            self._log(strategy, f"Poll error: {e}", EventKind.ERROR)
            self.store.mark_dirty()
        return strategy.is_active

    async def _tick_waiting(self, strategy: BidStrategy, height: ChainHeight) -> None:
        if strategy.start_height is None:
            auction = await self.auctions.get_auction(strategy.auction_address)
            if auction.start_height <= 0:
                raise ProviderError("auction has no start height yet")
            strategy.start_height = auction.start_height
            strategy.end_height = auction.end_height
            self.store.mark_dirty()
        if height.height < strategy.start_height:
            remaining = strategy.start_height - height.height
            if strategy.blocks_left is None:
                self._log(strategy, f"Waiting for start block {strategy.start_height} ({remaining} blocks)")
            strategy.blocks_left = remaining
            return
        self._transition(strategy, BidStatus.WATCHING)
        self._log(strategy, "Auction started, watching clearing price")
        self.store.mark_dirty()

    async def _tick_watching(self, strategy: BidStrategy, height: ChainHeight) -> None:
        auction = await self.auctions.get_auction(strategy.auction_address)
        bids = await self.auctions.get_bids(strategy.auction_address)
        strategy.total_bids = len(bids)
        self._observe(strategy, auction, height)
        if auction.has_ended(height.height):
            self._transition(strategy, BidStatus.DONE)
            self._log(strategy, "Auction ended before the bid window opened")
            self.store.mark_dirty()
            return
        if strategy.blocks_left is not None and strategy.blocks_left <= self.config.bid_window_blocks:
            self._transition(strategy, BidStatus.BIDDING)
            self._log(strategy, f"Bid window open ({strategy.blocks_left} blocks left)")
            self.store.mark_dirty()
            await self._tick_bidding(strategy, auction, height)
        self.store.mark_dirty()

    def _observe(self, strategy: BidStrategy, auction: AuctionInfo, height: ChainHeight) -> None:
        strategy.clearing_price = auction.clearing_price
        strategy.implied_valuation = implied_valuation(auction)
        strategy.end_height = auction.end_height or strategy.end_height
        strategy.blocks_left = auction.blocks_left(height.height)

    async def _tick_bidding(self, strategy: BidStrategy, auction: AuctionInfo, height: ChainHeight) -> None:
        self._observe(strategy, auction, height)
        if auction.has_ended(height.height):
            self._transition(strategy, BidStatus.DONE)
            self._log(strategy, "Auction ended")
            self.store.mark_dirty()
            return
        if strategy.attempts >= self.config.max_attempts:
            self._finish_lost(strategy)
            return

        fresh = initial_target(
            auction,
            strategy.min_valuation,
            strategy.max_valuation,
            self.config.clearing_margin,
            self.config.floor_margin,
        )
        target = fresh
        if strategy.current_target is not None:
            target = min(strategy.max_valuation, max(strategy.current_target, fresh))
        if target <= 0:
            self._log(strategy, "No floor or clearing price to derive a target from", EventKind.ERROR)
            return
        strategy.current_target = target

        strategy.in_flight = InFlightBid(valuation=target, started_at=self.clock())
        strategy.attempts += 1
        if not await self.store.flush():
            strategy.in_flight = None
            strategy.attempts -= 1
            self._log(strategy, "Could not persist bid marker, skipping this tick", EventKind.ERROR)
            return

        self._log(
            strategy,
            f"Bidding {strategy.amount:g} USDC @ ${format_amount(target)} valuation"
            f" (attempt {strategy.attempts}/{self.config.max_attempts})",
            EventKind.BID,
        )
        result = await self.executor.place_bid(strategy.bidder, auction, target, strategy.amount)
        strategy.in_flight = None

        if result.confirmed:
            strategy.last_bid_valuation = result.valuation
            strategy.tx_hashes.extend(result.tx_hashes)
            self._transition(strategy, BidStatus.DONE)
            self._log(strategy, f"Bid confirmed @ ${format_amount(result.valuation)} valuation", EventKind.BID)
            self.notifier.post(
                f"*Bid confirmed* {short_address(strategy.auction_address)}\n"
                f"{strategy.amount:g} USDC @ ${format_amount(result.valuation)} valuation"
            )
        elif result.rejection == BidRejection.AUCTION_ENDED:
            self._transition(strategy, BidStatus.DONE)
            self._log(strategy, "Auction no longer accepting bids", EventKind.ERROR)
        elif result.rejection == BidRejection.PRICE_TOO_LOW:
            strategy.current_target = retry_target(
                target, fresh, strategy.max_valuation, self.config.price_bump
            )
            self._log(
                strategy,
                f"Bid below clearing price, next target ${format_amount(strategy.current_target)}",
                EventKind.ERROR,
            )
            if strategy.attempts >= self.config.max_attempts:
                self._finish_lost(strategy)
        else:
            self._log(strategy, f"Bid failed: {result.error_message}", EventKind.ERROR)
            if strategy.attempts >= self.config.max_attempts:
                self._finish_lost(strategy)
        self.store.mark_dirty()

    def _finish_lost(self, strategy: BidStrategy) -> None:
        self._transition(strategy, BidStatus.DONE)
        self._log(
            strategy,
            f"Gave up after {strategy.attempts} attempts; bid did not land",
            EventKind.ERROR,
        )
        self.notifier.post(
            f"*Bid lost* {short_address(strategy.auction_address)} after {strategy.attempts} attempts"
        )
        self.store.mark_dirty()

    async def _reconcile(self, strategy: BidStrategy) -> None:
        """Decide whether a bid interrupted mid-submission actually landed."""
        marker = strategy.in_flight
        assert marker is not None
        bids = await self.auctions.get_user_bids(strategy.bidder)
        address = strategy.auction_address.lower()
        landed = any(
            str(b.get("auction") or b.get("auctionAddress") or "").lower() == address for b in bids
        )
        strategy.in_flight = None
        if landed:
            strategy.last_bid_valuation = marker.valuation
            self._transition(strategy, BidStatus.DONE)
            self._log(strategy, f"Found bid @ ${format_amount(marker.valuation)} placed before restart", EventKind.BID)
        else:
            self._log(strategy, "No bid found for interrupted submission, resuming")
        self.store.mark_dirty()

    # --- helpers ---

    def _transition(self, strategy: BidStrategy, new: BidStatus) -> None:
        if not strategy.is_active:
            # cancelled while an action was in flight
            return
        if not can_transition(strategy.status, new):
            raise RuntimeError(f"Illegal bid transition {strategy.status} -> {new}")
        strategy.status = new

    def _crashed(self, key: str, error: BaseException) -> None:
        strategy = self.strategies.get(key)
        if strategy is None or not strategy.is_active:
            return
        strategy.status = BidStatus.FAILED
        self._log(strategy, f"Strategy failed: {error}", EventKind.ERROR)
        self.notifier.post(f"*Bid strategy failed* {short_address(strategy.auction_address)}: {error}")
        self.store.mark_dirty()

    def _log(self, strategy: BidStrategy, message: str, kind: EventKind = EventKind.INFO) -> None:
        append_event(
            strategy.log,
            message,
            kind,
            self.config.log_limit,
            logger,
            f"bid:{short_address(strategy.auction_address)}",
        )
