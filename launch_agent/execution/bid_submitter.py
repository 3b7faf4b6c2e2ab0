"""Bid submission: build through the auction API, align to the price grid, send in order."""

import logging
import math

from launch_agent.errors import BidRejection, BidSubmissionError, classify_bid_failure
from launch_agent.execution.ports import ChainSender
from launch_agent.ingest.auction_client import AuctionClient
from launch_agent.models.auction import AuctionInfo, BidBuild

logger = logging.getLogger(__name__)


class BidSubmitter:
    def __init__(
        self,
        auctions: AuctionClient,
        chain: ChainSender,
        alignment_bump: float = 1.15,
        max_alignment_retries: int = 5,
    ):
        self.auctions = auctions
        self.chain = chain
        self.alignment_bump = alignment_bump
        self.max_alignment_retries = max_alignment_retries

    async def build_aligned(
        self, bidder: str, auction: AuctionInfo, valuation: float, amount: float
    ) -> BidBuild:
        """Build a bid whose encoded price lands strictly above the reference price.

        The builder rounds the price down to the contract's tick grid, which can
        land exactly on the clearing (or floor) price and be rejected. Each
        rebuild bumps the valuation by ``alignment_bump``.
        """
        reference = auction.clearing_price or auction.floor_price
        build = await self.auctions.build_bid(bidder, auction.address, valuation, amount)
        for _ in range(self.max_alignment_retries):
            if build.quantized_price > reference:
                break
            valuation = float(math.ceil(valuation * self.alignment_bump))
            logger.info(
                "Encoded price %d <= reference %d, rebuilding at $%.0f",
                build.quantized_price,
                reference,
                valuation,
            )
            build = await self.auctions.build_bid(bidder, auction.address, valuation, amount)
        return build

    async def submit(
        self, bidder: str, auction: AuctionInfo, valuation: float, amount: float
    ) -> tuple[list[str], float]:
        """Submit a bid. Returns (confirmed tx hashes, valuation actually bid).

        Raises BidSubmissionError carrying the classified rejection.
        """
        build = await self.build_aligned(bidder, auction, valuation, amount)
        if not build.calls:
            raise BidSubmissionError("bid builder returned no transactions")

        tx_hashes: list[str] = []
        for i, call in enumerate(build.calls):
            is_last = i == len(build.calls) - 1
            if is_last and len(build.calls) > 1:
                await self._simulate(call)
            try:
                tx_hash = await self.chain.send(call)
                receipt = await self.chain.wait_for_receipt(tx_hash)
            except BidSubmissionError:
                raise
            except Exception as e:
                raise BidSubmissionError(str(e), classify_bid_failure(str(e))) from e
            if not receipt.succeeded:
                raise BidSubmissionError(f"transaction {i + 1} reverted: {tx_hash}")
            logger.info("Bid tx %d/%d confirmed: %s", i + 1, len(build.calls), tx_hash)
            tx_hashes.append(tx_hash)
        return tx_hashes, build.valuation

    async def _simulate(self, call) -> None:
        """Simulate the bid call; only auction-level reverts abort the submission."""
        try:
            await self.chain.simulate(call)
        except Exception as e:
            reason = classify_bid_failure(str(e))
            if reason != BidRejection.OTHER:
                raise BidSubmissionError(f"simulation rejected bid: {e}", reason) from e
            # allowance lag right after an approve shows up here; send anyway
            logger.warning("Simulation warning (proceeding): %s", str(e)[:150])
