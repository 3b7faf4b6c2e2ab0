"""Action executor: performs bids and swaps and maps every failure to a result status."""

import logging

from launch_agent.errors import BidRejection, BidSubmissionError, SwapError
from launch_agent.execution.bid_submitter import BidSubmitter
from launch_agent.execution.ports import SwapProvider
from launch_agent.models.auction import AuctionInfo
from launch_agent.models.common import utc_now_iso
from launch_agent.models.execution import ActionStatus, BidResult, SwapResult

logger = logging.getLogger(__name__)


class ActionExecutor:
    def __init__(self, bids: BidSubmitter, swaps: SwapProvider):
        self.bids = bids
        self.swaps = swaps

    async def place_bid(
        self, bidder: str, auction: AuctionInfo, valuation: float, amount: float
    ) -> BidResult:
        """Submit a bid. Never raises; the result carries the classification."""
        try:
            tx_hashes, actual = await self.bids.submit(bidder, auction, valuation, amount)
        except BidSubmissionError as e:
            status = ActionStatus.FAILED if e.reason == BidRejection.OTHER else ActionStatus.REJECTED
            logger.warning("Bid on %s at $%.0f %s: %s", auction.address[:10], valuation, e.reason, e)
            return BidResult(
                status=status,
                valuation=valuation,
                rejection=e.reason,
                error_message=str(e),
                executed_at=utc_now_iso(),
            )
        except Exception as e:
            logger.exception("Bid execution failed for %s", auction.address[:10])
            return BidResult(
                status=ActionStatus.FAILED,
                valuation=valuation,
                rejection=BidRejection.OTHER,
                error_message=str(e),
                executed_at=utc_now_iso(),
            )
        return BidResult(
            status=ActionStatus.CONFIRMED,
            valuation=actual,
            rejection=None,
            tx_hashes=tx_hashes,
            executed_at=utc_now_iso(),
        )

    async def swap(self, token_in: str, token_out: str, amount_in: int) -> SwapResult:
        """Swap ``amount_in`` base units. Never raises."""
        try:
            fill = await self.swaps.swap(token_in, token_out, amount_in)
        except SwapError as e:
            logger.warning("Swap %s -> %s rejected: %s", token_in[:10], token_out[:10], e)
            return SwapResult(
                status=ActionStatus.REJECTED,
                amount_in=amount_in,
                amount_out=0,
                error_message=str(e),
                executed_at=utc_now_iso(),
            )
        except Exception as e:
            logger.exception("Swap %s -> %s failed", token_in[:10], token_out[:10])
            return SwapResult(
                status=ActionStatus.FAILED,
                amount_in=amount_in,
                amount_out=0,
                error_message=str(e),
                executed_at=utc_now_iso(),
            )
        return SwapResult(
            status=ActionStatus.CONFIRMED,
            amount_in=amount_in,
            amount_out=fill.amount_out,
            tx_hash=fill.tx_hash,
            gas_cost_eth=fill.gas_cost_eth,
            executed_at=utc_now_iso(),
        )
