"""Exception types shared across the agent.

ProviderError and its subclasses are transient: the tick that hit them ends
without touching state and the next tick tries again.
"""

from enum import StrEnum


class ProviderError(Exception):
    """A poll against an external provider failed (network, HTTP, bad payload)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AuctionApiError(ProviderError):
    """Raised when the auction API returns an error or is unreachable."""


class PriceUnavailableError(ProviderError):
    """Raised when no usable price quote exists for a token."""


class SwapError(Exception):
    """A swap could not be executed (no liquidity, revert)."""


class BidRejection(StrEnum):
    PRICE_TOO_LOW = "price_too_low"
    AUCTION_ENDED = "auction_ended"
    OTHER = "other"


class BidSubmissionError(Exception):
    """A bid submission failed; ``reason`` carries the classification."""

    def __init__(self, message: str, reason: BidRejection = BidRejection.OTHER):
        super().__init__(message)
        self.reason = reason


class ConfigError(Exception):
    """Raised when configuration cannot be turned into a working agent."""


_PRICE_TOO_LOW_MARKERS = ("0x5f259e52", "BidMustBeAboveClearingPrice")
_AUCTION_ENDED_MARKERS = ("0xa0e92984", "AuctionEnded")


def classify_bid_failure(message: str) -> BidRejection:
    """Map a revert/simulation message onto the closed set of bid rejections."""
    if any(m in message for m in _PRICE_TOO_LOW_MARKERS):
        return BidRejection.PRICE_TOO_LOW
    if any(m in message for m in _AUCTION_ENDED_MARKERS):
        return BidRejection.AUCTION_ENDED
    return BidRejection.OTHER
