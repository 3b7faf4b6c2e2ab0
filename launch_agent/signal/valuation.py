"""Valuation math: floor FDV, implied FDV from a fixed-point clearing price, bid targets."""

from launch_agent.models.auction import AuctionInfo
from launch_agent.models.units import from_base_units


def floor_valuation(auction: AuctionInfo) -> float:
    """FDV implied by selling the whole auction amount at exactly the required raise.

    Returns 0.0 when any input is missing.
    """
    raise_usd = from_base_units(auction.required_raise, auction.currency_decimals)
    sold = from_base_units(auction.auction_amount, auction.token_decimals)
    supply = from_base_units(auction.total_supply, auction.token_decimals)
    if raise_usd <= 0 or sold <= 0 or supply <= 0:
        return 0.0
    return (raise_usd / sold) * supply


def implied_valuation(auction: AuctionInfo, price: int | None = None) -> float | None:
    """Convert a fixed-point price (default: the clearing price) into an FDV.

    The floor price and the floor valuation describe the same point, so any
    other price scales linearly from it.
    """
    if price is None:
        price = auction.clearing_price
    if not price or auction.floor_price <= 0:
        return None
    base = floor_valuation(auction)
    if base <= 0:
        return None
    return price * (base / auction.floor_price)


def initial_target(
    auction: AuctionInfo,
    min_valuation: float,
    max_valuation: float,
    clearing_margin: float,
    floor_margin: float,
) -> float:
    """Bid target for a fresh observation, clamped to [min_valuation, max_valuation]."""
    implied = implied_valuation(auction)
    if implied is not None:
        target = implied * clearing_margin
    else:
        target = floor_valuation(auction) * floor_margin
    target = max(target, min_valuation)
    return min(target, max_valuation)


def retry_target(previous: float, fresh: float, max_valuation: float, price_bump: float) -> float:
    """Next target after a price-too-low rejection; never below ``previous`` unless capped."""
    return min(max_valuation, max(previous * price_bump, fresh))


def token_valuation(price_usd: float, total_supply: int, decimals: int) -> float:
    return price_usd * from_base_units(total_supply, decimals)
