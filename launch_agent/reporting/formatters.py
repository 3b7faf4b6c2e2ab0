"""Text formatters for strategy status, read back from the state document."""

import logging
from typing import Any

from pydantic import ValidationError

from launch_agent.config.defaults import EXIT_PROFILES
from launch_agent.models.bid import BidStrategy
from launch_agent.models.common import format_amount, short_address
from launch_agent.models.exit import ExitStrategy, TrancheStatus
from launch_agent.models.trading import TradingStrategy
from launch_agent.models.units import format_base_units
from launch_agent.pipeline.bid_engine import SECTION as BID_SECTION
from launch_agent.pipeline.exit_engine import SECTION as EXIT_SECTION
from launch_agent.trading.engine import SECTION as TRADING_SECTION
from launch_agent.trading.engine import drawdown_of

logger = logging.getLogger(__name__)


def format_bid_line(s: BidStrategy) -> str:
    target = f"${format_amount(s.current_target)}" if s.current_target else "-"
    line = (
        f"  {short_address(s.auction_address)} [{s.status}] {s.amount:g} USDC, "
        f"target {target} / max ${format_amount(s.max_valuation)}, attempts {s.attempts}"
    )
    if s.blocks_left is not None and s.is_active:
        line += f", {s.blocks_left} blocks left"
    if s.last_bid_valuation:
        line += f", bid @ ${format_amount(s.last_bid_valuation)}"
    return line


def format_exit_line(s: ExitStrategy) -> str:
    executed = sum(1 for t in s.tranches if t.status == TrancheStatus.EXECUTED)
    return (
        f"  {s.token_symbol or short_address(s.token_address)} [{s.status}] {s.profile_name} "
        f"{executed}/{len(s.tranches)} tranches, {s.current_multiple:.2f}x, "
        f"balance {format_base_units(s.current_balance, s.token_decimals)}, "
        f"realized ${s.total_usdc_realized:.2f}"
    )


def format_trading_line(s: TradingStrategy) -> str:
    pos = s.position
    price = s.price_history[-1].price if s.price_history else pos.avg_entry_price
    name = f"{s.id} ({s.label})" if s.label else s.id
    return (
        f"  {name} {s.kind} {s.token_symbol or short_address(s.token_address)} [{s.status}] "
        f"holding {format_amount(pos.token_balance)} @ avg ${pos.avg_entry_price:.6f}, "
        f"invested ${pos.total_invested:.2f}, PnL ${s.pnl.realized + s.pnl.unrealized:+.2f}, "
        f"drawdown {max(0.0, drawdown_of(s, price)):.1f}%, {len(s.trades)} trades"
    )


def _parse(model: type, items: Any) -> list:
    parsed = []
    for item in items or []:
        try:
            parsed.append(model.model_validate(item))
        except ValidationError as e:
            logger.warning("Unreadable %s entry: %s", model.__name__, e)
    return parsed


def format_status_text(sections: dict[str, Any]) -> str:
    """Per-strategy summary of a loaded state document."""
    bids = _parse(BidStrategy, sections.get(BID_SECTION))
    exits = _parse(ExitStrategy, sections.get(EXIT_SECTION))
    trades = _parse(TradingStrategy, sections.get(TRADING_SECTION))
    lines = [f"Bid strategies: {len(bids)}"]
    lines.extend(format_bid_line(s) for s in bids)
    lines.append(f"Exit strategies: {len(exits)}")
    lines.extend(format_exit_line(s) for s in exits)
    lines.append(f"Trading strategies: {len(trades)}")
    lines.extend(format_trading_line(s) for s in trades)
    return "\n".join(lines)


def format_profiles() -> str:
    lines = []
    for name, tranches in EXIT_PROFILES.items():
        desc = ", ".join(f"{pct:g}%@{mult:g}x" for pct, mult in tranches)
        lines.append(f"{name:<13} {desc}")
    lines.append('custom        e.g. "50@3x,50@5x"')
    return "\n".join(lines)
