"""Max drawdown check: total return as a loss fraction of invested capital.

A limit of 0 disables the check.
"""

from launch_agent.models.risk import BlockReason, RiskCheckResult


def drawdown_percent(total_invested: float, total_realized: float, position_value: float) -> float:
    """Loss as a percentage of invested capital; 0 or negative means no drawdown."""
    if total_invested <= 0:
        return 0.0
    total_return = total_realized + position_value - total_invested
    return -total_return / total_invested * 100


def check(
    total_invested: float,
    total_realized: float,
    position_value: float,
    max_drawdown_percent: float,
) -> RiskCheckResult:
    dd = drawdown_percent(total_invested, total_realized, position_value)
    if max_drawdown_percent > 0 and dd > max_drawdown_percent:
        return RiskCheckResult(
            check_name="max_drawdown",
            passed=False,
            block_reason=BlockReason.MAX_DRAWDOWN,
            detail=f"drawdown {dd:.1f}% > limit {max_drawdown_percent:g}%",
        )
    return RiskCheckResult(check_name="max_drawdown", passed=True, block_reason=None, detail="ok")
