"""Max position check: no further buys once the position is worth the limit.

A limit of 0 disables the check.
"""

from launch_agent.models.risk import BlockReason, RiskCheckResult


def check(position_value: float, max_position_usdc: float) -> RiskCheckResult:
    if max_position_usdc > 0 and position_value >= max_position_usdc:
        return RiskCheckResult(
            check_name="max_position",
            passed=False,
            block_reason=BlockReason.MAX_POSITION,
            detail=f"${position_value:.2f} >= limit ${max_position_usdc:.2f}",
        )
    return RiskCheckResult(check_name="max_position", passed=True, block_reason=None, detail="ok")
