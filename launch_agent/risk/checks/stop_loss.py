"""Stop-loss check: trips when price falls a set percentage below the average entry.

A limit of 0 disables the check.
"""

from launch_agent.models.risk import BlockReason, RiskCheckResult


def check(token_balance: float, avg_entry_price: float, price: float, stop_loss_percent: float) -> RiskCheckResult:
    if stop_loss_percent > 0 and token_balance > 0 and avg_entry_price > 0:
        trigger = avg_entry_price * (1 - stop_loss_percent / 100)
        if price < trigger:
            return RiskCheckResult(
                check_name="stop_loss",
                passed=False,
                block_reason=BlockReason.STOP_LOSS,
                detail=f"price {price:.8f} < stop {trigger:.8f} ({stop_loss_percent:g}% below entry)",
            )
    return RiskCheckResult(check_name="stop_loss", passed=True, block_reason=None, detail="ok")
