"""Risk engine: runs every trading risk check (no short-circuit) and returns a verdict."""

from launch_agent.models.risk import RiskCheckResult, RiskVerdict
from launch_agent.models.trading import Position, RiskLimits
from launch_agent.risk.checks import max_drawdown, max_position, stop_loss


class RiskEngine:
    def evaluate(self, position: Position, price: float, limits: RiskLimits) -> RiskVerdict:
        """Evaluate a position at ``price``.

        The caller acts on failures in priority order: stop-loss, then
        drawdown. A max-position failure only blocks buys.
        """
        value = position.value(price)
        checks: list[RiskCheckResult] = [
            stop_loss.check(
                position.token_balance, position.avg_entry_price, price, limits.stop_loss_percent
            ),
            max_drawdown.check(
                position.total_invested,
                position.total_realized,
                value,
                limits.max_drawdown_percent,
            ),
            max_position.check(value, limits.max_position_usdc),
        ]
        approved = all(c.passed for c in checks)
        return RiskVerdict(approved=approved, checks=checks)
