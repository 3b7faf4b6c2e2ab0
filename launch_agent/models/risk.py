"""Risk check models."""

from dataclasses import dataclass
from enum import StrEnum


class BlockReason(StrEnum):
    STOP_LOSS = "STOP_LOSS"
    MAX_DRAWDOWN = "MAX_DRAWDOWN"
    MAX_POSITION = "MAX_POSITION"


@dataclass(frozen=True)
class RiskCheckResult:
    check_name: str
    passed: bool
    block_reason: BlockReason | None
    detail: str


@dataclass(frozen=True)
class RiskVerdict:
    approved: bool
    checks: list[RiskCheckResult]

    @property
    def block_reasons(self) -> list[BlockReason]:
        return [c.block_reason for c in self.checks if c.block_reason is not None]

    def blocked_by(self, reason: BlockReason) -> RiskCheckResult | None:
        for c in self.checks:
            if c.block_reason == reason:
                return c
        return None
