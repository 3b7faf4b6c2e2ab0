"""Common types and helpers shared across models."""

import time
from datetime import UTC, datetime
from typing import TypeAlias

Address: TypeAlias = str
StrategyId: TypeAlias = str

USDC_BASE: Address = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"
USDC_DECIMALS = 6


def utc_now() -> datetime:
    return datetime.now(UTC)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def now_ts() -> float:
    """Epoch seconds; every persisted timestamp uses this unit."""
    return time.time()


def short_address(address: str) -> str:
    return address[:8] if address else "?"


def format_amount(n: float) -> str:
    """Compact human-readable token/USD amount (1.2K, 3.40M)."""
    if n >= 1_000_000:
        return f"{n / 1_000_000:.2f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}K"
    if n >= 1:
        return f"{n:.2f}"
    return f"{n:.6f}"


def format_countdown(seconds: float) -> str:
    if seconds <= 0:
        return "now"
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    parts = []
    if h > 0:
        parts.append(f"{h}h")
    if m > 0:
        parts.append(f"{m}m")
    parts.append(f"{s}s")
    return " ".join(parts)
