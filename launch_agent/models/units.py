"""Unit and decimal normalization for values coming off the chain or an API.

Providers hand back integers in base units (often as strings) and the odd
float; everything is normalized here rather than at each call site.
"""

import math
from decimal import Decimal, InvalidOperation


def parse_int(raw: object, default: int = 0) -> int:
    """Parse an integer that may arrive as int, numeric string or float."""
    if raw is None or raw == "" or raw == "None":
        return default
    if isinstance(raw, bool):
        return int(raw)
    if isinstance(raw, int):
        return raw
    try:
        return int(Decimal(str(raw)))
    except (InvalidOperation, ValueError):
        return default


def parse_optional_int(raw: object) -> int | None:
    """Like parse_int, but missing/zero values mean "not set"."""
    value = parse_int(raw, default=0)
    return value if value > 0 else None


def parse_float(raw: object, default: float = 0.0) -> float:
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return default
    return value if math.isfinite(value) else default


def from_base_units(raw: int | str, decimals: int) -> float:
    """Convert a base-unit integer (wei, USDC micro-units) to a human amount."""
    return parse_int(raw) / 10**decimals


def to_base_units(amount: float, decimals: int) -> int:
    """Convert a human amount to base units, rounding down."""
    if amount <= 0:
        return 0
    return int(Decimal(repr(amount)) * (Decimal(10) ** decimals))


def format_base_units(raw: int, decimals: int, places: int = 4) -> str:
    """Exact fixed-point rendering of a base-unit amount (no float rounding)."""
    whole, frac = divmod(abs(raw), 10**decimals)
    frac_str = str(frac).rjust(decimals, "0")[:places] if decimals else "0" * places
    sign = "-" if raw < 0 else ""
    return f"{sign}{whole}.{frac_str}"
