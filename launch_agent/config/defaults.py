"""Preset exit profiles and tranche parsing."""

import re

from launch_agent.models.exit import Tranche

EXIT_PROFILES: dict[str, list[tuple[float, float]]] = {
    "conservative": [(50, 3), (50, 5)],
    "moderate": [(33, 3), (33, 6), (34, 10)],
    "aggressive": [(20, 5), (30, 10), (50, 20)],
}

_TRANCHE_RE = re.compile(r"^(\d+(?:\.\d+)?)@(\d+(?:\.\d+)?)x$", re.IGNORECASE)


def parse_tranches(text: str) -> list[Tranche]:
    """Parse a custom tranche list like ``"50@3x,50@5x"``."""
    tranches = []
    for part in text.split(","):
        part = part.strip()
        match = _TRANCHE_RE.match(part)
        if not match:
            raise ValueError(f'Invalid tranche format: "{part}" (use "50@3x")')
        tranches.append(
            Tranche(pct_to_sell=float(match.group(1)), target_multiple=float(match.group(2)))
        )
    if not tranches:
        raise ValueError("No tranches given")
    return tranches


def resolve_tranches(profile_or_custom: str) -> tuple[str, list[Tranche]]:
    """Return (profile name, fresh pending tranches) for a preset name or a custom tranche list."""
    name = profile_or_custom.strip().lower()
    if name in EXIT_PROFILES:
        return name, [
            Tranche(pct_to_sell=pct, target_multiple=mult)
            for pct, mult in EXIT_PROFILES[name]
        ]
    return "custom", parse_tranches(profile_or_custom)


_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)(s|m|h|d)$", re.IGNORECASE)
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(text: str) -> float:
    """Parse ``30m`` / ``4h`` / ``1d`` into seconds."""
    match = _DURATION_RE.match(text.strip())
    if not match:
        raise ValueError(f"Invalid duration: {text!r} (use 30m, 1h, 4h, 1d)")
    return float(match.group(1)) * _DURATION_UNITS[match.group(2).lower()]
